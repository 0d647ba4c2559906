"""
SQLite-backed store for the last trustworthy resolution.

Only device fixes better than the accuracy gate are ever written. Entries
expire by source class (device vs. everything else) and a startup sweep
drops rows written under a looser gate by older builds.
"""
from __future__ import annotations

import json
import logging
import os
import sqlite3
import time
from typing import Callable, Optional

from domain.models import CacheEntry, ResolvedLocation, SourceType

BASE_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DATA_DIR = os.path.join(BASE_DIR, "data")
LOCATION_CACHE_DB_FILENAME = "location_cache.sqlite"
_SLOT = "last"

logger = logging.getLogger(__name__)


class LocationCache:
    def __init__(
        self,
        db_path: Optional[str] = None,
        max_accuracy_m: float = 200.0,
        device_ttl_seconds: float = 120.0,
        other_ttl_seconds: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.db_path = db_path or os.path.join(DATA_DIR, LOCATION_CACHE_DB_FILENAME)
        self.max_accuracy_m = max_accuracy_m
        self.device_ttl_seconds = device_ttl_seconds
        self.other_ttl_seconds = other_ttl_seconds
        self.clock = clock
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._init_schema()
        self.sweep()

    def _init_schema(self) -> None:
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS location_cache (
                slot TEXT PRIMARY KEY,
                source_type TEXT NOT NULL,
                accuracy_m REAL,
                payload_json TEXT NOT NULL,
                created_at REAL NOT NULL
            )
            """
        )
        self._conn.commit()

    def passes_gate(self, source_type: str, accuracy_m: Optional[float]) -> bool:
        """Only device fixes strictly better than the accuracy ceiling qualify."""
        return (
            source_type == SourceType.DEVICE.value
            and accuracy_m is not None
            and accuracy_m < self.max_accuracy_m
        )

    def ttl_for(self, source_type: str) -> float:
        if source_type == SourceType.DEVICE.value:
            return self.device_ttl_seconds
        return self.other_ttl_seconds

    def sweep(self) -> int:
        """Delete persisted rows that fail the current gate. Returns the number removed."""
        rows = self._conn.execute("SELECT slot, source_type, accuracy_m FROM location_cache").fetchall()
        stale = [slot for slot, source, accuracy in rows if not self.passes_gate(source, accuracy)]
        for slot in stale:
            self._conn.execute("DELETE FROM location_cache WHERE slot=?", (slot,))
        self._conn.commit()
        if stale:
            logger.info("[CACHE] startup sweep purged %d untrusted entr%s", len(stale), "y" if len(stale) == 1 else "ies")
        return len(stale)

    def get_entry(self) -> Optional[CacheEntry]:
        try:
            row = self._conn.execute(
                "SELECT source_type, payload_json, created_at FROM location_cache WHERE slot=?",
                (_SLOT,),
            ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("[CACHE] read failed: %s", exc)
            return None
        if not row:
            logger.debug("[CACHE] miss")
            return None

        source_type, payload_json, created_at = row
        age = self.clock() - created_at
        if age > self.ttl_for(source_type):
            logger.debug("[CACHE] expired entry (age %.1fs)", age)
            self.clear()
            return None
        try:
            location = ResolvedLocation.from_dict(json.loads(payload_json))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("[CACHE] dropping unreadable entry: %s", exc)
            self.clear()
            return None
        logger.debug("[CACHE] hit (age %.1fs)", age)
        return CacheEntry(location=location, timestamp=created_at)

    def get(self) -> Optional[ResolvedLocation]:
        entry = self.get_entry()
        return entry.location if entry else None

    def set(self, location: ResolvedLocation) -> bool:
        """Store `location` if it clears the gate. Returns whether anything was written."""
        source = SourceType(location.source_type).value
        if not self.passes_gate(source, location.accuracy_meters):
            logger.debug(
                "[CACHE] rejected %s entry (accuracy=%s)", source, location.accuracy_meters
            )
            return False
        self._conn.execute(
            """
            INSERT OR REPLACE INTO location_cache (slot, source_type, accuracy_m, payload_json, created_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (_SLOT, source, location.accuracy_meters, json.dumps(location.to_dict()), self.clock()),
        )
        self._conn.commit()
        return True

    def clear(self) -> None:
        self._conn.execute("DELETE FROM location_cache")
        self._conn.commit()

    def close(self) -> None:
        self._conn.close()
