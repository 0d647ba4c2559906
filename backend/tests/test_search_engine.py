import asyncio

from domain.models import CandidateSource, SearchCandidate
from services.city_registry import popular_places
from services.city_resolver import CityResolver
from services.directory_client import LocalDirectory
from services.places_types import PlaceResult
from services.search_engine import SearchEngine, SearchResults
from services.text_utils import fold_text

from fakes import FailingDirectory, FakePlaces


class CountingDirectory(LocalDirectory):
    def __init__(self):
        super().__init__()
        self.queries = []

    async def search(self, query, city, user_coordinates=None, max_results=8):
        self.queries.append(query)
        return await super().search(query, city, user_coordinates, max_results)


def _place(place_id, name, lat, lng, address=""):
    return PlaceResult(
        provider="osm",
        place_id=place_id,
        name=name,
        lat=lat,
        lon=lng,
        types=[],
        confidence=0.5,
        display_name=name,
        formatted_address=address or f"{name}, Gombe, Kinshasa",
    )


def _engine(directory=None, places=None, city="Kinshasa", debounce_ms=0):
    resolver = CityResolver()
    resolver.override(city)
    return SearchEngine(
        directory or LocalDirectory(),
        resolver,
        places if places is not None else FakePlaces(),
        debounce_ms=debounce_ms,
    )


def test_empty_query_returns_city_popular_set_without_dispatch():
    places = FakePlaces()
    directory = CountingDirectory()
    engine = _engine(directory=directory, places=places)

    results = asyncio.run(engine.search(""))

    assert {c.id for c in results} == {hit.id for hit in popular_places("Kinshasa")}
    assert all(c.is_popular for c in results)
    assert results.error is False
    assert places.search_calls == []
    assert directory.queries == []


def test_short_query_also_returns_popular_set():
    engine = _engine(city="Abidjan")
    results = asyncio.run(engine.search("a"))
    assert {c.city for c in results} == {"Abidjan"}


def test_abidjan_airport_outranks_kinshasa_airport_in_abidjan():
    engine = _engine(city="Abidjan")

    results = asyncio.run(engine.search("aéro"))
    ids = [c.id for c in results]

    assert ids[0] == "abj-airport"
    assert ids.index("abj-airport") < ids.index("kin-airport")


def test_external_results_rank_below_equal_directory_matches():
    # same text quality ("marche" prefix), external one sits right next to the user
    places = FakePlaces([_place("N9", "Marché Gambela", -4.3217, 15.3069)])
    engine = _engine(places=places)

    results = asyncio.run(engine.search("marche"))
    by_id = {c.id: c for c in results}

    assert by_id["N9"].source_type == CandidateSource.EXTERNAL
    assert by_id["kin-market"].relevance_score > by_id["N9"].relevance_score
    assert [c.id for c in results].index("kin-market") < [c.id for c in results].index("N9")


def test_duplicates_by_name_and_proximity_are_merged():
    places = FakePlaces(
        [
            _place("N1", "Marché Central", -4.3278, 15.3088),  # ~30 m from the directory entry
            _place("N2", "Marché Central", 5.30, -4.00),  # same name, other city
        ]
    )
    engine = _engine(places=places)

    results = asyncio.run(engine.search("marché central"))
    same_name = [c for c in results if fold_text(c.title) == "marche central"]

    assert [c.id for c in same_name] == ["kin-market", "N2"]


def test_all_sources_failing_sets_error_flag():
    engine = _engine(directory=FailingDirectory(), places=FakePlaces(fail=True))

    results = asyncio.run(engine.search("gombe"))

    assert list(results) == []
    assert results.error is True


def test_one_source_failing_still_returns_results():
    places = FakePlaces([_place("N5", "Gombe Pharmacie", -4.31, 15.30)])
    engine = _engine(directory=FailingDirectory(), places=places)

    results = asyncio.run(engine.search("gombe"))

    assert [c.id for c in results] == ["N5"]
    assert results.error is False


def test_new_query_supersedes_pending_one():
    directory = CountingDirectory()
    engine = _engine(directory=directory, debounce_ms=50)

    async def scenario():
        first = asyncio.ensure_future(engine.search("gom"))
        await asyncio.sleep(0)
        second = await engine.search("gombe")
        return await first, second

    first, second = asyncio.run(scenario())

    assert first.superseded is True
    assert list(first) == []
    assert second.superseded is False
    assert directory.queries == ["gombe"]
    assert engine.latest is second


def test_empty_query_supersedes_pending_live_query():
    directory = CountingDirectory()
    engine = _engine(directory=directory, debounce_ms=50)

    async def scenario():
        live = asyncio.ensure_future(engine.search("gombe"))
        await asyncio.sleep(0)
        popular = await engine.search("")
        return await live, popular

    live, popular = asyncio.run(scenario())

    assert live.superseded is True
    assert directory.queries == []
    assert engine.latest is popular


def test_published_results_fill_candidate_index():
    engine = _engine()
    results = asyncio.run(engine.search("aero"))

    assert set(engine.candidate_index) == {c.id for c in results}
    engine.reset()
    assert engine.candidate_index == {}
    assert len(engine.latest) == 0


def test_results_are_restartable_and_ordered_by_score_distance_title():
    candidates = [
        SearchCandidate("b", "Beta", "", 0, 0, CandidateSource.DIRECTORY, relevance_score=50, distance_meters=100),
        SearchCandidate("a", "Alpha", "", 0, 0, CandidateSource.DIRECTORY, relevance_score=50, distance_meters=100),
        SearchCandidate("c", "Gamma", "", 0, 0, CandidateSource.DIRECTORY, relevance_score=50, distance_meters=10),
        SearchCandidate("d", "Delta", "", 0, 0, CandidateSource.DIRECTORY, relevance_score=90),
    ]
    results = SearchResults(candidates)

    assert [c.id for c in results] == ["d", "c", "a", "b"]
    assert [c.id for c in results] == ["d", "c", "a", "b"]
    assert results[0].id == "d"
    assert len(results) == 4
