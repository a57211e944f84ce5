from halal_finder.errors import ProxyExhaustedError, SourceNotConfiguredError
from halal_finder.models import Place
from halal_finder.notifications import SilentNotifier
from halal_finder.query_engine import ProviderQueryEngine
from halal_finder.retry import ClientRetryOrchestrator


def make_place(place_id):
    return Place(place_id, "Name", "Restaurant", "", "", "", 1.0, 1.0)


class FakeProvider:
    def __init__(self, result):
        self.result = result
        self.calls = []

    def search(self, latitude, longitude, radius_m):
        self.calls.append((latitude, longitude, radius_m))
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


def make_engine(overpass, places):
    sleeps = []
    orchestrator = ClientRetryOrchestrator(notifier=SilentNotifier(), sleep=sleeps.append)
    return ProviderQueryEngine(overpass, places, orchestrator), orchestrator, sleeps


def test_query_returns_batches_in_provider_order():
    overpass = FakeProvider([make_place("osm-node-1")])
    places = FakeProvider([make_place("fsq-1"), make_place("fsq-2")])
    engine, _, _ = make_engine(overpass, places)

    osm_batch, fsq_batch = engine.query(51.5, -0.1, 10000)

    assert [p.id for p in osm_batch] == ["osm-node-1"]
    assert [p.id for p in fsq_batch] == ["fsq-1", "fsq-2"]
    assert overpass.calls == [(51.5, -0.1, 10000)]
    assert places.calls == [(51.5, -0.1, 10000)]


def test_failing_provider_degrades_to_empty_batch():
    overpass = FakeProvider(ProxyExhaustedError("PROXY_ERROR: POST failed"))
    places = FakeProvider([make_place("fsq-1")])
    engine, _, sleeps = make_engine(overpass, places)

    osm_batch, fsq_batch = engine.query(51.5, -0.1, 10000)

    assert osm_batch == []
    assert [p.id for p in fsq_batch] == ["fsq-1"]
    assert len(overpass.calls) == 3
    assert sorted(sleeps) == [2.0, 4.0]


def test_unconfigured_provider_is_not_retried():
    overpass = FakeProvider([make_place("osm-node-1")])
    places = FakeProvider(SourceNotConfiguredError("no key"))
    engine, orchestrator, sleeps = make_engine(overpass, places)

    osm_batch, fsq_batch = engine.query(51.5, -0.1, 10000)

    assert len(osm_batch) == 1
    assert fsq_batch == []
    assert len(places.calls) == 1
    assert sleeps == []
    assert not orchestrator.safe_mode
