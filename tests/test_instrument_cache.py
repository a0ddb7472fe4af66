import pytest

from circuitwatch.broker.kite.instruments import InstrumentCache
from circuitwatch.errors import CatalogError
from tests._helpers import catalog_row


class FakeFetch:
    def __init__(self, *results):
        self.results = list(results)
        self.calls = []

    def __call__(self, segment):
        self.calls.append(segment)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result


def _cache(fetch, ttl=600.0):
    clock = {"now": 0.0}
    return InstrumentCache(fetch, ttl=ttl, clock=lambda: clock["now"]), clock


def test_rows_are_cached_per_segment_until_ttl():
    fetch = FakeFetch([catalog_row(1)])
    cache, clock = _cache(fetch, ttl=60)
    assert cache.get("nfo") == [catalog_row(1)]
    cache.get("NFO")
    assert fetch.calls == ["NFO"]
    cache.get("BFO")
    assert fetch.calls == ["NFO", "BFO"]
    clock["now"] = 61
    cache.get("NFO")
    assert fetch.calls == ["NFO", "BFO", "NFO"]


def test_force_refresh_and_invalidate():
    fetch = FakeFetch([catalog_row(1)])
    cache, _ = _cache(fetch)
    cache.get("NFO")
    cache.get("NFO", force_refresh=True)
    cache.invalidate("nfo")
    cache.get("NFO")
    assert len(fetch.calls) == 3


def test_empty_first_result_is_retried_once_and_expires_quickly():
    fetch = FakeFetch([], [catalog_row(2)])
    cache, _ = _cache(fetch)
    assert cache.get("NFO") == [catalog_row(2)]
    assert fetch.calls == ["NFO", "NFO"]

    empty = FakeFetch([])
    cache, clock = _cache(empty)
    assert cache.get("NFO") == []
    assert len(empty.calls) == 2
    cache.get("NFO")
    assert len(empty.calls) == 2
    clock["now"] = 6
    cache.get("NFO")
    assert len(empty.calls) == 4


def test_failures_surface_as_catalog_error():
    cache, _ = _cache(FakeFetch(ConnectionError("boom")))
    with pytest.raises(CatalogError, match="NFO"):
        cache.get("NFO")
    cache, _ = _cache(FakeFetch({"not": "a list"}))
    with pytest.raises(CatalogError, match="unexpected instruments shape"):
        cache.get("NFO")
