from decimal import Decimal

from circuitwatch.domain.models import CircuitState
from circuitwatch.tracker.state import CircuitStateStore
from tests._helpers import T0


def _state(lower, upper):
    return CircuitState(Decimal(lower), Decimal(upper), Decimal("1"), T0)


def test_upsert_get_and_len():
    store = CircuitStateStore()
    assert store.get(1) is None
    store.upsert(1, _state("1", "2"))
    store.upsert(1, _state("3", "4"))
    assert len(store) == 1
    assert 1 in store
    assert store.get(1).lower_limit == Decimal("3")


def test_snapshot_is_independent_copy():
    store = CircuitStateStore()
    store.upsert(1, _state("1", "2"))
    snap = store.snapshot()
    snap[1].lower_limit = Decimal("99")
    snap[2] = _state("5", "6")
    assert store.get(1).lower_limit == Decimal("1")
    assert len(store) == 1


def test_warm_start_never_overwrites_live_state():
    store = CircuitStateStore()
    store.upsert(1, _state("10", "20"))
    loaded = store.warm_start({1: _state("1", "2"), 2: _state("3", "4")})
    assert loaded == 1
    assert store.get(1).lower_limit == Decimal("10")
    assert store.get(2).upper_limit == Decimal("4")
