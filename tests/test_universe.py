import datetime as dt

from circuitwatch.tracker.universe import count_by_underlying, resolve_universe
from tests._helpers import EXPIRY, catalog_row

TODAY = dt.date(2026, 10, 19)


def test_filters_option_type_underlying_and_expiry():
    rows = [
        catalog_row(1, "NIFTY", itype="CE"),
        catalog_row(2, "NIFTY", itype="FUT"),
        catalog_row(3, "RELIANCE", itype="PE"),
        catalog_row(4, "BANKNIFTY", itype="PE", expiry=TODAY - dt.timedelta(days=1)),
        catalog_row(5, "BANKNIFTY", itype="PE", expiry=TODAY),
        catalog_row(6, "nifty", itype="PE"),
        catalog_row(7, "NIFTY", itype="CE", expiry=None),
    ]
    out = resolve_universe(rows, ["NIFTY", "banknifty"], TODAY)
    assert [i.token for i in out] == [5, 1, 6]


def test_order_is_deterministic_and_tokens_unique():
    rows = [
        catalog_row(30, "NIFTY", strike=25100, itype="PE"),
        catalog_row(10, "NIFTY", strike=25000, itype="PE"),
        catalog_row(20, "NIFTY", strike=25000, itype="CE"),
        catalog_row(40, "BANKNIFTY", strike=56000, itype="CE"),
        catalog_row(10, "NIFTY", strike=25000, itype="PE"),
        catalog_row(50, "NIFTY", strike=25000, itype="CE", expiry=EXPIRY + dt.timedelta(days=7)),
    ]
    first = resolve_universe(rows, ["NIFTY", "BANKNIFTY"], TODAY)
    second = resolve_universe(list(reversed(rows)), ["NIFTY", "BANKNIFTY"], TODAY)
    assert [i.token for i in first] == [40, 20, 10, 30, 50]
    assert [i.token for i in second] == [i.token for i in first]


def test_empty_catalog_is_not_an_error():
    assert resolve_universe([], ["NIFTY"], TODAY) == []


def test_count_by_underlying():
    rows = [catalog_row(1, "NIFTY"), catalog_row(2, "NIFTY", itype="PE"), catalog_row(3, "SENSEX", exchange="BFO")]
    counts = count_by_underlying(resolve_universe(rows, ["NIFTY", "SENSEX"], TODAY))
    assert counts == {"NIFTY": 2, "SENSEX": 1}
