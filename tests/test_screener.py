import pytest
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.screener import (
    FILTER_PARAM_NAMES,
    FilterSpec,
    SortSpec,
    collation_key,
    enrich,
    metric_value,
    screen,
)
from core.metrics import NOT_COMPUTABLE


def _inst(symbol, last_price=1000, eps=100, volume=100, book_value=1000, shares=100,
          dividend=10, name=None, industry_id=1):
    return {
        "symbol": symbol,
        "name": name or f"{symbol} Holdings",
        "last_price": last_price,
        "last_price_change": 0,
        "volume": volume,
        "last_eps": eps,
        "book_value": book_value,
        "shares_outstanding": shares,
        "last_dividend": dividend,
        "industry_id": industry_id,
    }


@pytest.fixture
def market():
    return [
        _inst("AAA", last_price=1000, eps=100, volume=500),    # P/E 10
        _inst("BBB", last_price=3000, eps=100, volume=50),     # P/E 30
        _inst("CCC", last_price=1500, eps=0, volume=900),      # P/E not computable
        _inst("DDD", last_price=800, eps=50, volume=None),     # P/E 16, volume unknown
        _inst("EEE", last_price=500, eps=None, volume=300),    # P/E not computable
    ]


def _symbols(rows):
    return [r["symbol"] for r in rows]


def test_pe_band_excludes_not_computable(market):
    spec = FilterSpec.from_params({"minPE": 5, "maxPE": 20})
    result = screen(market, spec)
    assert _symbols(result) == ["AAA", "DDD"]


def test_single_bound_still_excludes_missing(market):
    spec = FilterSpec({"volume": (None, 600)})
    assert _symbols(screen(market, spec)) == ["AAA", "BBB", "EEE"]


def test_no_filters_passes_everything(market):
    assert len(screen(market)) == len(market)
    assert len(screen(market, FilterSpec.from_params({"minPE": "", "maxPE": None}))) == len(market)


def test_screen_output_subset_and_no_mutation(market):
    snapshot = [dict(s) for s in market]
    result = screen(market, FilterSpec({"price": (6, None)}), SortSpec("pe_ratio", "desc"))
    assert market == snapshot
    for row in result:
        assert row in market


def test_narrowing_filters_never_grows(market):
    loose = FilterSpec({"price": (1, None)})
    tight = loose.with_bound("volume", 100, None)
    tighter = tight.with_bound("price", 9, 16)
    a = set(_symbols(screen(market, loose)))
    b = set(_symbols(screen(market, tight)))
    c = set(_symbols(screen(market, tighter)))
    assert c <= b <= a


def test_crossed_bounds_pass_nothing(market):
    spec = FilterSpec({"price": (20, 10)})
    assert screen(market, spec) == []


def test_sort_missing_leads_ascending_trails_descending(market):
    asc = screen(market, sort_spec=SortSpec("pe_ratio", "asc"))
    assert _symbols(asc) == ["CCC", "EEE", "AAA", "DDD", "BBB"]
    desc = screen(market, sort_spec=SortSpec("pe_ratio", "desc"))
    assert _symbols(desc) == ["BBB", "DDD", "AAA", "CCC", "EEE"]


def test_sort_is_stable_both_directions():
    rows = [
        _inst("X1", last_price=1000),
        _inst("X2", last_price=2000),
        _inst("X3", last_price=1000),
        _inst("X4", last_price=2000),
    ]
    assert _symbols(screen(rows, sort_spec=SortSpec("price", "asc"))) == ["X1", "X3", "X2", "X4"]
    assert _symbols(screen(rows, sort_spec=SortSpec("price", "desc"))) == ["X2", "X4", "X1", "X3"]


def test_toggle_same_key_reverses_order(market):
    asc = SortSpec().toggle("volume")
    assert asc == SortSpec("volume", "asc")
    desc = asc.toggle("volume")
    assert desc.descending
    a = _symbols(screen(market, sort_spec=asc))
    d = _symbols(screen(market, sort_spec=desc))
    # all volumes are distinct, so the order fully reverses
    assert d == list(reversed(a))


def test_toggle_new_key_starts_ascending():
    spec = SortSpec("price", "desc").toggle("name")
    assert spec == SortSpec("name", "asc")


def test_default_sort_is_symbol_ascending(market):
    shuffled = [market[3], market[0], market[4], market[1], market[2]]
    assert _symbols(screen(shuffled)) == ["AAA", "BBB", "CCC", "DDD", "EEE"]


def test_string_sort_ignores_case_and_accents():
    rows = [
        _inst("S1", name="zeta"),
        _inst("S2", name="Émile"),
        _inst("S3", name="alpha"),
        _inst("S4", name="Beta"),
    ]
    assert _symbols(screen(rows, sort_spec=SortSpec("name"))) == ["S3", "S4", "S2", "S1"]
    assert collation_key("Émile")[0] == "emile"


def test_invalid_specs_rejected():
    with pytest.raises(ValueError):
        SortSpec("not_a_field")
    with pytest.raises(ValueError):
        SortSpec("price", "sideways")
    with pytest.raises(ValueError):
        FilterSpec({"beta": (1, 2)})
    with pytest.raises(ValueError):
        FilterSpec.from_params({"minPrice": "cheap"})


def test_from_params_round_trip():
    spec = FilterSpec.from_params({"minPrice": "10", "maxDividendYield": 4.5, "unrelated": "x"})
    assert spec.bounds == {"price": (10.0, None), "dividend_yield": (None, 4.5)}
    params = spec.to_params()
    assert set(params) == set(FILTER_PARAM_NAMES)
    assert params["minPrice"] == 10.0
    assert params["maxDividendYield"] == 4.5
    assert params["maxPrice"] == ""


def test_with_bound_clearing():
    spec = FilterSpec().with_bound("price", 1, 2)
    assert spec.active == {"price": (1, 2)}
    assert spec.with_bound("price").active == {}


def test_metric_value_raw_and_derived():
    inst = _inst("AAA", volume=None)
    assert metric_value(inst, "volume") is NOT_COMPUTABLE
    assert metric_value(inst, "price") == 10.0


def test_enrich_serialises_not_computable():
    row = enrich(_inst("CCC", eps=0))
    assert row["pe_ratio"] is None
    assert row["price"] == 10.0
    assert row["symbol"] == "CCC"


def test_numeric_industry_ids_sort_numerically():
    rows = [
        _inst("I10", industry_id=10),
        _inst("I9", industry_id=9),
        _inst("I2", industry_id=2),
    ]
    asc = screen(rows, sort_spec=SortSpec("industry_id"))
    assert [r["industry_id"] for r in asc] == [2, 9, 10]
    desc = screen(rows, sort_spec=SortSpec("industry_id", "desc"))
    assert [r["industry_id"] for r in desc] == [10, 9, 2]


def test_mixed_numeric_and_text_ids_do_not_raise():
    rows = [_inst("T1", industry_id="mining"), _inst("N1", industry_id=7), _inst("N2", industry_id=3)]
    assert _symbols(screen(rows, sort_spec=SortSpec("industry_id"))) == ["N2", "N1", "T1"]


@pytest.mark.parametrize("raw", ["nan", "NaN", "inf", "-inf", float("nan"), "1e400", 10 ** 400])
def test_from_params_rejects_non_finite(raw):
    with pytest.raises(ValueError):
        FilterSpec.from_params({"minPE": raw})
