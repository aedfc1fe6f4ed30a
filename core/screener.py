"""
Stock screener: filter + sort over the current instrument snapshot.

screen() is a pure function of (instruments, filter spec, sort spec). It
never mutates the instrument dicts it is given and keeps no state between
calls, so any number of passes can run against the same snapshot.

Filtering is conservative: when a bound is set on a metric, an instrument
whose value for that metric is NOT_COMPUTABLE (or missing) is excluded.

Sorting is stable in both directions. Missing / NOT_COMPUTABLE values sort
as the smallest value, so they lead in ascending order and trail in
descending order.
"""
import math
import unicodedata
from dataclasses import dataclass, field

from core.metrics import NOT_COMPUTABLE, derive, derive_metrics, is_computable, to_json_value


FILTER_METRICS = ("price", "volume", "pe_ratio", "pb_ratio", "dividend_yield")

# Flat dashboard field names -> (metric, side)
FILTER_PARAM_NAMES = {
    "minPrice": ("price", "lower"),
    "maxPrice": ("price", "upper"),
    "minVolume": ("volume", "lower"),
    "maxVolume": ("volume", "upper"),
    "minPE": ("pe_ratio", "lower"),
    "maxPE": ("pe_ratio", "upper"),
    "minPB": ("pb_ratio", "lower"),
    "maxPB": ("pb_ratio", "upper"),
    "minDividendYield": ("dividend_yield", "lower"),
    "maxDividendYield": ("dividend_yield", "upper"),
}

RAW_SORT_KEYS = (
    "symbol",
    "name",
    "last_price",
    "last_price_change",
    "volume",
    "last_eps",
    "book_value",
    "shares_outstanding",
    "last_dividend",
    "industry_id",
)
DERIVED_SORT_KEYS = (
    "price",
    "percent_change",
    "pe_ratio",
    "pb_ratio",
    "market_cap",
    "dividend_yield",
)
SORT_KEYS = RAW_SORT_KEYS + DERIVED_SORT_KEYS

ASCENDING = "asc"
DESCENDING = "desc"


def metric_value(instrument: dict, name: str):
    """Raw field or derived metric, with missing raw fields as NOT_COMPUTABLE."""
    if name in DERIVED_SORT_KEYS:
        return derive(instrument, name)
    value = instrument.get(name)
    if value is None:
        return NOT_COMPUTABLE
    return value


@dataclass(frozen=True)
class FilterSpec:
    bounds: dict = field(default_factory=dict)

    def __post_init__(self):
        for metric, (lower, upper) in self.bounds.items():
            if metric not in FILTER_METRICS:
                raise ValueError(f"Unknown filter metric: {metric}")
            if lower is not None and upper is not None and lower > upper:
                print(f"[SCREENER] {metric} bounds cross ({lower} > {upper}); nothing will pass")

    def with_bound(self, metric: str, lower=None, upper=None) -> "FilterSpec":
        bounds = dict(self.bounds)
        if lower is None and upper is None:
            bounds.pop(metric, None)
        else:
            bounds[metric] = (lower, upper)
        return FilterSpec(bounds)

    @property
    def active(self) -> dict:
        return {m: b for m, b in self.bounds.items() if b[0] is not None or b[1] is not None}

    @classmethod
    def from_params(cls, params: dict) -> "FilterSpec":
        """Build from the dashboard's flat field names; blank values mean unset."""
        collected: dict[str, list] = {}
        for name, raw in params.items():
            if name not in FILTER_PARAM_NAMES:
                continue
            if raw is None or (isinstance(raw, str) and not raw.strip()):
                continue
            try:
                number = float(raw)
            except (TypeError, ValueError, OverflowError):
                raise ValueError(f"{name} must be a number, got {raw!r}") from None
            if not math.isfinite(number):
                raise ValueError(f"{name} must be a number, got {raw!r}")
            metric, side = FILTER_PARAM_NAMES[name]
            pair = collected.setdefault(metric, [None, None])
            pair[0 if side == "lower" else 1] = number
        return cls({m: (lo, hi) for m, (lo, hi) in collected.items()})

    def to_params(self) -> dict:
        out = {name: "" for name in FILTER_PARAM_NAMES}
        for name, (metric, side) in FILTER_PARAM_NAMES.items():
            bound = self.bounds.get(metric)
            if not bound:
                continue
            value = bound[0] if side == "lower" else bound[1]
            if value is not None:
                out[name] = value
        return out


@dataclass(frozen=True)
class SortSpec:
    key: str = "symbol"
    direction: str = ASCENDING

    def __post_init__(self):
        if self.key not in SORT_KEYS:
            raise ValueError(f"Unknown sort key: {self.key}")
        if self.direction not in (ASCENDING, DESCENDING):
            raise ValueError(f"Sort direction must be 'asc' or 'desc', got {self.direction!r}")

    def toggle(self, key: str) -> "SortSpec":
        if key == self.key:
            return SortSpec(key, DESCENDING if self.direction == ASCENDING else ASCENDING)
        return SortSpec(key, ASCENDING)

    @property
    def descending(self) -> bool:
        return self.direction == DESCENDING


def _passes(instrument: dict, filter_spec: FilterSpec) -> bool:
    for metric, (lower, upper) in filter_spec.active.items():
        value = metric_value(instrument, metric)
        if not is_computable(value):
            return False
        if lower is not None and value < lower:
            return False
        if upper is not None and value > upper:
            return False
    return True


def collation_key(text: str) -> tuple:
    """Locale-independent collation: accent- and case-insensitive, raw string breaks ties."""
    decomposed = unicodedata.normalize("NFKD", text)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return (stripped.casefold(), text)


def _sort_key(instrument: dict, key: str) -> tuple:
    value = metric_value(instrument, key)
    if not is_computable(value):
        return (0,)
    if isinstance(value, str):
        return (1, 1, collation_key(value))
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return (0,)
    # numbers compare numerically and ahead of any text values for the same key
    return (1, 0, value)


def screen(instruments, filter_spec: FilterSpec | None = None, sort_spec: SortSpec | None = None) -> list:
    filter_spec = filter_spec or FilterSpec()
    sort_spec = sort_spec or SortSpec()

    passed = [s for s in instruments if _passes(s, filter_spec)]
    # sorted() is stable and keeps input order for ties even with reverse=True
    return sorted(passed, key=lambda s: _sort_key(s, sort_spec.key), reverse=sort_spec.descending)


def enrich(instrument: dict) -> dict:
    """Instrument dict plus its derived metrics, NOT_COMPUTABLE as None."""
    row = dict(instrument)
    for name, value in derive_metrics(instrument).items():
        row[name] = to_json_value(value)
    return row
