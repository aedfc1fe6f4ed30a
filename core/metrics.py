"""
Metric deriver for instrument records.

The game service reports prices, EPS and dividends as integers scaled by
100, book value in whole currency units and share counts unscaled. This
module turns one canonical instrument dict (see data/normalizers.py) into
the ratios the screener and the dashboard show.

Pure functions only. Any ratio whose inputs are missing, or whose
denominator is zero, comes back as NOT_COMPUTABLE rather than 0, NaN or
infinity. A book value of 0 and a missing book value are different inputs
and can produce different results.
"""
import math


class NotComputable:
    """Typed stand-in for a derived metric that has no defined value."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self):
        return False

    def __repr__(self):
        return "NOT_COMPUTABLE"

    def __reduce__(self):
        return (NotComputable, ())


NOT_COMPUTABLE = NotComputable()

METRIC_NAMES = (
    "price",
    "percent_change",
    "pe_ratio",
    "pb_ratio",
    "market_cap",
    "dividend_yield",
)

PRICE_SCALE = 100


def is_computable(value) -> bool:
    return value is not NOT_COMPUTABLE and value is not None


def _finite(value):
    if isinstance(value, float) and not math.isfinite(value):
        return NOT_COMPUTABLE
    return value


def _divide(numerator, denominator):
    if not is_computable(numerator) or not is_computable(denominator):
        return NOT_COMPUTABLE
    if denominator == 0:
        return NOT_COMPUTABLE
    try:
        return _finite(numerator / denominator)
    except OverflowError:
        return NOT_COMPUTABLE


def _multiply(a, b):
    if not is_computable(a) or not is_computable(b):
        return NOT_COMPUTABLE
    try:
        return _finite(float(a) * float(b))
    except OverflowError:
        return NOT_COMPUTABLE


def price(instrument: dict):
    return _divide(instrument.get("last_price"), PRICE_SCALE)


def percent_change(instrument: dict):
    return _multiply(_divide(instrument.get("last_price_change"), instrument.get("last_price")), 100)


def pe_ratio(instrument: dict):
    eps = instrument.get("last_eps")
    if eps is None:
        return NOT_COMPUTABLE
    return _divide(price(instrument), _divide(eps, PRICE_SCALE))


def pb_ratio(instrument: dict):
    book_per_share = _divide(instrument.get("book_value"), instrument.get("shares_outstanding"))
    return _divide(price(instrument), book_per_share)


def market_cap(instrument: dict):
    return _multiply(price(instrument), instrument.get("shares_outstanding"))


def dividend_yield(instrument: dict):
    dividend = instrument.get("last_dividend")
    if dividend is None:
        return NOT_COMPUTABLE
    return _multiply(_divide(_divide(dividend, PRICE_SCALE), price(instrument)), 100)


_DERIVERS = {
    "price": price,
    "percent_change": percent_change,
    "pe_ratio": pe_ratio,
    "pb_ratio": pb_ratio,
    "market_cap": market_cap,
    "dividend_yield": dividend_yield,
}


def derive(instrument: dict, metric: str):
    """Compute a single derived metric by name."""
    try:
        fn = _DERIVERS[metric]
    except KeyError:
        raise ValueError(f"Unknown metric: {metric}") from None
    return fn(instrument)


def derive_metrics(instrument: dict) -> dict:
    return {name: fn(instrument) for name, fn in _DERIVERS.items()}


def to_json_value(value):
    """NOT_COMPUTABLE becomes None so views serialise it as null."""
    if value is NOT_COMPUTABLE:
        return None
    return value


def format_metric(value, digits: int = 2) -> str:
    if not is_computable(value):
        return "N/A"
    try:
        return f"{float(value):,.{digits}f}"
    except (TypeError, ValueError, OverflowError):
        return "N/A"


def format_currency(scaled_value) -> str:
    """Render a x100 scaled integer as currency units with two decimals."""
    if not is_computable(scaled_value):
        return "N/A"
    try:
        return f"{float(scaled_value) / PRICE_SCALE:,.2f}"
    except (TypeError, ValueError, OverflowError):
        return "N/A"


def format_large_number(value) -> str:
    if not is_computable(value):
        return "N/A"
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        return "N/A"
    if not math.isfinite(number):
        return "N/A"
    if number.is_integer():
        return f"{int(number):,}"
    return f"{number:,.2f}"
