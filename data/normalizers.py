"""
Wire -> canonical record normalisation for the game service payloads.

The service uses terse keys (sID, lp, leps, ...). Everything past this
module works with snake_case dicts. Numeric fields that are absent or
unparseable become None ("unknown"); they are never defaulted to 0.
Collections that are missing or not lists become [].
"""

INSTRUMENT_FIELDS = {
    "sID": "symbol",
    "n": "name",
    "lp": "last_price",
    "lm": "last_price_change",
    "v": "volume",
    "leps": "last_eps",
    "bv": "book_value",
    "ts": "shares_outstanding",
    "ld": "last_dividend",
    "iID": "industry_id",
}
INSTRUMENT_NUMERIC = {
    "last_price", "last_price_change", "volume", "last_eps",
    "book_value", "shares_outstanding", "last_dividend",
}

PLAYER_FIELDS = {
    "a": "account_id",
    "dn": "display_name",
    "c": "cash",
    "s": "shares_value",
    "r": "investor_rating",
    "gn": "guild_name",
    "td": "total_dividends",
    "tt": "total_trading_profit",
    "ltp": "last_trading_profit",
    "tut": "tutorial_completed",
}
PLAYER_NUMERIC = {
    "cash", "shares_value", "investor_rating", "total_dividends",
    "total_trading_profit", "last_trading_profit",
}

NOT_AFFILIATED = "Not in a Guild/Firm"
TUTORIAL_COMPLETE_MARKER = 1008

HISTORY_BUCKETS = {
    "sharehistory1": "1m",
    "sharehistory5": "5m",
    "sharehistory15": "15m",
    "sharehistory60": "60m",
}


def as_number(value):
    """int/float passthrough, numeric strings parsed, everything else None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        text = value.strip().replace(",", "")
        if not text:
            return None
        try:
            return int(text)
        except ValueError:
            pass
        try:
            return as_number(float(text))
        except ValueError:
            return None
    return None


def _as_text(value, default=""):
    if value is None:
        return default
    return str(value)


def _as_list(value) -> list:
    return value if isinstance(value, list) else []


def normalize_instrument(raw) -> dict | None:
    if not isinstance(raw, dict):
        return None
    symbol = _as_text(raw.get("sID")).strip()
    if not symbol:
        return None

    out = {}
    for wire_key, name in INSTRUMENT_FIELDS.items():
        value = raw.get(wire_key)
        if name in INSTRUMENT_NUMERIC:
            out[name] = as_number(value)
        elif name == "industry_id":
            out[name] = value if value not in ("", None) else None
        else:
            out[name] = _as_text(value)
    out["symbol"] = symbol
    if not out["name"]:
        out["name"] = symbol
    if raw.get("iid") not in (None, ""):
        out["industry_name"] = _as_text(raw.get("iid"))
    return out


def normalize_instruments(raw_list) -> list:
    instruments = []
    seen = set()
    for raw in _as_list(raw_list):
        inst = normalize_instrument(raw)
        if inst is None:
            continue
        if inst["symbol"] in seen:
            print(f"[SMT] Duplicate instrument {inst['symbol']} in snapshot, keeping first")
            continue
        seen.add(inst["symbol"])
        instruments.append(inst)
    return instruments


def normalize_portfolio_entry(raw) -> dict | None:
    if not isinstance(raw, dict):
        return None
    symbol = _as_text(raw.get("sID")).strip()
    if not symbol:
        return None
    return {
        "symbol": symbol,
        "name": _as_text(raw.get("n")),
        "average_price": as_number(raw.get("ap")),
        "quantity": as_number(raw.get("q")),
        "last_price": as_number(raw.get("lp")),
    }


def normalize_news_item(raw) -> dict | None:
    if not isinstance(raw, dict):
        return None
    return {
        "headline": _as_text(raw.get("h")),
        "body": _as_text(raw.get("d")),
        "age_minutes": as_number(raw.get("tm")),
        "symbol": _as_text(raw.get("sid")),
        "industry": _as_text(raw.get("iid")),
    }


def normalize_player_record(raw) -> dict | None:
    """Map only the keys that are present, so a shallow overlay never blanks fields."""
    if not isinstance(raw, dict):
        return None
    out = {}
    for wire_key, name in PLAYER_FIELDS.items():
        if wire_key not in raw:
            continue
        value = raw[wire_key]
        if name in PLAYER_NUMERIC:
            out[name] = as_number(value)
        elif name == "guild_name":
            text = _as_text(value).strip()
            out[name] = NOT_AFFILIATED if text in ("", "None") else text
        elif name == "tutorial_completed":
            out[name] = as_number(value) == TUTORIAL_COMPLETE_MARKER
        else:
            out[name] = value
    return out


def parse_share_market(payload: dict) -> dict:
    return {
        "instruments": normalize_instruments(payload.get("sharemarket")),
        "portfolio": [p for p in map(normalize_portfolio_entry, _as_list(payload.get("portfolio"))) if p],
        "news": [n for n in map(normalize_news_item, _as_list(payload.get("newssummary"))) if n],
        "player": normalize_player_record(payload.get("playerdata")),
    }


def parse_profile(payload: dict) -> dict | None:
    profile = payload.get("profile")
    if not profile:
        return None
    return normalize_player_record(profile)


def normalize_order_summary(raw) -> dict | None:
    if not isinstance(raw, dict):
        return None
    ask_quantity = as_number(raw.get("sq"))
    return {
        "bid_quantity": as_number(raw.get("bq")),
        "buyer_count": as_number(raw.get("bn")),
        "ask_quantity": abs(ask_quantity) if ask_quantity is not None else None,
        "seller_count": as_number(raw.get("sn")),
    }


def normalize_orders(raw_list) -> list:
    orders = []
    for raw in _as_list(raw_list):
        if not isinstance(raw, dict):
            continue
        quantity = as_number(raw.get("q"))
        if quantity is None or quantity == 0:
            continue
        orders.append({"quantity": quantity, "price": as_number(raw.get("p"))})
    return orders


def split_orders(orders: list) -> tuple[list, list]:
    """Signed resting orders -> (buys, sells) with positive quantities."""
    buys = [{"quantity": o["quantity"], "price": o["price"]} for o in orders if o["quantity"] > 0]
    sells = [{"quantity": abs(o["quantity"]), "price": o["price"]} for o in orders if o["quantity"] < 0]
    return buys, sells


def parse_share_detail(payload: dict, symbol: str) -> dict:
    instrument = normalize_instrument(payload.get("sharedetail"))
    history = {}
    for wire_key, bucket in HISTORY_BUCKETS.items():
        series = [as_number(v) for v in _as_list(payload.get(wire_key))]
        history[bucket] = [v for v in series if v is not None]
    return {
        "symbol": instrument["symbol"] if instrument else symbol,
        "instrument": instrument,
        "order_summary": normalize_order_summary(payload.get("ordersummary")),
        "orders": normalize_orders(payload.get("orders")),
        "news": [n for n in map(normalize_news_item, _as_list(payload.get("sharenews"))) if n],
        "history": history,
    }


def render_news(item: dict, symbol: str | None = None, industry: str | None = None) -> dict:
    """Substitute %SID% / %INAME% placeholders for display."""
    sid = symbol if symbol is not None else item.get("symbol", "")
    iname = industry if industry is not None else item.get("industry", "")

    def fill(text):
        return (text or "").replace("%SID%", sid or "").replace("%INAME%", iname or "")

    return {
        "headline": fill(item.get("headline")),
        "body": fill(item.get("body")),
        "age_minutes": item.get("age_minutes"),
    }
