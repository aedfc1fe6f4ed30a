"""
Condenses the screened market snapshot into text / JSON for the
generative features. Values come from core.metrics, so anything
NOT_COMPUTABLE is rendered as "N/A" and never as a number.
"""
import json

from core.metrics import (
    derive_metrics,
    format_currency,
    format_large_number,
    format_metric,
    is_computable,
)
from data.normalizers import render_news

PICKER_STOCK_LIMIT = 10
QA_NEWS_LIMIT = 3


def _rounded(value, digits=2):
    if not is_computable(value):
        return "N/A"
    return round(float(value), digits)


def _scaled(value):
    if value is None:
        return "N/A"
    try:
        return round(value / 100, 2)
    except OverflowError:
        return "N/A"


def digest_row(instrument: dict) -> dict:
    m = derive_metrics(instrument)
    return {
        "symbol": instrument.get("symbol"),
        "name": instrument.get("name"),
        "price": _rounded(m["price"]),
        "change": _scaled(instrument.get("last_price_change")),
        "percent_change": _rounded(m["percent_change"]),
        "volume": instrument.get("volume") if instrument.get("volume") is not None else "N/A",
        "eps": _scaled(instrument.get("last_eps")),
        "book_value": instrument.get("book_value") if instrument.get("book_value") is not None else "N/A",
        "shares_outstanding": instrument.get("shares_outstanding") if instrument.get("shares_outstanding") is not None else "N/A",
        "pe_ratio": _rounded(m["pe_ratio"]),
        "pb_ratio": _rounded(m["pb_ratio"]),
        "market_cap": _rounded(m["market_cap"]),
        "dividend": _scaled(instrument.get("last_dividend")),
        "dividend_yield": _rounded(m["dividend_yield"]),
        "industry": instrument.get("industry_id"),
    }


def summary_line(instrument: dict) -> str:
    m = derive_metrics(instrument)
    return (
        f"{instrument.get('name')} ({instrument.get('symbol')}): "
        f"Price ${format_currency(instrument.get('last_price'))}, "
        f"Vol {format_large_number(instrument.get('volume'))}, "
        f"P/E {format_metric(m['pe_ratio'])}, "
        f"P/B {format_metric(m['pb_ratio'])}, "
        f"Div. Yield {format_metric(m['dividend_yield'])}%"
    )


def full_line(instrument: dict) -> str:
    m = derive_metrics(instrument)
    return (
        f"Stock: {instrument.get('name')} ({instrument.get('symbol')}), "
        f"Price: ${format_metric(m['price'])}, "
        f"Change: ${format_currency(instrument.get('last_price_change'))}, "
        f"%Change: {format_metric(m['percent_change'])}%, "
        f"Volume: {format_large_number(instrument.get('volume'))}, "
        f"EPS: ${format_currency(instrument.get('last_eps'))}, "
        f"Book Value: ${format_large_number(instrument.get('book_value'))}, "
        f"Shares Outstanding: {format_large_number(instrument.get('shares_outstanding'))}, "
        f"P/E: {format_metric(m['pe_ratio'])}, "
        f"P/B: {format_metric(m['pb_ratio'])}, "
        f"Market Cap: ${format_large_number(m['market_cap'])}, "
        f"Dividends per Share: ${format_currency(instrument.get('last_dividend'))}, "
        f"Dividend Yield: {format_metric(m['dividend_yield'])}%"
    )


def picker_market_text(instruments: list, limit: int = PICKER_STOCK_LIMIT) -> str:
    return "\n".join(summary_line(s) for s in instruments[:limit])


def market_json(instruments: list) -> str:
    return json.dumps([digest_row(s) for s in instruments], indent=2, default=str)


def qa_market_text(instruments: list) -> str:
    return "; ".join(full_line(s) for s in instruments)


def news_context(news: list, limit: int = QA_NEWS_LIMIT) -> str:
    if not news:
        return ""
    lines = [f"- {render_news(n)['headline']}" for n in news[:limit]]
    return "\n\nRecent Global News Summary:\n" + "\n".join(lines)


def detail_financials(instrument: dict) -> str:
    m = derive_metrics(instrument)
    lines = [
        f"- Last Price: ${format_currency(instrument.get('last_price'))}",
        f"- Last EPS: ${format_currency(instrument.get('last_eps'))}",
        f"- Book Value: ${format_large_number(instrument.get('book_value'))}",
        f"- Shares Outstanding: {format_large_number(instrument.get('shares_outstanding'))}",
        f"- P/E Ratio: {format_metric(m['pe_ratio'])}",
        f"- P/B Ratio: {format_metric(m['pb_ratio'])}",
        f"- Market Capital: ${format_large_number(m['market_cap'])}",
        f"- Most Recent Dividends per Share: ${format_currency(instrument.get('last_dividend'))}",
        f"- Dividend Yield: {format_metric(m['dividend_yield'])}%",
        f"- Volume: {format_large_number(instrument.get('volume'))}",
        f"- Change ($): {format_currency(instrument.get('last_price_change'))}",
        f"- % Change: {format_metric(m['percent_change'])}%",
    ]
    return "\n".join(lines)


def detail_news(detail: dict) -> str:
    instrument = detail.get("instrument") or {}
    news = detail.get("news") or []
    if not news:
        return "No recent specific news available for this stock."
    symbol = instrument.get("symbol") or detail.get("symbol") or ""
    industry = instrument.get("industry_name") or ""
    lines = []
    for n in news:
        rendered = render_news(n, symbol, industry)
        lines.append(f"- {rendered['headline']}: {rendered['body']}")
    return "\n".join(lines)
