from fastapi import FastAPI, Request, Header
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from pydantic import BaseModel, ConfigDict
from typing import Dict, Optional, Union

import asyncio
import uuid as _uuid
from datetime import datetime as _dt, timezone as _tz

from config import (
    AGENT_API_KEY,
    ANALYST_MODEL,
    ANALYST_TIMEOUT_SECONDS,
    ANTHROPIC_API_KEY,
    OPENAI_API_KEY,
    OPENAI_MODEL,
    REFRESH_INTERVAL_SECONDS,
    SMT_ACCOUNT_ID,
    SMT_BASE_URL,
    SMT_SESSION_TOKEN,
    SMT_TIMEOUT_SECONDS,
)
from core.screener import FILTER_PARAM_NAMES, FilterSpec, SortSpec, enrich
from api_budget import daily_budget

app = FastAPI(title="SMT Market Dashboard API")

limiter = Limiter(key_func=get_remote_address)
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    print(f"[VALIDATION_ERROR] path={request.url.path} method={request.method}")
    print(f"[VALIDATION_ERROR] errors={exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={
            "detail": exc.errors(),
            "message": "Request validation failed: check field names and types.",
            "request_id": str(_uuid.uuid4()),
            "as_of": _dt.now(_tz.utc).isoformat(),
        },
    )


app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

smt_client = None
orchestrator = None
analyst = None

# single-user screener state, driven by the dashboard controls
_filter_spec = FilterSpec()
_sort_spec = SortSpec()


@app.on_event("startup")
async def startup_event():
    global smt_client, orchestrator, analyst
    from data.smt_client import SMTClient
    from core.orchestrator import MarketOrchestrator
    from agent.market_analyst import MarketAnalyst

    if not SMT_ACCOUNT_ID or not SMT_SESSION_TOKEN:
        print("[INIT] WARNING: SMT_ACCOUNT_ID / SMT_SESSION_TOKEN not set, game service calls will fail")
    smt_client = SMTClient(SMT_BASE_URL, SMT_ACCOUNT_ID, SMT_SESSION_TOKEN, timeout=SMT_TIMEOUT_SECONDS)
    orchestrator = MarketOrchestrator(smt_client, refresh_interval=REFRESH_INTERVAL_SECONDS)
    analyst = MarketAnalyst(
        api_key=ANTHROPIC_API_KEY,
        openai_api_key=OPENAI_API_KEY,
        model=ANALYST_MODEL,
        openai_model=OPENAI_MODEL,
        timeout=ANALYST_TIMEOUT_SECONDS,
    )
    orchestrator.activate()
    print("[INIT] Orchestrator active")


@app.on_event("shutdown")
async def shutdown_event():
    if orchestrator is not None:
        orchestrator.teardown()
        # in-flight fetches are discarded, but must finish before the client closes
        await orchestrator.drain()
    if smt_client is not None:
        await smt_client.aclose()


# ============================================================
# Helpers
# ============================================================


def _error_envelope(code: str, message: str, details=None) -> dict:
    return {
        "type": "error",
        "error": {
            "code": code,
            "message": message,
            "details": details or {},
        },
        "request_id": str(_uuid.uuid4()),
        "as_of": _dt.now(_tz.utc).isoformat(),
    }


def _ok_envelope(data: dict) -> dict:
    return {
        "type": "ok",
        "data": data,
        "error": None,
        "as_of": _dt.now(_tz.utc).isoformat(),
    }


def _guard(api_key: Optional[str]) -> Optional[JSONResponse]:
    """Auth + readiness check shared by every /api route."""
    if not api_key or api_key != AGENT_API_KEY:
        return JSONResponse(status_code=403, content=_error_envelope("AUTH_FAILED", "Invalid or missing API key."))
    if orchestrator is None:
        return JSONResponse(
            status_code=503,
            content=_error_envelope("SERVER_STARTING", "Server is still starting up. Please try again in a moment."),
        )
    return None


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse(status_code=400, content=_error_envelope("BAD_REQUEST", message))


def _specs_from_query(query: dict) -> tuple[FilterSpec, SortSpec]:
    filter_spec = _filter_spec
    if any(name in query for name in FILTER_PARAM_NAMES):
        filter_spec = FilterSpec.from_params(query)
    sort_spec = _sort_spec
    if query.get("sort"):
        sort_spec = SortSpec(query["sort"], query.get("direction") or "asc")
    return filter_spec, sort_spec


# ============================================================
# API Routes
# ============================================================


@app.get("/")
async def root():
    return {"status": "running", "message": "SMT Market Dashboard API is live"}


@app.get("/ping")
async def ping():
    return {"status": "ok"}


@app.get("/health")
async def health():
    return {
        "status": "ok",
        "orchestrator_loaded": orchestrator is not None,
        "initial_load_complete": bool(orchestrator and orchestrator.initial_load_complete),
        "updating": bool(orchestrator and orchestrator.is_updating),
        "error": (orchestrator.error or None) if orchestrator else None,
        "analyst_provider": analyst.provider if analyst else None,
        "budget": daily_budget.status(),
    }


@app.get("/api/dashboard")
async def get_dashboard(request: Request, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    try:
        filter_spec, sort_spec = _specs_from_query(dict(request.query_params))
    except ValueError as e:
        return _bad_request(str(e))
    return _ok_envelope(orchestrator.view_model(filter_spec, sort_spec))


@app.get("/api/stocks")
async def get_stocks(request: Request, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    try:
        filter_spec, sort_spec = _specs_from_query(dict(request.query_params))
    except ValueError as e:
        return _bad_request(str(e))
    stocks = [enrich(s) for s in orchestrator.screen(filter_spec, sort_spec)]
    return _ok_envelope({
        "stocks": stocks,
        "count": len(stocks),
        "total": len(orchestrator.instruments),
        "filters": filter_spec.to_params(),
        "sort": {"key": sort_spec.key, "direction": sort_spec.direction},
    })


class FilterRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    filters: Dict[str, Optional[Union[float, str]]] = {}


@app.put("/api/screener/filters")
async def set_filters(body: FilterRequest, api_key: str = Header(None, alias="X-API-Key")):
    global _filter_spec
    denied = _guard(api_key)
    if denied:
        return denied
    try:
        _filter_spec = FilterSpec.from_params(body.filters)
    except ValueError as e:
        return _bad_request(str(e))
    print(f"[API] Filters set: {_filter_spec.active}")
    return _ok_envelope({"filters": _filter_spec.to_params()})


class SortRequest(BaseModel):
    key: str


@app.post("/api/screener/sort")
async def toggle_sort(body: SortRequest, api_key: str = Header(None, alias="X-API-Key")):
    global _sort_spec
    denied = _guard(api_key)
    if denied:
        return denied
    try:
        _sort_spec = _sort_spec.toggle(body.key)
    except ValueError as e:
        return _bad_request(str(e))
    return _ok_envelope({"sort": {"key": _sort_spec.key, "direction": _sort_spec.direction}})


class SelectRequest(BaseModel):
    symbol: Optional[str] = None


@app.post("/api/select")
async def select_stock(body: SelectRequest, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    orchestrator.select(body.symbol)
    print(f"[API] Selected {orchestrator.selected_symbol}")
    return _ok_envelope({"selected_symbol": orchestrator.selected_symbol})


@app.get("/api/detail")
async def get_detail(api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    detail_error = orchestrator.errors.get("detail")
    return _ok_envelope({
        "selected_symbol": orchestrator.selected_symbol,
        "updating": orchestrator.detail.is_fetching,
        "error": detail_error,
        "detail": orchestrator.detail_view(),
    })


@app.post("/api/refresh")
@limiter.limit("6/minute")
async def refresh(request: Request, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    orchestrator.refresh()
    return _ok_envelope({"updating": orchestrator.is_updating})


# ---- generative features ------------------------------------------


def _ai_response(result: dict) -> dict:
    if result.get("error"):
        return {
            "type": "error",
            "text": "",
            "error": {"code": "AI_FAILED", "message": result["error"]},
            "provider": result.get("provider"),
            "as_of": _dt.now(_tz.utc).isoformat(),
        }
    return {
        "type": "ok",
        "text": result.get("text", ""),
        "error": None,
        "provider": result.get("provider"),
        "as_of": _dt.now(_tz.utc).isoformat(),
    }


async def _run_ai(coro, label: str) -> dict:
    try:
        result = await asyncio.wait_for(coro, timeout=ANALYST_TIMEOUT_SECONDS + 30)
    except asyncio.TimeoutError:
        print(f"[API] {label} timed out")
        result = {"text": "", "error": f"{label} timed out. Please try again.", "provider": None}
    return _ai_response(result)


@app.post("/api/ai/analysis")
@limiter.limit("10/minute")
async def ai_stock_analysis(request: Request, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    return await _run_ai(analyst.analyze_stock(orchestrator.share_detail), "AI analysis")


@app.post("/api/ai/picks")
@limiter.limit("10/minute")
async def ai_stock_picks(request: Request, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    shown = orchestrator.screen(_filter_spec, _sort_spec)
    return await _run_ai(analyst.pick_stocks(shown), "AI stock picker")


@app.post("/api/ai/portfolio")
@limiter.limit("10/minute")
async def ai_portfolio(request: Request, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    return await _run_ai(analyst.recommend_portfolio(orchestrator.instruments), "AI portfolio recommendation")


class QuestionRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")
    question: Optional[str] = None


@app.post("/api/ai/ask")
@limiter.limit("10/minute")
async def ai_market_question(request: Request, body: QuestionRequest, api_key: str = Header(None, alias="X-API-Key")):
    denied = _guard(api_key)
    if denied:
        return denied
    return await _run_ai(
        analyst.answer_question(body.question or "", orchestrator.instruments, orchestrator.news),
        "AI market Q&A",
    )
