"""
Aggregation orchestrator.

Owns three pollers against the game service:
  - market:  instrument list, portfolio, news summary, player fragment
  - profile: profile record, overlaid onto the player fragment
  - detail:  one instrument's detail, keyed by the selected symbol

Market and profile poll on activation and then every refresh interval.
The detail poller has no timer; it is retargeted whenever the selection
changes. Timer ticks arriving during a manual fetch reduce to the
poller's stale-response rule.

The orchestrator is the only writer of the merged player record and of
the selection. Screening runs synchronously over whatever snapshot is
current and never touches poller state.
"""
import asyncio

from core.poller import ResourcePoller, Settled, describe_error
from core.screener import FilterSpec, SortSpec, enrich, screen
from core.metrics import derive_metrics
from data.normalizers import render_news, split_orders

DEFAULT_REFRESH_INTERVAL = 60.0

_EMPTY_MARKET = {"instruments": [], "portfolio": [], "news": [], "player": None}


class MarketOrchestrator:
    def __init__(self, client, refresh_interval: float = DEFAULT_REFRESH_INTERVAL):
        self.client = client
        self.refresh_interval = refresh_interval
        self.market = ResourcePoller(
            "market", self._fetch_market, interval=refresh_interval, on_change=self._on_market_change,
        )
        self.profile = ResourcePoller(
            "profile", self._fetch_profile, interval=refresh_interval, on_change=self._on_profile_change,
        )
        self.detail = ResourcePoller("detail", self._fetch_detail, keyed=True)
        self._selected_symbol = None
        self._selection_made = False
        self._player = None
        self._active = False

    # ---- fetchers ----------------------------------------------------

    async def _fetch_market(self) -> dict:
        return await self.client.get_share_market()

    async def _fetch_profile(self):
        profile = await self.client.get_profile_detail()
        if profile is None:
            # no profile in the response: keep the previously merged one
            return self.profile.value
        return profile

    async def _fetch_detail(self, symbol: str) -> dict:
        return await self.client.get_share_detail(symbol)

    # ---- lifecycle ---------------------------------------------------

    def activate(self):
        if self._active:
            return
        self._active = True
        print(f"[ORCH] Activating, refresh every {self.refresh_interval}s")
        self.market.activate()
        self.profile.activate()
        self.detail.activate(fetch_now=False)
        if self._selected_symbol is not None:
            self.detail.retarget(self._selected_symbol)

    def refresh(self):
        """On-demand market + profile poll, outside the timer."""
        self.market.trigger()
        self.profile.trigger()

    def teardown(self):
        self._active = False
        for poller in self.pollers:
            poller.teardown()
        print("[ORCH] Torn down")

    async def drain(self):
        """Wait until no poller has an outstanding fetch task."""
        # a settling poller can start fetches on another (auto-select -> detail)
        while any(p.has_pending for p in self.pollers):
            await asyncio.gather(*(p.drain() for p in self.pollers))

    @property
    def pollers(self) -> tuple:
        return (self.market, self.profile, self.detail)

    # ---- change handlers ---------------------------------------------

    def _on_market_change(self, poller):
        self._rebuild_player()
        if self._selection_made or not isinstance(poller.state, Settled):
            return
        market = poller.value or _EMPTY_MARKET
        instruments = market.get("instruments") or []
        if instruments:
            first = instruments[0]["symbol"]
            print(f"[ORCH] Auto-selecting first instrument {first}")
            self._apply_selection(first)

    def _on_profile_change(self, poller):
        self._rebuild_player()

    def _rebuild_player(self):
        market = self.market.value or _EMPTY_MARKET
        fragment = market.get("player")
        profile = self.profile.value
        if fragment is None and profile is None:
            self._player = None
            return
        merged = dict(fragment or {})
        merged.update(profile or {})
        self._player = merged

    # ---- selection ---------------------------------------------------

    def select(self, symbol):
        """User selection. Empty/None clears the detail without a fetch."""
        if isinstance(symbol, str):
            symbol = symbol.strip() or None
        self._apply_selection(symbol)

    def _apply_selection(self, symbol):
        self._selection_made = True
        if symbol == self._selected_symbol and symbol is not None:
            return
        self._selected_symbol = symbol
        if symbol is None:
            self.detail.clear()
            return
        if self.detail.is_active:
            self.detail.retarget(symbol)

    @property
    def selected_symbol(self):
        return self._selected_symbol

    # ---- read side ---------------------------------------------------

    @property
    def instruments(self) -> list:
        return (self.market.value or _EMPTY_MARKET)["instruments"]

    @property
    def portfolio(self) -> list:
        return (self.market.value or _EMPTY_MARKET)["portfolio"]

    @property
    def news(self) -> list:
        return (self.market.value or _EMPTY_MARKET)["news"]

    @property
    def player(self) -> dict | None:
        return self._player

    @property
    def profile_record(self) -> dict | None:
        return self.profile.value

    @property
    def share_detail(self) -> dict | None:
        detail = self.detail.value
        if detail is None or self.detail.key != self._selected_symbol:
            return None
        return detail

    @property
    def initial_load_complete(self) -> bool:
        return self.market.has_completed and self.profile.has_completed

    @property
    def is_updating(self) -> bool:
        return any(p.is_fetching for p in self.pollers)

    @property
    def errors(self) -> dict:
        return {p.name: describe_error(p.error) for p in self.pollers if p.error is not None}

    @property
    def error(self) -> str:
        """Combined error text; empty when every poller is healthy."""
        return "; ".join(f"{name}: {message}" for name, message in self.errors.items())

    def screen(self, filter_spec: FilterSpec | None = None, sort_spec: SortSpec | None = None) -> list:
        return screen(self.instruments, filter_spec, sort_spec)

    def detail_view(self) -> dict | None:
        detail = self.share_detail
        if detail is None:
            return None
        instrument = detail.get("instrument")
        industry = (instrument or {}).get("industry_name") or (instrument or {}).get("industry_id") or ""
        buys, sells = split_orders(detail.get("orders") or [])
        return {
            "symbol": detail["symbol"],
            "instrument": enrich(instrument) if instrument else None,
            "order_summary": detail.get("order_summary"),
            "buy_orders": buys,
            "sell_orders": sells,
            "news": [render_news(n, detail["symbol"], str(industry)) for n in detail.get("news") or []],
            "history": detail.get("history") or {},
        }

    def view_model(self, filter_spec: FilterSpec | None = None, sort_spec: SortSpec | None = None) -> dict:
        filter_spec = filter_spec or FilterSpec()
        sort_spec = sort_spec or SortSpec()
        return {
            "loading": not self.initial_load_complete,
            "updating": self.is_updating,
            "error": self.error or None,
            "errors": self.errors,
            "player": self.player,
            "portfolio": self.portfolio,
            "news": [render_news(n) for n in self.news],
            "stocks": [enrich(s) for s in self.screen(filter_spec, sort_spec)],
            "total_stocks": len(self.instruments),
            "filters": filter_spec.to_params(),
            "sort": {"key": sort_spec.key, "direction": sort_spec.direction},
            "selected_symbol": self._selected_symbol,
            "detail": self.detail_view(),
            "pollers": [p.status() for p in self.pollers],
        }

    def dataset(self, instruments: list | None = None) -> dict:
        """Pre-derived dataset handed to the generative features."""
        rows = []
        for inst in self.instruments if instruments is None else instruments:
            metrics = derive_metrics(inst)
            rows.append({"instrument": inst, "metrics": metrics})
        return {
            "stocks": rows,
            "portfolio": self.portfolio,
            "news": [render_news(n) for n in self.news],
            "detail": self.share_detail,
        }
