"""
Resource poller.

One poller manages one remote resource: it owns the last good value, the
most recent error and the in-flight request, and re-fetches on three
triggers: activation, a fixed-interval timer and explicit demand
(trigger() / retarget()).

State is a single tagged record rather than parallel loading/error/value
flags:

    Idle -> Fetching -> Settled | Failed -> Fetching -> ...

Every fetch gets a monotonically increasing request id. A fetch whose id is
no longer the latest when it resolves is discarded, so a slow response to
request N can never overwrite the result of request N+1. In-flight
requests are never aborted; their results are simply dropped.

Runs on the asyncio event loop; no threads.
"""
import asyncio
from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Idle:
    pass


@dataclass(frozen=True)
class Fetching:
    request_id: int
    key: Any = None
    last_good: Any = None
    error: BaseException | None = None


@dataclass(frozen=True)
class Settled:
    request_id: int
    key: Any = None
    value: Any = None


@dataclass(frozen=True)
class Failed:
    request_id: int
    key: Any = None
    error: BaseException | None = None
    last_good: Any = None


IDLE = Idle()


def describe_error(error) -> str:
    if error is None:
        return ""
    message = str(error)
    return message or type(error).__name__


class ResourcePoller:
    """
    fetch is an async callable. Keyed pollers call fetch(key); unkeyed
    pollers call fetch(). on_change(poller) runs after every non-stale
    resolution (Settled or Failed) and after clear().
    """

    def __init__(self, name: str, fetch, interval: float | None = None, keyed: bool = False, on_change=None):
        self.name = name
        self.interval = interval
        self.keyed = keyed
        self._fetch = fetch
        self._on_change = on_change
        self._state = IDLE
        self._key = None
        self._request_seq = 0
        self._active = False
        self._timer_task: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._completed = 0
        self._stale_discarded = 0

    # ---- read side ---------------------------------------------------

    @property
    def state(self):
        return self._state

    @property
    def key(self):
        return self._key

    @property
    def value(self):
        s = self._state
        if isinstance(s, Settled):
            return s.value
        if isinstance(s, (Fetching, Failed)):
            return s.last_good
        return None

    @property
    def error(self) -> BaseException | None:
        s = self._state
        if isinstance(s, (Fetching, Failed)):
            return s.error
        return None

    @property
    def is_fetching(self) -> bool:
        return isinstance(self._state, Fetching)

    @property
    def has_completed(self) -> bool:
        return self._completed > 0

    @property
    def has_pending(self) -> bool:
        return any(not t.done() for t in self._tasks)

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def stale_discarded(self) -> int:
        return self._stale_discarded

    def status(self) -> dict:
        return {
            "name": self.name,
            "state": type(self._state).__name__.lower(),
            "key": self._key,
            "active": self._active,
            "fetching": self.is_fetching,
            "error": describe_error(self.error) or None,
            "completed": self._completed,
            "stale_discarded": self._stale_discarded,
        }

    # ---- triggers ----------------------------------------------------

    def activate(self, fetch_now: bool = True):
        if self._active:
            return
        self._active = True
        if fetch_now and (not self.keyed or self._key is not None):
            self.trigger()
        if self.interval:
            self._timer_task = asyncio.get_running_loop().create_task(self._tick_loop())

    def trigger(self) -> asyncio.Task | None:
        """Start a new fetch for the current key; supersedes any in-flight one."""
        if not self._active:
            print(f"[POLLER] {self.name}: trigger ignored, poller inactive")
            return None
        if self.keyed and self._key is None:
            return None

        self._request_seq += 1
        request_id = self._request_seq
        key = self._key
        self._state = Fetching(request_id, key, self._last_good_for(key), self.error)

        task = asyncio.get_running_loop().create_task(self._run(request_id, key))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def retarget(self, key) -> asyncio.Task | None:
        """Point a keyed poller at a new key and fetch it; None clears."""
        if key is None:
            self.clear()
            return None
        if key != self._key:
            # last good value belongs to the previous key
            self._state = IDLE
        self._key = key
        return self.trigger()

    def clear(self):
        """Drop value and error and discard whatever is in flight."""
        self._request_seq += 1
        self._key = None
        self._state = IDLE
        self._notify()

    def teardown(self):
        self._active = False
        self._request_seq += 1
        if self._timer_task is not None:
            self._timer_task.cancel()
            self._timer_task = None
        if isinstance(self._state, Fetching):
            s = self._state
            if s.last_good is not None:
                self._state = Settled(s.request_id, s.key, s.last_good)
            elif s.error is not None:
                self._state = Failed(s.request_id, s.key, s.error, None)
            else:
                self._state = IDLE

    async def drain(self):
        """Wait for outstanding fetch tasks (their results may still be discarded)."""
        while True:
            pending = [t for t in self._tasks if not t.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    # ---- internals ---------------------------------------------------

    def _last_good_for(self, key):
        s = self._state
        if isinstance(s, Settled) and s.key == key:
            return s.value
        if isinstance(s, (Fetching, Failed)) and s.key == key:
            return s.last_good
        return None

    async def _tick_loop(self):
        try:
            while self._active:
                await asyncio.sleep(self.interval)
                if not self._active:
                    break
                self.trigger()
        except asyncio.CancelledError:
            pass

    async def _run(self, request_id: int, key):
        try:
            if self.keyed:
                value = await self._fetch(key)
            else:
                value = await self._fetch()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if request_id != self._request_seq:
                self._stale_discarded += 1
                print(f"[POLLER] {self.name}: discarded stale failure of request {request_id}: {e}")
                return
            self._completed += 1
            self._state = Failed(request_id, key, e, self._last_good_for(key))
            print(f"[POLLER] {self.name}: request {request_id} failed: {describe_error(e)}")
            self._notify()
            return

        if request_id != self._request_seq:
            self._stale_discarded += 1
            print(f"[POLLER] {self.name}: discarded stale response to request {request_id} "
                  f"(latest is {self._request_seq})")
            return
        self._completed += 1
        self._state = Settled(request_id, key, value)
        self._notify()

    def _notify(self):
        if self._on_change is None:
            return
        try:
            self._on_change(self)
        except Exception as e:
            print(f"[POLLER] {self.name}: on_change handler error: {e}")
