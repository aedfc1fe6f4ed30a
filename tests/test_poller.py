import asyncio
import pytest
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.poller import IDLE, Failed, Fetching, ResourcePoller, Settled, describe_error


class GatedFetch:
    """Call i blocks until gates[i] is set, then returns (or raises) results[i]."""

    def __init__(self, results):
        self.results = results
        self.gates = [asyncio.Event() for _ in results]
        self.calls = []

    async def __call__(self, *args):
        i = len(self.calls)
        self.calls.append(args)
        await self.gates[i].wait()
        result = self.results[i]
        if isinstance(result, Exception):
            raise result
        return result


def _open(fetch):
    for gate in fetch.gates:
        gate.set()


@pytest.mark.asyncio
async def test_settles_with_value():
    fetch = GatedFetch(["v1"])
    _open(fetch)
    p = ResourcePoller("t", fetch)
    assert p.state is IDLE
    p.activate()
    assert p.is_fetching
    await p.drain()
    assert p.state == Settled(1, None, "v1")
    assert p.value == "v1"
    assert p.error is None
    assert p.has_completed


@pytest.mark.asyncio
async def test_stale_response_never_overwrites_newer():
    fetch = GatedFetch(["old", "new"])
    p = ResourcePoller("t", fetch)
    p.activate(fetch_now=False)
    t1 = p.trigger()
    t2 = p.trigger()

    fetch.gates[1].set()
    await t2
    assert p.value == "new"

    fetch.gates[0].set()
    await t1
    assert p.value == "new"
    assert isinstance(p.state, Settled)
    assert p.state.request_id == 2
    assert p.stale_discarded == 1


@pytest.mark.asyncio
async def test_stale_failure_is_discarded():
    fetch = GatedFetch([RuntimeError("late boom"), "ok"])
    p = ResourcePoller("t", fetch)
    p.activate(fetch_now=False)
    t1 = p.trigger()
    t2 = p.trigger()
    fetch.gates[1].set()
    await t2
    fetch.gates[0].set()
    await t1
    assert p.value == "ok"
    assert p.error is None
    assert p.stale_discarded == 1


@pytest.mark.asyncio
async def test_failure_keeps_last_good_value():
    fetch = GatedFetch(["good", RuntimeError("boom")])
    _open(fetch)
    p = ResourcePoller("t", fetch)
    p.activate()
    await p.drain()
    p.trigger()
    assert isinstance(p.state, Fetching)
    assert p.value == "good"
    await p.drain()
    assert isinstance(p.state, Failed)
    assert p.value == "good"
    assert describe_error(p.error) == "boom"


@pytest.mark.asyncio
async def test_error_visible_while_refetching_then_cleared():
    fetch = GatedFetch([RuntimeError("down"), "up"])
    fetch.gates[0].set()
    p = ResourcePoller("t", fetch)
    p.activate()
    await p.drain()
    assert isinstance(p.state, Failed)
    assert p.value is None

    p.trigger()
    assert p.is_fetching
    assert describe_error(p.error) == "down"
    fetch.gates[1].set()
    await p.drain()
    assert p.value == "up"
    assert p.error is None


@pytest.mark.asyncio
async def test_on_change_runs_after_each_resolution():
    fetch = GatedFetch(["a", RuntimeError("x")])
    _open(fetch)
    seen = []
    p = ResourcePoller("t", fetch, on_change=lambda poller: seen.append(type(poller.state).__name__))
    p.activate()
    await p.drain()
    p.trigger()
    await p.drain()
    assert seen == ["Settled", "Failed"]


@pytest.mark.asyncio
async def test_on_change_error_does_not_break_poller():
    fetch = GatedFetch(["a"])
    _open(fetch)

    def explode(poller):
        raise RuntimeError("handler bug")

    p = ResourcePoller("t", fetch, on_change=explode)
    p.activate()
    await p.drain()
    assert p.value == "a"


@pytest.mark.asyncio
async def test_keyed_poller_waits_for_key():
    fetch = GatedFetch(["detail-A"])
    _open(fetch)
    p = ResourcePoller("detail", fetch, keyed=True)
    p.activate()
    assert p.state is IDLE
    assert p.trigger() is None

    p.retarget("A")
    await p.drain()
    assert fetch.calls == [("A",)]
    assert p.state == Settled(1, "A", "detail-A")


@pytest.mark.asyncio
async def test_retarget_discards_previous_key_response():
    fetch = GatedFetch(["detail-A", "detail-B"])
    p = ResourcePoller("detail", fetch, keyed=True)
    p.activate()
    ta = p.retarget("A")
    tb = p.retarget("B")
    fetch.gates[1].set()
    await tb
    fetch.gates[0].set()
    await ta
    assert p.key == "B"
    assert p.value == "detail-B"
    assert p.stale_discarded == 1


@pytest.mark.asyncio
async def test_last_good_is_scoped_to_key():
    fetch = GatedFetch(["detail-A", "detail-B"])
    fetch.gates[0].set()
    p = ResourcePoller("detail", fetch, keyed=True)
    p.activate()
    p.retarget("A")
    await p.drain()
    assert p.value == "detail-A"

    p.retarget("B")
    assert p.is_fetching
    assert p.value is None
    fetch.gates[1].set()
    await p.drain()
    assert p.value == "detail-B"


@pytest.mark.asyncio
async def test_clear_drops_value_and_in_flight():
    fetch = GatedFetch(["detail-A", "detail-A2"])
    fetch.gates[0].set()
    p = ResourcePoller("detail", fetch, keyed=True)
    p.activate()
    p.retarget("A")
    await p.drain()

    t = p.trigger()
    p.retarget(None)
    assert p.state is IDLE
    assert p.key is None
    fetch.gates[1].set()
    await t
    assert p.state is IDLE
    assert p.value is None


@pytest.mark.asyncio
async def test_teardown_discards_in_flight_and_stops_triggers():
    fetch = GatedFetch(["first", "second"])
    fetch.gates[0].set()
    p = ResourcePoller("t", fetch)
    p.activate()
    await p.drain()

    t = p.trigger()
    p.teardown()
    assert not p.is_active
    assert isinstance(p.state, Settled)
    assert p.value == "first"
    fetch.gates[1].set()
    await t
    assert p.value == "first"
    assert p.stale_discarded == 1
    assert p.trigger() is None


@pytest.mark.asyncio
async def test_interval_polls_repeatedly():
    calls = []

    async def fetch():
        calls.append(1)
        return len(calls)

    p = ResourcePoller("t", fetch, interval=0.01)
    p.activate()
    await asyncio.sleep(0.1)
    p.teardown()
    await p.drain()
    assert len(calls) >= 3
    count = len(calls)
    await asyncio.sleep(0.05)
    assert len(calls) == count


@pytest.mark.asyncio
async def test_status_snapshot():
    fetch = GatedFetch([RuntimeError("")])
    _open(fetch)
    p = ResourcePoller("market", fetch)
    p.activate()
    await p.drain()
    s = p.status()
    assert s["name"] == "market"
    assert s["state"] == "failed"
    assert s["error"] == "RuntimeError"
    assert s["completed"] == 1
