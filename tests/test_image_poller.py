import asyncio
import uuid

import pytest
from sqlalchemy.exc import OperationalError

from app.core.exceptions import StoreError
from app.services.image_poller import GoalImagePoller, LoadedImageCache, PollPolicy
from app.services.scheduling import Scheduler
from app.utils.goal_images import DEFAULT_IMAGES, resolve_fallback_image

REMOTE = "https://replicate.delivery/xezq/out-0.webp"
TITLE = "Save for a house"


class StatusStore:
    """Scripted image status per goal; the last entry repeats."""

    def __init__(self, script):
        self.script = list(script)
        self.reads = 0
        self.gate = None

    async def __call__(self, goal_id):
        self.reads += 1
        if self.gate is not None:
            await self.gate.wait()
        step = self.script.pop(0) if len(self.script) > 1 else self.script[0]
        if isinstance(step, Exception):
            raise step
        return step


def make_poller(read_status, policy, probe=None):
    updates = []
    cache = LoadedImageCache()
    scheduler = Scheduler("test")

    async def default_probe(url, timeout):
        return True

    poller = GoalImagePoller(
        read_status=read_status,
        on_update=updates.append,
        cache=cache,
        scheduler=scheduler,
        policy=policy,
        probe=probe or default_probe,
    )
    return poller, updates, cache, scheduler


async def test_unresolved_generation_is_finalized_after_max_attempts(fast_policy):
    goal_id = uuid.uuid4()
    store = StatusStore([(resolve_fallback_image(TITLE), True, TITLE)])
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    handle = poller.watch_new_goal(goal_id, TITLE)
    await handle.wait()

    assert store.reads == 15
    assert poller.attempts[goal_id] == 15
    assert goal_id in cache
    assert len(updates) == 1
    assert updates[0].source == "finalized"
    assert updates[0].image_url == resolve_fallback_image(TITLE)
    await scheduler.aclose()


async def test_watch_stops_at_the_deadline():
    policy = PollPolicy(initial_delay=0.0, interval=0.02, max_attempts=15, deadline=0.05,
                        sweep_interval=0.01, probe_timeout=0.05)
    goal_id = uuid.uuid4()
    store = StatusStore([(None, True, TITLE)])
    poller, updates, cache, scheduler = make_poller(store, policy)

    handle = poller.watch_new_goal(goal_id, TITLE)
    await asyncio.wait_for(handle.wait(), 1.0)

    assert store.reads < 15
    assert goal_id in cache
    assert updates[-1].source == "finalized"
    await scheduler.aclose()


async def test_generated_image_is_accepted_and_watch_exits_early(fast_policy):
    goal_id = uuid.uuid4()
    store = StatusStore([
        (DEFAULT_IMAGES[0], True, TITLE),
        (DEFAULT_IMAGES[0], True, TITLE),
        (REMOTE, False, TITLE),
    ])
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    await poller.watch_new_goal(goal_id, TITLE).wait()

    assert store.reads == 3
    assert len(updates) == 1
    update = updates[0]
    assert update.source == "generated"
    assert update.image_url.startswith(REMOTE + "?t=")
    assert update.image_refresh is True
    assert not poller.is_watching(goal_id)
    await scheduler.aclose()


async def test_one_watch_per_goal(fast_policy):
    goal_id = uuid.uuid4()
    poller, updates, cache, scheduler = make_poller(StatusStore([(REMOTE, False, TITLE)]), fast_policy)

    first = poller.watch_new_goal(goal_id, TITLE)
    second = poller.watch_new_goal(goal_id, TITLE)
    assert first is second

    await first.wait()
    assert poller.watch_new_goal(goal_id, TITLE) is None
    await scheduler.aclose()


async def test_sweep_never_rechecks_settled_goals(fast_policy):
    settled, pending = uuid.uuid4(), uuid.uuid4()
    seen = []

    async def read_status(goal_id):
        seen.append(goal_id)
        return None, True, TITLE

    poller, updates, cache, scheduler = make_poller(read_status, fast_policy)
    cache.add(settled)

    checked = await poller.sweep_once([settled, pending])

    assert checked == 1
    assert seen == [pending]
    await scheduler.aclose()


async def test_periodic_sweep_runs_until_stopped(fast_policy):
    goal_id = uuid.uuid4()
    store = StatusStore([(None, True, TITLE), (None, True, TITLE), (REMOTE, False, TITLE)])
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    poller.start_sweep(lambda: [goal_id])
    for _ in range(100):
        if goal_id in cache:
            break
        await asyncio.sleep(0.01)
    reads = store.reads
    await asyncio.sleep(0.05)

    assert goal_id in cache
    assert store.reads == reads
    assert [update.source for update in updates] == ["generated"]
    poller.stop_sweep()
    await scheduler.aclose()


async def test_sweep_stops_once_nothing_is_loading_and_restarts(fast_policy):
    first, second = uuid.uuid4(), uuid.uuid4()
    loading = [first]
    store = StatusStore([(REMOTE, False, TITLE)])
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    poller.start_sweep(lambda: loading)
    for _ in range(100):
        if not poller.sweeping:
            break
        await asyncio.sleep(0.01)

    assert first in cache
    assert not poller.sweeping
    assert scheduler.pending == 0

    loading.append(second)
    poller.start_sweep(lambda: loading)
    for _ in range(100):
        if second in cache:
            break
        await asyncio.sleep(0.01)

    assert [update.goal_id for update in updates] == [first, second]
    await scheduler.aclose()


async def test_read_error_skips_the_tick(fast_policy):
    goal_id = uuid.uuid4()
    store = StatusStore([
        StoreError("read_image_status", "connection lost"),
        OperationalError("SELECT", {}, Exception("db down")),
        (REMOTE, False, TITLE),
    ])
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    assert await poller.check(goal_id) is False
    assert await poller.check(goal_id) is False
    assert goal_id not in cache
    assert await poller.check(goal_id) is True
    assert goal_id in cache
    await scheduler.aclose()


async def test_watch_survives_read_errors(fast_policy):
    goal_id = uuid.uuid4()
    store = StatusStore([StoreError("read_image_status", "timeout"), (REMOTE, False, TITLE)])
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    await poller.watch_new_goal(goal_id, TITLE).wait()

    assert [update.source for update in updates] == ["generated"]
    await scheduler.aclose()


async def test_concurrent_checks_of_one_goal_read_once(fast_policy):
    goal_id = uuid.uuid4()
    store = StatusStore([(REMOTE, False, TITLE)])
    store.gate = asyncio.Event()
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    first = asyncio.create_task(poller.check(goal_id))
    await asyncio.sleep(0)
    second = await poller.check(goal_id)
    store.gate.set()

    assert second is False
    assert await first is True
    assert store.reads == 1
    assert len(updates) == 1
    await scheduler.aclose()


async def test_settled_goal_ignores_late_read(fast_policy):
    goal_id = uuid.uuid4()
    store = StatusStore([(REMOTE, False, TITLE)])
    store.gate = asyncio.Event()
    poller, updates, cache, scheduler = make_poller(store, fast_policy)

    pending = asyncio.create_task(poller.check(goal_id))
    await asyncio.sleep(0)
    cache.add(goal_id)
    store.gate.set()

    assert await pending is True
    assert updates == []
    await scheduler.aclose()


async def test_static_url_with_cleared_flag_is_accepted(fast_policy):
    goal_id = uuid.uuid4()
    poller, updates, cache, scheduler = make_poller(StatusStore([(DEFAULT_IMAGES[2], False, TITLE)]), fast_policy)

    assert await poller.check(goal_id) is True
    assert updates[0].source == "static"
    assert updates[0].image_url == DEFAULT_IMAGES[2]
    await scheduler.aclose()


async def test_unrecognised_url_is_trusted_only_after_probe(fast_policy):
    good, bad = uuid.uuid4(), uuid.uuid4()
    urls = {good: "https://cdn.example.com/good.png", bad: "https://cdn.example.com/bad.png"}

    async def read_status(goal_id):
        return urls[goal_id], False, TITLE

    async def probe(url, timeout):
        return "good" in url

    poller, updates, cache, scheduler = make_poller(read_status, fast_policy, probe=probe)

    await poller.check(good)
    await poller.check(bad)

    by_goal = {update.goal_id: update for update in updates}
    assert by_goal[good].source == "probed"
    assert by_goal[good].image_url.startswith(urls[good])
    assert by_goal[bad].source == "fallback"
    assert by_goal[bad].image_error is True
    assert by_goal[bad].image_url == resolve_fallback_image(TITLE)
    await scheduler.aclose()


async def test_deleted_goal_stops_polling_without_update(fast_policy):
    goal_id = uuid.uuid4()
    poller, updates, cache, scheduler = make_poller(StatusStore([None]), fast_policy)

    await poller.watch_new_goal(goal_id, TITLE).wait()

    assert goal_id in cache
    assert updates == []
    await scheduler.aclose()


async def test_dispose_cancels_watches_without_finalizing():
    policy = PollPolicy(initial_delay=10.0, interval=1.0, max_attempts=15, deadline=30.0,
                        sweep_interval=3.0, probe_timeout=5.0)
    goal_id = uuid.uuid4()
    poller, updates, cache, scheduler = make_poller(StatusStore([(None, True, TITLE)]), policy)

    handle = poller.watch_new_goal(goal_id, TITLE)
    poller.dispose()
    await handle.wait()

    assert handle.cancelled
    assert updates == []
    assert goal_id not in cache
    await scheduler.aclose()
