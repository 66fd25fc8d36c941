import asyncio
import threading
import time

import pytest

from modelhub.cache import SessionCache, SlotState
from modelhub.classifier import SessionConfig
from modelhub.errors import Cancelled, SessionBuildError
from modelhub.registry import PackagingKind


def make_config(model_id):
    return SessionConfig(
        model_id=model_id,
        packaging_kind=PackagingKind.LOCAL_SELF_CONTAINED,
        source=f"/models/{model_id}",
        weight_files=(f"{model_id}.gguf",),
    )


class RecordingBuild:
    """Build callable that tracks every session it created."""

    def __init__(self, make_session, delay=0.0, error=None):
        self.make_session = make_session
        self.delay = delay
        self.error = error
        self.calls = []
        self.sessions = []
        self.loaded_at_build = []

    def __call__(self, config):
        self.calls.append(config.model_id)
        self.loaded_at_build.append([s.model_id for s in self.sessions if s.loaded])
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        session = self.make_session(config.model_id)
        self.sessions.append(session)
        return session


async def wait_until(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_ready_session_is_reused(make_session):
    build = RecordingBuild(make_session)
    cache = SessionCache(build)

    first = await cache.acquire("a", make_config("a"))
    second = await cache.acquire("a", make_config("a"))

    assert first is second
    assert build.calls == ["a"]
    assert cache.state("a") is SlotState.READY
    assert cache.loaded_ids() == ["a"]


@pytest.mark.asyncio
async def test_concurrent_acquires_share_one_build(make_session):
    build = RecordingBuild(make_session, delay=0.2)
    cache = SessionCache(build)

    results = await asyncio.gather(
        cache.acquire("a", make_config("a")),
        cache.acquire("a", make_config("a")),
        cache.acquire("a", make_config("a")),
    )

    assert build.calls == ["a"]
    assert cache.build_count == 1
    assert results[0] is results[1] is results[2]


@pytest.mark.asyncio
async def test_concurrent_acquires_share_failure(make_session):
    build = RecordingBuild(make_session, delay=0.1, error=SessionBuildError("boom", "a"))
    cache = SessionCache(build)

    results = await asyncio.gather(
        cache.acquire("a", make_config("a")),
        cache.acquire("a", make_config("a")),
        return_exceptions=True,
    )

    assert build.calls == ["a"]
    assert all(isinstance(r, SessionBuildError) for r in results)
    assert cache.state("a") is None


@pytest.mark.asyncio
async def test_failed_load_leaves_slot_empty_and_retry_rebuilds(make_session):
    build = RecordingBuild(make_session, error=SessionBuildError("boom", "a"))
    cache = SessionCache(build)

    with pytest.raises(SessionBuildError):
        await cache.acquire("a", make_config("a"))
    assert cache.state("a") is None

    build.error = None
    session = await cache.acquire("a", make_config("a"))

    assert session.loaded
    assert build.calls == ["a", "a"]


@pytest.mark.asyncio
async def test_switching_evicts_before_next_load(make_session):
    build = RecordingBuild(make_session)
    cache = SessionCache(build, slots=1)

    first = await cache.acquire("a", make_config("a"))
    second = await cache.acquire("b", make_config("b"))

    assert not first.loaded
    assert second.loaded
    assert build.loaded_at_build == [[], []]
    assert cache.loaded_ids() == ["b"]


@pytest.mark.asyncio
async def test_multiple_slots_evict_least_recently_used(make_session):
    build = RecordingBuild(make_session)
    cache = SessionCache(build, slots=2)

    a = await cache.acquire("a", make_config("a"))
    b = await cache.acquire("b", make_config("b"))
    await cache.acquire("a", make_config("a"))
    c = await cache.acquire("c", make_config("c"))

    assert a.loaded and c.loaded
    assert not b.loaded
    assert sorted(cache.loaded_ids()) == ["a", "c"]


@pytest.mark.asyncio
async def test_ready_hit_not_blocked_by_eviction_waiting_on_generation(make_session):
    build = RecordingBuild(make_session)
    cache = SessionCache(build, slots=2)
    a = await cache.acquire("a", make_config("a"))
    b = await cache.acquire("b", make_config("b"))

    started = threading.Event()
    finish = threading.Event()

    def slow_generate(text, image):
        started.set()
        finish.wait(timeout=5)
        return "slow reply"

    a._generate_sync = slow_generate
    generation = asyncio.create_task(a.generate("hello"))
    await wait_until(started.is_set)

    load_c = asyncio.create_task(cache.acquire("c", make_config("c")))
    await asyncio.sleep(0.05)

    assert await asyncio.wait_for(cache.acquire("b", make_config("b")), 0.5) is b
    assert not load_c.done()
    assert a.loaded
    assert build.calls == ["a", "b"]

    finish.set()
    assert await generation == "slow reply"
    c = await load_c

    assert not a.loaded
    assert c.loaded
    assert build.loaded_at_build[-1] == ["b"]
    assert sorted(cache.loaded_ids()) == ["b", "c"]


@pytest.mark.asyncio
async def test_evict_ready_session(make_session):
    build = RecordingBuild(make_session)
    cache = SessionCache(build)
    session = await cache.acquire("a", make_config("a"))

    assert await cache.evict("a")
    assert not session.loaded
    assert cache.state("a") is None
    assert not await cache.evict("a")


@pytest.mark.asyncio
async def test_evict_during_load_cancels_waiters(make_session):
    started = threading.Event()
    finish = threading.Event()
    sessions = []

    def build(config):
        started.set()
        finish.wait(timeout=5)
        session = make_session(config.model_id)
        sessions.append(session)
        return session

    cache = SessionCache(build)
    waiter = asyncio.create_task(cache.acquire("a", make_config("a")))
    await wait_until(started.is_set)
    assert cache.state("a") is SlotState.LOADING

    assert await cache.evict("a")

    with pytest.raises(Cancelled):
        await waiter
    assert cache.state("a") is None

    finish.set()
    await wait_until(lambda: sessions and not sessions[0].loaded)


@pytest.mark.asyncio
async def test_switching_while_loading_cancels_previous_load(make_session):
    started = threading.Event()
    finish = threading.Event()

    def build(config):
        if config.model_id == "a":
            started.set()
            finish.wait(timeout=5)
        return make_session(config.model_id)

    cache = SessionCache(build, slots=1)
    first = asyncio.create_task(cache.acquire("a", make_config("a")))
    await wait_until(started.is_set)

    session_b = await cache.acquire("b", make_config("b"))

    with pytest.raises(Cancelled):
        await first
    assert session_b.loaded
    finish.set()
    await asyncio.sleep(0.05)


@pytest.mark.asyncio
async def test_clear_releases_everything(make_session):
    build = RecordingBuild(make_session)
    cache = SessionCache(build, slots=2)
    a = await cache.acquire("a", make_config("a"))
    b = await cache.acquire("b", make_config("b"))

    await cache.clear()

    assert not a.loaded and not b.loaded
    assert cache.loaded_ids() == []


def test_cache_needs_a_slot(make_session):
    with pytest.raises(ValueError):
        SessionCache(RecordingBuild(make_session), slots=0)
