"""
Session Cache

Owns the loaded sessions. Loads are single-flight per model identifier and the
number of resident sessions is bounded by the configured slot count.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set

from loguru import logger

from .classifier import SessionConfig
from .engine import InferenceSession
from .errors import Cancelled


class SlotState(str, Enum):
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class _Slot:
    model_id: str
    state: SlotState
    future: asyncio.Future
    task: Optional[asyncio.Task] = None
    session: Optional[InferenceSession] = None


def _consume_exception(future: asyncio.Future):
    # Avoids "exception was never retrieved" when nobody is waiting any more
    if not future.cancelled():
        future.exception()


def _release_orphan(build: asyncio.Future):
    if build.cancelled() or build.exception() is not None:
        return
    session = build.result()
    logger.info(f"Releasing session {session.model_id} built after its load was cancelled")
    session.release()


class SessionCache:
    """Bounded set of sessions keyed by model identifier."""

    def __init__(self, build: Callable[[SessionConfig], InferenceSession], slots: int = 1):
        if slots < 1:
            raise ValueError("SessionCache needs at least one slot")
        self._build = build
        self._capacity = slots
        self._slots: "OrderedDict[str, _Slot]" = OrderedDict()
        self._lock = asyncio.Lock()
        self._releasing: Set[asyncio.Task] = set()
        self.build_count = 0

    @property
    def capacity(self) -> int:
        return self._capacity

    def state(self, model_id: str) -> Optional[SlotState]:
        slot = self._slots.get(model_id)
        return slot.state if slot else None

    def loaded_ids(self) -> List[str]:
        return [s.model_id for s in self._slots.values() if s.state is SlotState.READY]

    async def acquire(self, model_id: str, config: SessionConfig) -> InferenceSession:
        """Return the Ready session for ``model_id``, loading it if needed."""
        # Only slot bookkeeping happens under the lock; releases and builds run outside it
        async with self._lock:
            slot = self._slots.get(model_id)
            if slot is not None and slot.state is SlotState.READY:
                self._slots.move_to_end(model_id)
                logger.debug(f"Using cached model: {model_id}")
                return slot.session

            if slot is None or slot.state is SlotState.FAILED:
                self._slots.pop(model_id, None)
                self._make_room()
                slot = self._start_load(model_id, config)
            else:
                logger.info(f"Waiting for in-flight load of {model_id}")

        return await asyncio.shield(slot.future)

    async def evict(self, model_id: str) -> bool:
        """Release ``model_id``; cancels it if it is still loading."""
        async with self._lock:
            slot = self._slots.pop(model_id, None)
            if slot is None:
                return False
            release = self._retire(slot)
        await release
        return True

    async def clear(self):
        async with self._lock:
            while self._slots:
                _, slot = self._slots.popitem(last=False)
                self._retire(slot)
            pending = list(self._releasing)
        if pending:
            await asyncio.wait(pending)

    def _make_room(self):
        while len(self._slots) >= self._capacity:
            victim = next(
                (s for s in self._slots.values() if s.state is not SlotState.LOADING),
                next(iter(self._slots.values())),
            )
            del self._slots[victim.model_id]
            logger.info(f"Evicting {victim.model_id} to make room")
            self._retire(victim)

    def _retire(self, slot: _Slot) -> asyncio.Task:
        """Detach ``slot`` and schedule its release; loads started later wait for it."""
        if slot.state is SlotState.LOADING:
            if not slot.future.done():
                slot.future.set_exception(Cancelled(slot.model_id))
            if slot.task is not None:
                slot.task.cancel()
        release = asyncio.create_task(self._release(slot))
        self._releasing.add(release)
        release.add_done_callback(self._releasing.discard)
        return release

    async def _release(self, slot: _Slot):
        if slot.state is SlotState.LOADING:
            if slot.task is not None:
                await asyncio.wait([slot.task])
            logger.info(f"Cancelled loading of model: {slot.model_id}")
        elif slot.state is SlotState.READY and slot.session is not None:
            try:
                await slot.session.unload()
            except Exception as e:
                logger.error(f"Error unloading model {slot.model_id}: {e}")
            slot.session = None
            logger.info(f"Evicted model: {slot.model_id}")

    def _start_load(self, model_id: str, config: SessionConfig) -> _Slot:
        loop = asyncio.get_running_loop()
        slot = _Slot(model_id=model_id, state=SlotState.LOADING, future=loop.create_future())
        slot.future.add_done_callback(_consume_exception)
        self._slots[model_id] = slot
        self.build_count += 1
        pending = list(self._releasing)
        slot.task = asyncio.create_task(self._load(slot, config, pending))
        return slot

    def _discard(self, slot: _Slot):
        if self._slots.get(slot.model_id) is slot:
            del self._slots[slot.model_id]

    async def _load(self, slot: _Slot, config: SessionConfig, pending: List[asyncio.Task]):
        build = None
        try:
            if pending:
                logger.info(f"Waiting for {len(pending)} eviction(s) before loading {slot.model_id}")
                await asyncio.wait(pending)
            logger.info(f"Loading new model: {slot.model_id}")
            build = asyncio.ensure_future(asyncio.to_thread(self._build, config))
            session = await asyncio.shield(build)
        except asyncio.CancelledError:
            if build is not None:
                # The worker thread cannot be interrupted; free its result once it lands
                build.add_done_callback(_release_orphan)
            self._discard(slot)
            if not slot.future.done():
                slot.future.set_exception(Cancelled(slot.model_id))
            raise
        except Exception as e:
            slot.state = SlotState.FAILED
            self._discard(slot)
            logger.error(f"Failed to load model {slot.model_id}: {e}")
            if not slot.future.done():
                slot.future.set_exception(e)
            return

        if slot.future.done():
            session.release()
            return

        slot.session = session
        slot.state = SlotState.READY
        slot.future.set_result(session)
        logger.info(f"Model ready: {slot.model_id}")
