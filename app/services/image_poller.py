# app/services/image_poller.py
"""
Reconciles locally displayed goal images with image generation that
finishes on the server.

Two layers: an aggressive, bounded watch on a goal that was just created,
and a background sweep over every goal still flagged as loading. A goal id
in the LoadedImageCache is settled and is never polled again.
"""
import asyncio
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Iterable, Optional, Set, Tuple, Union

from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.exceptions import StoreError
from app.services.image_loader import Probe, probe_image
from app.services.scheduling import ScheduledTask, Scheduler
from app.utils.goal_images import (
    is_generated_image,
    is_static_asset,
    resolve_fallback_image,
    with_cache_buster,
)

logger = logging.getLogger(__name__)

# (image_url, image_loading, title) or None when the goal no longer exists
ImageStatus = Optional[Tuple[Optional[str], bool, str]]
StatusReader = Callable[[uuid.UUID], Awaitable[ImageStatus]]


@dataclass
class PollPolicy:
    initial_delay: float = 1.0
    interval: float = 2.0
    max_attempts: int = 15
    deadline: float = 30.0
    sweep_interval: float = 3.0
    probe_timeout: float = 5.0

    @classmethod
    def from_settings(cls) -> "PollPolicy":
        return cls(
            initial_delay=settings.IMAGE_POLL_INITIAL_DELAY,
            interval=settings.IMAGE_POLL_INTERVAL,
            max_attempts=settings.IMAGE_POLL_MAX_ATTEMPTS,
            deadline=settings.IMAGE_POLL_DEADLINE,
            sweep_interval=settings.IMAGE_SWEEP_INTERVAL,
            probe_timeout=settings.IMAGE_PROBE_TIMEOUT_SECONDARY,
        )


class LoadedImageCache:
    """Session scoped set of goal ids whose image is settled. Entries are only ever added."""

    def __init__(self):
        self._ids: Set[uuid.UUID] = set()

    def add(self, goal_id: uuid.UUID) -> None:
        self._ids.add(goal_id)

    def __contains__(self, goal_id) -> bool:
        return goal_id in self._ids

    def __len__(self) -> int:
        return len(self._ids)

    def __iter__(self):
        return iter(list(self._ids))


@dataclass
class ImageUpdate:
    goal_id: uuid.UUID
    image_url: str
    # generated | static | probed | fallback | finalized
    source: str
    image_refresh: bool = False
    image_error: bool = False


class GoalImagePoller:
    def __init__(
        self,
        read_status: StatusReader,
        on_update: Callable[[ImageUpdate], None],
        cache: LoadedImageCache,
        scheduler: Scheduler,
        policy: Optional[PollPolicy] = None,
        probe: Probe = probe_image,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.read_status = read_status
        self.on_update = on_update
        self.cache = cache
        self.scheduler = scheduler
        self.policy = policy or PollPolicy.from_settings()
        self.probe = probe
        self.clock = clock

        self.in_flight: Set[uuid.UUID] = set()
        self.attempts: Dict[uuid.UUID, int] = {}
        self._watches: Dict[uuid.UUID, ScheduledTask] = {}
        self._sweep: Optional[ScheduledTask] = None

    # ------------------------------------------------------------------
    # Aggressive mode
    # ------------------------------------------------------------------
    def watch_new_goal(self, goal_id: uuid.UUID, title: str) -> Optional[ScheduledTask]:
        """Start the bounded watch on a freshly created goal. One watch per goal."""
        if goal_id in self.cache:
            return None
        existing = self._watches.get(goal_id)
        if existing is not None and not existing.done:
            return existing
        handle = self.scheduler.spawn(self._watch(goal_id, title), name=f"watch:{goal_id}")
        self._watches[goal_id] = handle
        return handle

    def is_watching(self, goal_id: uuid.UUID) -> bool:
        handle = self._watches.get(goal_id)
        return handle is not None and not handle.done

    async def _watch(self, goal_id: uuid.UUID, title: str) -> None:
        started = self.clock()
        try:
            await asyncio.wait_for(self._aggressive(goal_id), self.policy.deadline)
        except asyncio.TimeoutError:
            logger.info(f"Image watch for goal {goal_id} hit the {self.policy.deadline}s deadline")
        finally:
            self._watches.pop(goal_id, None)

        if goal_id not in self.cache:
            self._finalize(goal_id, title)
        logger.debug(
            f"Image watch for goal {goal_id} ended after {self.attempts.get(goal_id, 0)} checks "
            f"in {self.clock() - started:.1f}s"
        )

    async def _aggressive(self, goal_id: uuid.UUID) -> None:
        await asyncio.sleep(self.policy.initial_delay)
        for attempt in range(self.policy.max_attempts):
            if goal_id in self.cache:
                return
            self.attempts[goal_id] = self.attempts.get(goal_id, 0) + 1
            if await self.check(goal_id):
                return
            if attempt < self.policy.max_attempts - 1:
                await asyncio.sleep(self.policy.interval)

    def _finalize(self, goal_id: uuid.UUID, title: str) -> None:
        """Stop trying: show the preset image and never poll this goal again."""
        logger.info(f"Giving up on generated image for goal {goal_id}; using fallback")
        self.cache.add(goal_id)
        self.on_update(ImageUpdate(goal_id, resolve_fallback_image(title), source="finalized"))

    # ------------------------------------------------------------------
    # Background sweep
    # ------------------------------------------------------------------
    def start_sweep(
        self,
        loading_ids: Union[Callable[[], Iterable[uuid.UUID]], Iterable[uuid.UUID]],
    ) -> ScheduledTask:
        """
        Check every goal still flagged as loading each sweep interval. The
        sweep stops itself once no unsettled goal is left; ``loading_ids`` may
        be a callable re-evaluated on each tick.
        """
        if self._sweep is not None and not self._sweep.done:
            return self._sweep

        if callable(loading_ids):
            source = loading_ids
        else:
            snapshot = list(loading_ids)
            source = lambda: snapshot

        async def _tick():
            pending = [goal_id for goal_id in source() if goal_id not in self.cache]
            if not pending:
                logger.debug("No goal images left loading; stopping the sweep")
                self.stop_sweep()
                return
            await self.sweep_once(pending)

        self._sweep = self.scheduler.every(self.policy.sweep_interval, _tick, name="image-sweep")
        return self._sweep

    async def sweep_once(self, goal_ids: Iterable[uuid.UUID]) -> int:
        """One sweep pass. Returns the number of goals actually checked."""
        checked = 0
        for goal_id in list(goal_ids):
            if goal_id in self.cache or goal_id in self.in_flight:
                continue
            checked += 1
            await self.check(goal_id)
        return checked

    @property
    def sweeping(self) -> bool:
        return self._sweep is not None and not self._sweep.done

    def stop_sweep(self) -> None:
        if self._sweep is not None:
            self._sweep.cancel()
            self._sweep = None

    # ------------------------------------------------------------------
    # One check
    # ------------------------------------------------------------------
    async def check(self, goal_id: uuid.UUID) -> bool:
        """
        Re-read a goal's image state from the store and settle it if the
        server is done. Returns True once the goal is settled.
        """
        if goal_id in self.cache:
            return True
        if goal_id in self.in_flight:
            return False

        self.in_flight.add(goal_id)
        try:
            try:
                status = await self.read_status(goal_id)
            except (StoreError, SQLAlchemyError) as e:
                logger.error(f"Image status read failed for goal {goal_id}, skipping this tick: {e}")
                return False

            if goal_id in self.cache:
                return True
            if status is None:
                logger.info(f"Goal {goal_id} no longer exists; stopping image polling")
                self.cache.add(goal_id)
                return True

            image_url, image_loading, title = status
            if image_loading:
                return False

            if is_generated_image(image_url):
                self._accept(ImageUpdate(goal_id, with_cache_buster(image_url), source="generated", image_refresh=True))
            elif image_url is None or is_static_asset(image_url):
                self._accept(ImageUpdate(goal_id, image_url or resolve_fallback_image(title), source="static"))
            else:
                # Unrecognised host: only trust it after it answers
                ok = await self.probe(image_url, self.policy.probe_timeout)
                if goal_id in self.cache:
                    return True
                if ok:
                    self._accept(ImageUpdate(goal_id, with_cache_buster(image_url), source="probed", image_refresh=True))
                else:
                    logger.warning(f"Stored image for goal {goal_id} did not load; using fallback")
                    self._accept(ImageUpdate(
                        goal_id, resolve_fallback_image(title), source="fallback", image_error=True
                    ))
            return True
        finally:
            self.in_flight.discard(goal_id)

    def _accept(self, update: ImageUpdate) -> None:
        self.cache.add(update.goal_id)
        self.on_update(update)

    def dispose(self) -> None:
        self.stop_sweep()
        for handle in list(self._watches.values()):
            handle.cancel()
        self._watches.clear()
