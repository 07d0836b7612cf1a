# app/services/goal_board.py
"""
Per-user view state for goals: the goal cache, settled image ids, task
display order, image loaders and the image poller, all torn down together.
"""
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, Coroutine, Dict, Iterable, List, Optional, Sequence

from app.core.database import AsyncSessionLocal
from app.crud import goal as crud_goal
from app.schemas.goal import GoalState
from app.services.image_loader import ImageLoader, ImageView, Probe, probe_image
from app.services.image_poller import GoalImagePoller, ImageUpdate, LoadedImageCache, PollPolicy
from app.services.scheduling import ScheduledTask, Scheduler
from app.utils.goal_images import strip_cache_buster

logger = logging.getLogger(__name__)


class TaskOrderCache:
    """Remembers the first order in which a goal's tasks were shown this session."""

    def __init__(self):
        self._orders: Dict[uuid.UUID, Dict[uuid.UUID, int]] = {}

    def remember(self, goal_id: uuid.UUID, tasks: Sequence[Any]) -> None:
        if goal_id in self._orders or not tasks:
            return
        self._orders[goal_id] = {task.id: index for index, task in enumerate(tasks)}

    def known(self, goal_id: uuid.UUID) -> bool:
        return goal_id in self._orders

    def sort(self, goal_id: uuid.UUID, tasks: Sequence[Any]) -> List[Any]:
        """Tasks in remembered order; tasks not seen before go last."""
        self.remember(goal_id, tasks)
        order = self._orders.get(goal_id, {})
        unknown = len(order)
        return sorted(tasks, key=lambda task: (order.get(task.id, unknown), task.order_number))

    def forget(self, goal_id: uuid.UUID) -> None:
        self._orders.pop(goal_id, None)


class GoalBoard:
    def __init__(
        self,
        user_id: uuid.UUID,
        session_factory=AsyncSessionLocal,
        policy: Optional[PollPolicy] = None,
        probe: Probe = probe_image,
    ):
        self.user_id = user_id
        self.session_factory = session_factory
        self.probe = probe
        self.goals: Dict[uuid.UUID, GoalState] = {}
        self.image_cache = LoadedImageCache()
        self.task_order = TaskOrderCache()
        self.scheduler = Scheduler(name=f"board:{user_id}")
        self.poller = GoalImagePoller(
            read_status=self._read_image_status,
            on_update=self.apply_image_update,
            cache=self.image_cache,
            scheduler=self.scheduler,
            policy=policy,
            probe=probe,
        )
        self.loaders: Dict[uuid.UUID, ImageLoader] = {}
        self.closed = False

    async def _read_image_status(self, goal_id: uuid.UUID):
        async with self.session_factory() as db:
            return await crud_goal.read_image_status(goal_id, db)

    # ------------------------------------------------------------------
    # Goal cache
    # ------------------------------------------------------------------
    def list_goals(self) -> List[GoalState]:
        return sorted(
            self.goals.values(),
            key=lambda goal: goal.created_at or datetime.min,
            reverse=True,
        )

    def get(self, goal_id: uuid.UUID) -> Optional[GoalState]:
        return self.goals.get(goal_id)

    def _merge(self, row: Any) -> GoalState:
        state = GoalState.model_validate(row)
        existing = self.goals.get(state.id)
        if existing is not None:
            state = state.model_copy(update={
                "image_error": existing.image_error,
                "image_refresh": existing.image_refresh,
            })
            if state.id in self.image_cache:
                stored_url = state.image_url
                local_url = existing.image_url
                # A settled image stays settled; keep the cache-busted URL if it is the same image
                if state.image_loading or (
                    local_url is not None and stored_url is not None and strip_cache_buster(local_url) == stored_url
                ):
                    state = state.model_copy(update={"image_url": local_url, "image_loading": False})
        self.goals[state.id] = state
        return state

    def track(self, row: Any) -> GoalState:
        """Add or refresh one goal from a store row."""
        return self._merge(row)

    def sync(self, rows: Iterable[Any]) -> List[GoalState]:
        """Replace the cache with the store's goals, keeping local image state."""
        seen = set()
        for row in rows:
            seen.add(self._merge(row).id)
        for goal_id in [goal_id for goal_id in self.goals if goal_id not in seen]:
            self.remove(goal_id)
        self.ensure_sweep()
        return self.list_goals()

    def patch(self, goal_id: uuid.UUID, **fields: Any) -> Optional[GoalState]:
        """Merge a partial update into the cached goal with that id."""
        existing = self.goals.get(goal_id)
        if existing is None:
            return None
        updated = existing.model_copy(update=fields)
        self.goals[goal_id] = updated
        return updated

    def remove(self, goal_id: uuid.UUID) -> None:
        self.goals.pop(goal_id, None)
        self.task_order.forget(goal_id)
        loader = self.loaders.pop(goal_id, None)
        if loader is not None:
            loader.close()

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------
    def apply_image_update(self, update: ImageUpdate) -> None:
        state = self.patch(
            update.goal_id,
            image_url=update.image_url,
            image_loading=False,
            image_refresh=update.image_refresh,
            image_error=update.image_error,
        )
        if state is None:
            return
        loader = self.loaders.get(update.goal_id)
        if loader is not None:
            loader.image_url = update.image_url
            loader.initially_loading = False
        logger.info(f"Goal {update.goal_id} image settled ({update.source})")

    def loader_for(self, goal_id: uuid.UUID) -> Optional[ImageLoader]:
        state = self.goals.get(goal_id)
        if state is None:
            return None
        loader = self.loaders.get(goal_id)
        if loader is None:
            loader = ImageLoader(
                state.title,
                state.image_url,
                initially_loading=state.image_loading,
                probe=self.probe,
            )
            self.loaders[goal_id] = loader
        return loader

    async def image_view(self, goal_id: uuid.UUID, force_refresh: bool = False) -> Optional[ImageView]:
        state = self.goals.get(goal_id)
        loader = self.loader_for(goal_id)
        if state is None or loader is None:
            return None
        force = force_refresh or state.image_refresh
        view = await loader.load(state.image_url, force_refresh=force, initially_loading=state.image_loading)
        self.patch(goal_id, image_error=view.has_error, image_refresh=False)
        return view

    async def retry_image(self, goal_id: uuid.UUID) -> Optional[ImageView]:
        loader = self.loader_for(goal_id)
        if loader is None:
            return None
        view = await loader.retry()
        self.patch(goal_id, image_error=view.has_error)
        return view

    def loading_ids(self) -> List[uuid.UUID]:
        return [
            goal_id
            for goal_id, goal in self.goals.items()
            if goal.image_loading and goal_id not in self.image_cache
        ]

    def watch(self, goal_id: uuid.UUID, title: str) -> Optional[ScheduledTask]:
        return self.poller.watch_new_goal(goal_id, title)

    def ensure_sweep(self) -> Optional[ScheduledTask]:
        if self.closed or not self.loading_ids():
            return None
        return self.poller.start_sweep(self.loading_ids)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def spawn(self, coro: Coroutine, name: Optional[str] = None) -> ScheduledTask:
        return self.scheduler.spawn(coro, name=name)

    async def close(self) -> None:
        """Cancel polling, probes and background work of this board."""
        self.closed = True
        self.poller.dispose()
        for loader in self.loaders.values():
            loader.close()
        self.loaders.clear()
        await self.scheduler.aclose()
