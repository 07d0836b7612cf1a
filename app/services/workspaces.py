# app/services/workspaces.py
import asyncio
import logging
import uuid
from typing import Dict, Optional

from app.core.database import AsyncSessionLocal
from app.services.goal_board import GoalBoard
from app.services.image_loader import Probe, probe_image
from app.services.image_poller import PollPolicy

logger = logging.getLogger(__name__)


class WorkspaceRegistry:
    """One GoalBoard per signed-in user, created on first use."""

    def __init__(self, session_factory=AsyncSessionLocal, policy: Optional[PollPolicy] = None,
                 probe: Probe = probe_image):
        self.session_factory = session_factory
        self.policy = policy
        self.probe = probe
        self._boards: Dict[uuid.UUID, GoalBoard] = {}

    def board_for(self, user_id: uuid.UUID) -> GoalBoard:
        board = self._boards.get(user_id)
        if board is None or board.closed:
            board = GoalBoard(user_id, session_factory=self.session_factory, policy=self.policy, probe=self.probe)
            self._boards[user_id] = board
        return board

    async def close_all(self) -> None:
        boards = list(self._boards.values())
        self._boards.clear()
        await asyncio.gather(*(board.close() for board in boards))
        logger.info(f"Closed {len(boards)} goal boards")

    def __len__(self) -> int:
        return len(self._boards)
