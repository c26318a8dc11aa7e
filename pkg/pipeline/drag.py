"""
Drag/drop controller for moving tasks between departments.

Gesture state machine:
  Idle → Dragging(task_id) → Idle

drop() always returns to Idle straight away. The store write runs in the
background; when it fails the optimistic move is reverted by its token and
the error is handed to registered error callbacks instead of being raised.
commit_move() is the one authoritative move operation and can be called
without any gesture.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Set

from .board import BoardStateManager
from .errors import PipelineError
from .schema import Department

logger = logging.getLogger(__name__)


class DragState(Enum):
    IDLE = "idle"
    DRAGGING = "dragging"


@dataclass
class MoveResult:
    """Outcome of a move request."""
    ok: bool
    code: str                       # applied | no_change | not_found | invalid_department | not_dragging
    task_id: Optional[str] = None
    token: Optional[str] = None


class DragController:
    """Tracks one drag gesture at a time and commits moves on drop."""

    def __init__(self, board: BoardStateManager, client):
        self.board = board
        self._client = client
        self.state = DragState.IDLE
        self.dragging_task_id: Optional[str] = None
        self._inflight: Set[asyncio.Task] = set()
        self._error_callbacks: List[Callable[[str, Exception], None]] = []

    def on_error(self, callback: Callable[[str, Exception], None]) -> None:
        """Register a callback for failed background persistence (task_id, error)."""
        self._error_callbacks.append(callback)

    # ── Gesture ──────────────────────────────────────────────────────────

    def drag_start(self, task_id: str) -> bool:
        if self.board.get(task_id) is None:
            logger.warning("drag_start on unknown task %s", task_id)
            self.cancel()
            return False
        self.state = DragState.DRAGGING
        self.dragging_task_id = task_id
        return True

    def drag_over(self, department) -> bool:
        """Visual feedback only: True if `department` is a valid drop target."""
        if self.state != DragState.DRAGGING:
            return False
        try:
            Department.from_str(department)
        except ValueError:
            return False
        return True

    def drop(self, department) -> MoveResult:
        """Commit the dragged task to `department` and return to Idle."""
        task_id = self.dragging_task_id
        try:
            if self.state != DragState.DRAGGING or task_id is None:
                return MoveResult(ok=False, code="not_dragging")
            return self.commit_move(task_id, department)
        finally:
            self.cancel()

    def cancel(self) -> None:
        self.state = DragState.IDLE
        self.dragging_task_id = None

    # ── Moves ────────────────────────────────────────────────────────────

    def commit_move(self, task_id: str, department) -> MoveResult:
        """
        Move `task_id` to `department`.

        Dropping on the task's current department is a no-op with no store
        call. Otherwise the board is updated at once and the store write is
        scheduled on the running event loop.
        """
        try:
            target = Department.from_str(department)
        except ValueError:
            return MoveResult(ok=False, code="invalid_department", task_id=task_id)

        task = self.board.get(task_id)
        if task is None:
            return MoveResult(ok=False, code="not_found", task_id=task_id)
        if task.department == target:
            return MoveResult(ok=False, code="no_change", task_id=task_id)

        loop = asyncio.get_running_loop()  # raises before any local change
        token = self.board.apply_optimistic_move(task_id, target)
        job = loop.create_task(self._persist(token, task_id, target))
        self._inflight.add(job)
        job.add_done_callback(self._inflight.discard)
        logger.info("Moved %s: %s -> %s", task_id, task.department.value, target.value)
        return MoveResult(ok=True, code="applied", task_id=task_id, token=token)

    async def _persist(self, token: str, task_id: str, target: Department) -> None:
        try:
            row = await self._client.update(task_id, {"department": target.value})
        except PipelineError as e:
            logger.warning("Persisting move of %s failed: %s", task_id, e)
            self.board.revert(token)
            self._notify(task_id, e)
            return
        self.board.settle(token, row)
        if row is None:
            # deleted by its creator meanwhile; nothing to keep
            logger.info("Move of %s skipped: task no longer exists", task_id)
            self.board.remove_local(task_id)

    def _notify(self, task_id: str, error: Exception) -> None:
        for callback in self._error_callbacks:
            try:
                callback(task_id, error)
            except Exception as e:
                logger.error("Error in move error callback: %s", e)

    @property
    def inflight(self) -> int:
        return len(self._inflight)

    async def drain(self) -> None:
        """Wait for all background store writes to finish."""
        while self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)
