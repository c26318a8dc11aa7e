"""
Ownership policy for task mutations.

- Delete: creator only. Anyone else is rejected before any store call.
- Everything else (field edits, department moves, assignment): any
  authenticated identity.

The asymmetry is intentional and must stay until requirements change.
"""
import logging
from typing import Any, Dict, Optional

from .board import BoardStateManager
from .errors import AuthorizationError, PersistenceError, ValidationError
from .schema import Task

logger = logging.getLogger(__name__)


class AuthorizationGuard:
    """Enforces creator-only deletion."""

    def __init__(self, client, board: Optional[BoardStateManager] = None):
        self._client = client
        self.board = board

    @staticmethod
    def can_delete(task: Task, requester: str) -> bool:
        return bool(requester) and requester == task.creator_id

    @staticmethod
    def can_edit(task: Task, requester: str) -> bool:
        return bool(requester)

    def enforce_delete(self, task: Task, requester: str) -> None:
        """Raises AuthorizationError unless `requester` created `task`."""
        if not self.can_delete(task, requester):
            logger.warning("Delete of %s by %s rejected: not the creator", task.task_id, requester)
            raise AuthorizationError(
                f"Only the creator of task {task.task_id} can delete it."
            )

    async def delete(self, task: Task, requester: str) -> bool:
        """
        Delete `task` on behalf of `requester`.

        Returns False if the row was already gone. Persistence failures
        propagate and leave the board untouched.
        """
        self.enforce_delete(task, requester)
        deleted = await self._client.delete(task.task_id)
        if not deleted:
            logger.info("Delete of %s: row already gone", task.task_id)
        if self.board is not None:
            self.board.remove_local(task.task_id)
        return deleted

    async def update(self, task: Task, requester: str, patch: Dict[str, Any]) -> Task:
        """Edit fields or reassign on behalf of any authenticated identity."""
        if not self.can_edit(task, requester):
            raise AuthorizationError("An authenticated identity is required.")
        if not patch:
            raise ValidationError("Empty patch")
        row = await self._client.update(task.task_id, patch)
        if row is None:
            raise PersistenceError(f"Task {task.task_id} no longer exists")
        if self.board is not None:
            self.board.merge_row(row)
        return row
