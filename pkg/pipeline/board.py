"""
Board state manager: the session's in-memory copy of the task collection.

Two ways to bring local state in line with the store:

  reconcile(snapshot)  wholesale replacement. No merge: an optimistic move
                       that the store has not committed yet is overwritten
                       by a snapshot taken before the commit, which shows up
                       as a visible revert. This is a known property of the
                       full-reload path.
  apply_change(event)  incremental merge of the one row named by a change
                       event. Rows with a pending optimistic move keep their
                       local department until that move settles; the newest
                       store row seen in the meantime is applied then.

Optimistic moves hand back a token. settle(token) forgets it once the store
confirms; revert(token) undoes only that move.
"""
import logging
import uuid
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Optional

from .schema import Asset, ChangeEvent, ChangeType, Department, Identity, Task, TaskStatus

logger = logging.getLogger(__name__)


@dataclass
class PendingMove:
    """An optimistic department change not yet confirmed by the store."""
    token: str
    task_id: str
    previous: Department
    target: Department


class BoardStateManager:
    """Canonical task collection for one session."""

    def __init__(self, client):
        self._client = client
        self._tasks: Dict[str, Task] = {}
        self._pending: Dict[str, PendingMove] = {}
        # store rows that arrived while a move on the task was pending
        self._held: Dict[str, Task] = {}
        self._listeners: List[Callable[["BoardStateManager"], None]] = []
        self.identities: List[Identity] = []
        self.assets: List[Asset] = []
        self.loaded = False

    # ── Render callbacks ─────────────────────────────────────────────────

    def subscribe(self, callback: Callable[["BoardStateManager"], None]) -> None:
        """Register a callback run after every local state change."""
        self._listeners.append(callback)

    def _emit(self) -> None:
        for callback in self._listeners:
            try:
                callback(self)
            except Exception as e:
                logger.error("Error in board listener: %s", e)

    # ── Loading ──────────────────────────────────────────────────────────

    async def load(self) -> None:
        """Fetch the full collection (with identity projections) and replace local state."""
        snapshot = await self._client.query()
        self.reconcile(snapshot)

    async def load_collaborators(self) -> None:
        """Prefetch identities and assets for selection widgets."""
        self.identities = await self._client.list_identities()
        self.assets = await self._client.list_assets()

    def reconcile(self, snapshot: Iterable[Task]) -> None:
        """Replace local state with `snapshot`. Unconditional, no merge."""
        self._tasks = {t.task_id: t for t in snapshot}
        self._held.clear()
        self.loaded = True
        logger.debug("Board reconciled: %d tasks", len(self._tasks))
        self._emit()

    async def apply_change(self, event: ChangeEvent) -> None:
        """Merge one changed row into local state."""
        if not event.task_id:
            await self.load()
            return
        if event.change_type == ChangeType.DELETE:
            self.remove_local(event.task_id)
            return
        row = await self._client.fetch(event.task_id)
        if row is None:
            self.remove_local(event.task_id)
            return
        self.merge_row(row)

    def merge_row(self, task: Task) -> None:
        """Insert or replace a single task, keeping any pending local department."""
        pending = self._pending_for(task.task_id)
        if pending:
            self._hold(task)
            if task.department != pending.target:
                task = task.with_department(pending.target)
        self._tasks[task.task_id] = task
        self._emit()

    def remove_local(self, task_id: str) -> None:
        self._held.pop(task_id, None)
        if self._tasks.pop(task_id, None) is not None:
            for token in [t for t, p in self._pending.items() if p.task_id == task_id]:
                self._pending.pop(token, None)
            self._emit()

    # ── Optimistic moves ─────────────────────────────────────────────────

    def apply_optimistic_move(self, task_id: str, department: Department) -> Optional[str]:
        """Move a task locally. Returns a pending token, or None if the task is unknown."""
        task = self._tasks.get(task_id)
        if task is None:
            return None
        token = uuid.uuid4().hex
        self._pending[token] = PendingMove(token, task_id, task.department, department)
        self._tasks[task_id] = task.with_department(department)
        self._emit()
        return token

    def settle(self, token: str, row: Optional[Task] = None) -> None:
        """
        Forget a pending move once the store has answered.

        `row` is the store's copy after the write. When no other move on the
        task is still pending, the newest store row seen (the write's own
        row, or one that arrived from the feed meanwhile) replaces the local
        copy.
        """
        pending = self._pending.pop(token, None)
        if pending is None:
            return
        if row is not None:
            self._hold(row)
        if self._pending_for(pending.task_id) is None:
            self._release(pending.task_id)

    def revert(self, token: str) -> bool:
        """Undo one optimistic move if the task still sits where that move put it."""
        pending = self._pending.get(token)
        if pending is None:
            return False
        superseded = self._pending_for(pending.task_id) is not pending
        del self._pending[token]
        task = self._tasks.get(pending.task_id)
        if task is None or task.department != pending.target or superseded:
            # a later move owns the placement now
            return False
        if self._pending_for(pending.task_id) is None and self._release(pending.task_id):
            logger.info("Reverted move of %s to the store's copy", pending.task_id)
            return True
        self._tasks[pending.task_id] = task.with_department(pending.previous)
        logger.info("Reverted move of %s back to %s", pending.task_id, pending.previous.value)
        self._emit()
        return True

    def has_pending(self, task_id: Optional[str] = None) -> bool:
        if task_id is None:
            return bool(self._pending)
        return self._pending_for(task_id) is not None

    def _hold(self, row: Task) -> None:
        held = self._held.get(row.task_id)
        if held is None or row.updated_at >= held.updated_at:
            self._held[row.task_id] = row

    def _release(self, task_id: str) -> bool:
        """Apply the held store row for `task_id` unless the local copy is newer."""
        held = self._held.pop(task_id, None)
        current = self._tasks.get(task_id)
        if held is None or current is None or current.updated_at > held.updated_at:
            return False
        self._tasks[task_id] = held
        self._emit()
        return True

    def _pending_for(self, task_id: str) -> Optional[PendingMove]:
        latest = None
        for pending in self._pending.values():
            if pending.task_id == task_id:
                latest = pending
        return latest

    # ── Queries / render surface ─────────────────────────────────────────

    def get(self, task_id: str) -> Optional[Task]:
        return self._tasks.get(task_id)

    def all_tasks(self) -> List[Task]:
        return list(self._tasks.values())

    def tasks_in(self, department: Department) -> List[Task]:
        tasks = [t for t in self._tasks.values() if t.department == department]
        tasks.sort(key=lambda t: (t.order_index, t.created_at))
        return tasks

    def columns(self) -> Dict[Department, List[Task]]:
        return {d: self.tasks_in(d) for d in Department}

    def count(self, department: Department) -> int:
        return sum(1 for t in self._tasks.values() if t.department == department)

    def counts(self) -> Dict[str, int]:
        """Per-department task counts, zero-filled, for summary views."""
        counts = {d.value: 0 for d in Department}
        for task in self._tasks.values():
            counts[task.department.value] += 1
        return counts

    def active_count(self) -> int:
        return sum(1 for t in self._tasks.values() if t.status != TaskStatus.COMPLETED)

    def render(self, viewer_id: Optional[str] = None) -> List[dict]:
        """JSON-able board: columns in pipeline order with their cards."""
        board = []
        for department, tasks in self.columns().items():
            cards = []
            for task in tasks:
                card = task.to_dict()
                card["owner_label"] = task.owner_label
                card["owner_role"] = task.owner_role
                card["can_delete"] = viewer_id is not None and task.creator_id == viewer_id
                cards.append(card)
            board.append({
                "department": department.value,
                "label": department.label,
                "count": len(cards),
                "cards": cards,
            })
        return board
