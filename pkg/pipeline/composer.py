"""
Composer: validates and submits new tasks.

Every new task starts with status `todo` and the submitting identity as its
creator. The asset and assignee lookups only check the locally cached
lists; the store does not enforce them.
"""
import logging
from dataclasses import dataclass, asdict
from typing import Any, Dict, Iterable, Optional

from .board import BoardStateManager
from .errors import ValidationError
from .schema import (
    Asset,
    Department,
    Identity,
    Task,
    TaskPriority,
    TaskStatus,
    make_task_id,
    parse_date,
)

logger = logging.getLogger(__name__)


@dataclass
class TaskDraft:
    """Form state for a new task."""
    title: str = ""
    description: str = ""
    department: str = Department.PLANNING.value
    priority: str = TaskPriority.MEDIUM.value
    asset_code: str = ""
    assignee_id: str = ""
    due_date: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskDraft":
        return cls(
            title=data.get("title") or "",
            description=data.get("description") or "",
            department=data.get("department") or Department.PLANNING.value,
            priority=data.get("priority") or TaskPriority.MEDIUM.value,
            asset_code=data.get("sku_ref") or data.get("asset_code") or "",
            assignee_id=data.get("assigned_to") or data.get("assignee_id") or "",
            due_date=data.get("due_date"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_task(
    draft: TaskDraft,
    creator_id: str,
    known_assets: Optional[Iterable[Asset]] = None,
    known_identities: Optional[Iterable[Identity]] = None,
) -> Task:
    """
    Validate a draft and turn it into a new Task.

    Raises ValidationError on the first problem found. Asset and assignee
    checks run only when a non-empty cache is supplied.
    """
    for name in ("title", "description", "asset_code", "assignee_id"):
        value = getattr(draft, name)
        if value is not None and not isinstance(value, str):
            raise ValidationError(f"Invalid {name}: expected text, got {value!r}")
    title = (draft.title or "").strip()
    if not title:
        raise ValidationError("Title is required")
    if not creator_id:
        raise ValidationError("Authentication required")
    try:
        department = Department.from_str(draft.department or Department.PLANNING.value)
    except ValueError:
        raise ValidationError(f"Invalid department: {draft.department!r}")
    try:
        priority = TaskPriority.from_str(draft.priority or TaskPriority.MEDIUM.value)
    except ValueError:
        raise ValidationError(f"Invalid priority: {draft.priority!r}")
    try:
        due_date = parse_date(draft.due_date)
    except ValueError:
        raise ValidationError(f"Invalid due date: {draft.due_date!r}")

    asset_code = (draft.asset_code or "").strip() or None
    assets = list(known_assets or [])
    if asset_code and assets and asset_code not in {a.asset_code for a in assets}:
        raise ValidationError(f"Unknown asset: {asset_code}")

    assignee_id = (draft.assignee_id or "").strip() or None
    identities = list(known_identities or [])
    if assignee_id and identities and assignee_id not in {i.identity_id for i in identities}:
        raise ValidationError(f"Unknown assignee: {assignee_id}")

    return Task(
        task_id=make_task_id(),
        title=title,
        creator_id=creator_id,
        department=department,
        status=TaskStatus.TODO,
        priority=priority,
        description=(draft.description or "").strip(),
        asset_code=asset_code,
        assignee_id=assignee_id,
        due_date=due_date,
    )


class Composer:
    """New-task form backed by a draft."""

    def __init__(self, client, board: Optional[BoardStateManager] = None):
        self._client = client
        self.board = board
        self.draft = TaskDraft()

    def reset(self) -> None:
        self.draft = TaskDraft()

    def validate(self, draft: Optional[TaskDraft] = None) -> Task:
        draft = draft or self.draft
        board = self.board
        return build_task(
            draft,
            self._client.current_identity(),
            known_assets=board.assets if board else None,
            known_identities=board.identities if board else None,
        )

    async def submit(self, draft: Optional[TaskDraft] = None) -> Task:
        """
        Validate and insert a new task.

        Validation errors are raised before any store call. A failed insert
        raises PersistenceError and leaves the draft as it was.
        """
        task = self.validate(draft)
        created = await self._client.insert(task)
        logger.info("Created task %s in %s", created.task_id, created.department.value)
        if draft is None:
            self.reset()
        if self.board is not None:
            self.board.merge_row(created)
        return created
