"""
Pipeline task schema.

Production flow (fixed, sequential):
  Planning → Pattern Cutting → Stitching → Washing → Finishing

A task sits in exactly one department at a time. Moving it reassigns the
department; it is never copied. Status is tracked separately and is not
advanced by department moves.
"""
import time
import uuid
from enum import Enum
from dataclasses import dataclass, field, replace
from datetime import date, datetime, timezone
from typing import Optional, Dict, Any


class Department(Enum):
    """Pipeline stages, in board order."""
    PLANNING = "planning"
    CUTTING = "cutting"
    STITCHING = "stitching"
    WASHING = "washing"
    FINISHING = "finishing"

    @property
    def label(self) -> str:
        return DEPARTMENT_LABELS[self]

    @classmethod
    def from_str(cls, value: str) -> "Department":
        """Strict parse: unknown departments raise ValueError."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"{value!r} is not a valid {cls.__name__}")
        return cls(value.strip().lower())


DEPARTMENT_LABELS = {
    Department.PLANNING: "Planning",
    Department.CUTTING: "Pattern Cutting",
    Department.STITCHING: "Stitching",
    Department.WASHING: "Washing",
    Department.FINISHING: "Finishing",
}


class TaskStatus(Enum):
    """Work status, independent of the department."""
    TODO = "todo"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"

    @classmethod
    def from_str(cls, value: str) -> "TaskStatus":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"{value!r} is not a valid {cls.__name__}")
        return cls(value.strip().lower())


class TaskPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @classmethod
    def from_str(cls, value: str) -> "TaskPriority":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"{value!r} is not a valid {cls.__name__}")
        return cls(value.strip().lower())


class ChangeType(Enum):
    """Mutation kinds reported by the change feed."""
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


ALL_CHANGES = frozenset(ChangeType)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_task_id() -> str:
    """Generate a sortable unique task ID (ms-precision timestamp + random hex)."""
    ts = int(time.time() * 1000)
    rand = uuid.uuid4().hex[:8]
    return f"task-{ts}-{rand}"


def parse_datetime(value) -> Optional[datetime]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def parse_date(value) -> Optional[date]:
    if not value:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


@dataclass
class Identity:
    """Display projection of a user (profiles row)."""
    identity_id: str
    display_name: str = ""
    avatar_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.identity_id,
            "full_name": self.display_name,
            "avatar_url": self.avatar_url,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            identity_id=data.get("id") or data.get("identity_id", ""),
            display_name=data.get("full_name") or data.get("display_name") or "",
            avatar_url=data.get("avatar_url"),
        )


@dataclass
class Asset:
    """Inventory item a task can point at by code (SKU)."""
    asset_code: str
    asset_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"sku": self.asset_code, "name": self.asset_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        return cls(
            asset_code=data.get("sku") or data.get("asset_code", ""),
            asset_name=data.get("name") or data.get("asset_name") or "",
        )


@dataclass
class ChangeEvent:
    """One committed mutation on the task collection."""
    seq: int
    change_type: ChangeType
    task_id: Optional[str] = None
    committed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "seq": self.seq,
            "type": self.change_type.value,
            "task_id": self.task_id,
            "committed_at": self.committed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChangeEvent":
        return cls(
            seq=int(data["seq"]),
            change_type=ChangeType(data.get("type") or data.get("op")),
            task_id=data.get("task_id"),
            committed_at=data.get("committed_at"),
        )


@dataclass
class Task:
    """A unit of work on the pipeline board."""

    # Identifiers
    task_id: str
    title: str
    creator_id: str                 # set once at creation, never changes

    # Placement
    department: Department = Department.PLANNING
    order_index: int = 0            # advisory only, not kept unique

    # Classification
    status: TaskStatus = TaskStatus.TODO
    priority: TaskPriority = TaskPriority.MEDIUM

    # Content and links
    description: str = ""
    asset_code: Optional[str] = None
    assignee_id: Optional[str] = None
    due_date: Optional[date] = None

    # Metadata
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)

    # Identity projections, filled by joined reads
    creator: Optional[Identity] = None
    assignee: Optional[Identity] = None

    def with_department(self, department: Department) -> "Task":
        """Copy of this task placed in another department."""
        return replace(self, department=department)

    @property
    def owner_label(self) -> str:
        """Name shown on the card: assignee first, then creator."""
        if self.assignee and self.assignee.display_name:
            return self.assignee.display_name
        if self.creator and self.creator.display_name:
            return self.creator.display_name
        return "System"

    @property
    def owner_role(self) -> str:
        return "Operator" if self.assignee_id else "Owner"

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the store's column names."""
        return {
            "id": self.task_id,
            "title": self.title,
            "description": self.description,
            "sku_ref": self.asset_code,
            "department": self.department.value,
            "status": self.status.value,
            "priority": self.priority.value,
            "user_id": self.creator_id,
            "assigned_to": self.assignee_id,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "order_index": self.order_index,
            "created_at": self.created_at.isoformat() if isinstance(self.created_at, datetime) else self.created_at,
            "updated_at": self.updated_at.isoformat() if isinstance(self.updated_at, datetime) else self.updated_at,
            "creator": self.creator.to_dict() if self.creator else None,
            "assignee": self.assignee.to_dict() if self.assignee else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Task":
        """Deserialize from a store row or API payload. Enum fields are strict."""
        creator = data.get("creator")
        assignee = data.get("assignee")
        return cls(
            task_id=data.get("id") or data.get("task_id", ""),
            title=data.get("title", ""),
            creator_id=data.get("user_id") or data.get("creator_id", ""),
            department=Department.from_str(data.get("department") or "planning"),
            order_index=int(data.get("order_index") or 0),
            status=TaskStatus.from_str(data.get("status") or "todo"),
            priority=TaskPriority.from_str(data.get("priority") or "medium"),
            description=data.get("description") or "",
            asset_code=data.get("sku_ref") or data.get("asset_code") or None,
            assignee_id=data.get("assigned_to") or data.get("assignee_id") or None,
            due_date=parse_date(data.get("due_date")),
            created_at=parse_datetime(data.get("created_at")) or utc_now(),
            updated_at=parse_datetime(data.get("updated_at")) or utc_now(),
            creator=Identity.from_dict(creator) if isinstance(creator, dict) else None,
            assignee=Identity.from_dict(assignee) if isinstance(assignee, dict) else None,
        )
