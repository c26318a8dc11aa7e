"""
Tests for the pipeline data model.
"""
from datetime import date

import pytest

from pkg.pipeline.schema import (
    ChangeEvent,
    ChangeType,
    Department,
    Identity,
    Task,
    TaskPriority,
    TaskStatus,
    make_task_id,
    parse_date,
)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Enums
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_departments_in_pipeline_order():
    assert [d.value for d in Department] == [
        "planning", "cutting", "stitching", "washing", "finishing",
    ]


def test_department_labels():
    assert Department.CUTTING.label == "Pattern Cutting"
    assert Department.PLANNING.label == "Planning"


def test_department_from_str_is_strict():
    assert Department.from_str(" Cutting ") == Department.CUTTING
    assert Department.from_str(Department.WASHING) == Department.WASHING
    with pytest.raises(ValueError):
        Department.from_str("dyeing")
    with pytest.raises(ValueError):
        Department.from_str("")
    with pytest.raises(ValueError):
        Department.from_str(123)
    with pytest.raises(ValueError):
        TaskStatus.from_str(None)


def test_status_and_priority_from_str():
    assert TaskStatus.from_str("in_progress") == TaskStatus.IN_PROGRESS
    assert TaskPriority.from_str("HIGH") == TaskPriority.HIGH
    with pytest.raises(ValueError):
        TaskPriority.from_str("urgent")


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Task
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_task_defaults():
    task = Task(task_id="t1", title="Cut", creator_id="u1")
    assert task.department == Department.PLANNING
    assert task.status == TaskStatus.TODO
    assert task.priority == TaskPriority.MEDIUM
    assert task.assignee_id is None


def test_with_department_copies():
    task = Task(task_id="t1", title="Cut", creator_id="u1")
    moved = task.with_department(Department.CUTTING)
    assert moved.department == Department.CUTTING
    assert task.department == Department.PLANNING
    assert moved.creator_id == "u1"
    assert moved.status == TaskStatus.TODO


def test_owner_label_prefers_assignee():
    task = Task(
        task_id="t1", title="Cut", creator_id="u1", assignee_id="u2",
        creator=Identity("u1", "Asha"), assignee=Identity("u2", "Ben"),
    )
    assert task.owner_label == "Ben"
    assert task.owner_role == "Operator"


def test_owner_label_falls_back_to_creator_then_system():
    task = Task(task_id="t1", title="Cut", creator_id="u1", creator=Identity("u1", "Asha"))
    assert task.owner_label == "Asha"
    assert task.owner_role == "Owner"
    bare = Task(task_id="t2", title="Cut", creator_id="u1")
    assert bare.owner_label == "System"


def test_task_serialization_uses_store_columns():
    task = Task(
        task_id="t1", title="Cut", creator_id="u1",
        department=Department.STITCHING,
        asset_code="SKU-100", assignee_id="u2",
        due_date=date(2026, 3, 1),
    )
    data = task.to_dict()
    assert data["id"] == "t1"
    assert data["user_id"] == "u1"
    assert data["sku_ref"] == "SKU-100"
    assert data["assigned_to"] == "u2"
    assert data["department"] == "stitching"
    assert data["due_date"] == "2026-03-01"

    restored = Task.from_dict(data)
    assert restored.task_id == "t1"
    assert restored.creator_id == "u1"
    assert restored.department == Department.STITCHING
    assert restored.due_date == date(2026, 3, 1)


def test_task_from_dict_rejects_unknown_department():
    with pytest.raises(ValueError):
        Task.from_dict({"id": "t1", "title": "x", "user_id": "u1", "department": "dyeing"})


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Helpers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_make_task_id_unique():
    ids = {make_task_id() for _ in range(100)}
    assert len(ids) == 100
    assert all(i.startswith("task-") for i in ids)


def test_parse_date():
    assert parse_date(None) is None
    assert parse_date("") is None
    assert parse_date("2026-05-04") == date(2026, 5, 4)
    assert parse_date("2026-05-04T10:00:00") == date(2026, 5, 4)
    with pytest.raises(ValueError):
        parse_date("next tuesday")


def test_change_event_accepts_op_key():
    event = ChangeEvent.from_dict({"seq": 3, "op": "delete", "task_id": "t1"})
    assert event.change_type == ChangeType.DELETE
    assert event.to_dict()["type"] == "delete"
