"""
Tests for the SQLite backing store and its change log.
"""
import pytest

from pkg.pipeline.errors import ValidationError
from pkg.pipeline.schema import ChangeType, Department, Task, TaskStatus
from pkg.pipeline.store import TaskStore


def make_task(task_id, title="Cut fabric panel A", creator="u1", **kwargs):
    return Task(task_id=task_id, title=title, creator_id=creator, **kwargs)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# CRUD
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestTaskCrud:

    def test_insert_and_get_with_projections(self, store):
        created = store.insert(make_task("t1", assignee_id="u2"))
        assert created.task_id == "t1"
        assert created.creator.display_name == "Asha Cutter"
        assert created.assignee.display_name == "Ben Stitch"

        fetched = store.get("t1")
        assert fetched.title == "Cut fabric panel A"
        assert fetched.department == Department.PLANNING

    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None

    def test_insert_assigns_advisory_order_index(self, store):
        a = store.insert(make_task("t1"))
        b = store.insert(make_task("t2"))
        c = store.insert(make_task("t3", department=Department.CUTTING))
        assert (a.order_index, b.order_index) == (1, 2)
        assert c.order_index == 1

    def test_query_orders_by_created_at(self, store):
        for i in range(3):
            store.insert(make_task(f"t{i}"))
        assert [t.task_id for t in store.query()] == ["t0", "t1", "t2"]

    def test_query_filters(self, store):
        store.insert(make_task("t1"))
        store.insert(make_task("t2", department=Department.CUTTING, assignee_id="u2"))
        assert [t.task_id for t in store.query({"department": "cutting"})] == ["t2"]
        assert [t.task_id for t in store.query({"assigned_to": "u2"})] == ["t2"]
        assert len(store.query({"user_id": "u1"})) == 2

    def test_query_rejects_unknown_filter(self, store):
        with pytest.raises(ValidationError):
            store.query({"title; DROP TABLE tasks": "x"})

    def test_update_department(self, store):
        store.insert(make_task("t1"))
        updated = store.update("t1", {"department": "cutting"})
        assert updated.department == Department.CUTTING
        assert updated.status == TaskStatus.TODO
        assert store.get("t1").department == Department.CUTTING

    def test_update_missing_row_returns_none(self, store):
        assert store.update("gone", {"department": "cutting"}) is None

    def test_update_rejects_creator_change(self, store):
        store.insert(make_task("t1"))
        with pytest.raises(ValidationError):
            store.update("t1", {"user_id": "u2"})
        assert store.get("t1").creator_id == "u1"

    def test_update_rejects_bad_values(self, store):
        store.insert(make_task("t1"))
        with pytest.raises(ValidationError):
            store.update("t1", {"department": "dyeing"})
        with pytest.raises(ValidationError):
            store.update("t1", {"title": "   "})
        with pytest.raises(ValidationError):
            store.update("t1", {})
        with pytest.raises(ValidationError):
            store.update("t1", {"colour": "blue"})

    def test_update_rejects_non_text_values(self, store):
        store.insert(make_task("t1"))
        for patch in ({"title": 5}, {"description": ["x"]}, {"assigned_to": 7}, {"department": 123}):
            with pytest.raises(ValidationError):
                store.update("t1", patch)
        assert store.get("t1").title == "Cut fabric panel A"
        assert store.changes_since(0)[-1].change_type == ChangeType.INSERT

    def test_delete(self, store):
        store.insert(make_task("t1"))
        assert store.delete("t1") is True
        assert store.get("t1") is None
        assert store.delete("t1") is False

    def test_data_shared_across_instances(self, store, db_path):
        store.insert(make_task("t1"))
        other = TaskStore(db_path)
        assert other.get("t1") is not None


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Change log
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class TestChangeLog:

    def test_every_write_is_logged(self, store):
        assert store.latest_change_seq() == 0
        store.insert(make_task("t1"))
        store.update("t1", {"department": "cutting"})
        store.delete("t1")
        changes = store.changes_since(0)
        assert [c.change_type for c in changes] == [
            ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE,
        ]
        assert all(c.task_id == "t1" for c in changes)
        assert store.latest_change_seq() == changes[-1].seq

    def test_changes_since_is_exclusive(self, store):
        store.insert(make_task("t1"))
        seq = store.latest_change_seq()
        store.insert(make_task("t2"))
        assert [c.task_id for c in store.changes_since(seq)] == ["t2"]

    def test_failed_writes_are_not_logged(self, store):
        store.update("gone", {"department": "cutting"})
        store.delete("gone")
        assert store.changes_since(0) == []


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Counts and collaborators
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def test_counts_by_department_zero_filled(store):
    store.insert(make_task("t1"))
    store.insert(make_task("t2", department=Department.WASHING))
    counts = store.counts_by_department()
    assert counts == {"planning": 1, "cutting": 0, "stitching": 0, "washing": 1, "finishing": 0}


def test_stats(store):
    store.insert(make_task("t1"))
    store.insert(make_task("t2"))
    store.update("t2", {"status": "completed"})
    stats = store.stats()
    assert stats["total"] == 2
    assert stats["active"] == 1
    assert stats["by_status"]["completed"] == 1
    assert stats["by_priority"]["medium"] == 2


def test_collaborator_lists(store):
    assert [i.identity_id for i in store.list_identities()] == ["u1", "u2"]
    assert [a.asset_code for a in store.list_assets()] == ["SKU-100", "SKU-200"]
