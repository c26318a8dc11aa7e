"""
Tests for creator-only deletion and open editing.
"""
import asyncio

import pytest
from conftest import CountingClient

from pkg.pipeline.board import BoardStateManager
from pkg.pipeline.errors import AuthorizationError, PersistenceError, ValidationError
from pkg.pipeline.guard import AuthorizationGuard
from pkg.pipeline.schema import Task


def seed(store):
    return store.insert(Task(task_id="t1", title="Cut fabric panel A", creator_id="u1"))


async def make_guard(client):
    await client.open()
    board = BoardStateManager(client)
    await board.load()
    return AuthorizationGuard(client, board)


def test_can_delete_only_creator():
    task = Task(task_id="t1", title="x", creator_id="u1")
    assert AuthorizationGuard.can_delete(task, "u1")
    assert not AuthorizationGuard.can_delete(task, "u2")
    assert not AuthorizationGuard.can_delete(task, "")


def test_can_edit_any_identity():
    task = Task(task_id="t1", title="x", creator_id="u1")
    assert AuthorizationGuard.can_edit(task, "u2")
    assert not AuthorizationGuard.can_edit(task, "")


def test_authorization_error_is_permission_error():
    assert issubclass(AuthorizationError, PermissionError)


class TestDelete:

    def test_non_creator_rejected_without_store_call(self, store):
        task = seed(store)
        client = CountingClient(store, "u2")

        async def body():
            guard = await make_guard(client)
            with pytest.raises(PermissionError):
                await guard.delete(task, "u2")
            return guard

        guard = asyncio.run(body())
        assert client.writes == []
        assert store.get("t1") is not None
        assert guard.board.get("t1") == task

    def test_creator_deletes(self, store):
        task = seed(store)
        client = CountingClient(store, "u1")

        async def body():
            guard = await make_guard(client)
            deleted = await guard.delete(task, "u1")
            return guard, deleted

        guard, deleted = asyncio.run(body())
        assert deleted is True
        assert client.writes == [("delete", "t1")]
        assert store.get("t1") is None
        assert guard.board.get("t1") is None

    def test_already_gone(self, store):
        task = seed(store)
        store.delete("t1")

        async def body():
            guard = await make_guard(CountingClient(store, "u1"))
            return await guard.delete(task, "u1")

        assert asyncio.run(body()) is False


class TestUpdate:

    def test_any_identity_can_reassign(self, store):
        task = seed(store)

        async def body():
            guard = await make_guard(CountingClient(store, "u2"))
            row = await guard.update(task, "u2", {"assigned_to": "u2", "priority": "high"})
            return guard, row

        guard, row = asyncio.run(body())
        assert row.assignee_id == "u2"
        assert row.creator_id == "u1"
        assert guard.board.get("t1").priority.value == "high"

    def test_empty_patch_rejected(self, store):
        task = seed(store)
        client = CountingClient(store, "u2")

        async def body():
            guard = await make_guard(client)
            await guard.update(task, "u2", {})

        with pytest.raises(ValidationError):
            asyncio.run(body())
        assert client.writes == []

    def test_update_of_deleted_task(self, store):
        task = seed(store)
        store.delete("t1")

        async def body():
            guard = await make_guard(CountingClient(store, "u2"))
            await guard.update(task, "u2", {"title": "Renamed"})

        with pytest.raises(PersistenceError):
            asyncio.run(body())
