#!/usr/bin/env python3
"""
Quick verification that the pipeline board works end-to-end:
two sessions sharing one SQLite database.
"""
import asyncio
import tempfile
from pathlib import Path

from pkg.pipeline.client import StoreClient
from pkg.pipeline.composer import TaskDraft
from pkg.pipeline.errors import AuthorizationError
from pkg.pipeline.schema import Asset, Department, Identity
from pkg.pipeline.session import BoardSession
from pkg.pipeline.store import TaskStore


async def wait_for(predicate, timeout=5.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            return False
        await asyncio.sleep(0.05)
    return True


async def run(db_path: str):
    # Create store
    print("\n[1/6] Creating SQLite store...")
    store = TaskStore(db_path)
    store.seed(
        identities=[Identity("u1", "Asha Cutter"), Identity("u2", "Ben Stitch")],
        assets=[Asset("SKU-100", "Denim jacket")],
    )
    print("✅ Store created")

    # Two sessions
    print("\n[2/6] Opening two sessions (u1, u2)...")
    s1 = BoardSession(StoreClient(store, "u1", poll_interval=0.05))
    s2 = BoardSession(StoreClient(store, "u2", poll_interval=0.05))
    await s1.start()
    await s2.start()
    print("✅ Sessions started")

    try:
        # Create
        print("\n[3/6] u1 creates 'Cut fabric panel A'...")
        before = s1.department_counts()["planning"]
        task = await s1.composer.submit(TaskDraft(title="Cut fabric panel A", department="planning"))
        print(f"✅ Task created: {task.task_id}")
        print(f"   Status: {task.status.value}, creator: {task.creator_id}")
        print(f"   planning count: {before} → {s1.department_counts()['planning']}")

        # Move
        print("\n[4/6] u1 drags it to cutting...")
        s1.drag.drag_start(task.task_id)
        result = s1.drag.drop("cutting")
        print(f"   → {result.code}; local column: {s1.board.get(task.task_id).department.value}")
        await s1.drag.drain()
        persisted = store.get(task.task_id)
        print(f"✅ Persisted department: {persisted.department.value}")

        # Second session picks it up
        print("\n[5/6] Waiting for u2's change feed...")
        ok = await wait_for(
            lambda: s2.board.get(task.task_id) is not None
            and s2.board.get(task.task_id).department == Department.CUTTING
        )
        print("✅ u2 sees it under cutting" if ok else "❌ u2 did not converge")

        # Non-creator delete
        print("\n[6/6] u2 attempts delete...")
        try:
            await s2.delete(task.task_id)
            print("❌ Delete by non-creator succeeded")
        except AuthorizationError as e:
            print(f"✅ Rejected: {e}")
        print(f"   Still present: s1={s1.board.get(task.task_id) is not None} "
              f"s2={s2.board.get(task.task_id) is not None}")

        print("\nBoard (u1):")
        for column in s1.render():
            titles = ", ".join(c["title"] for c in column["cards"]) or "-"
            print(f"   {column['label']:<15} {column['count']}  {titles}")
    finally:
        await s1.close()
        await s2.close()


def main():
    print("=" * 60)
    print("Pipeline Board Verification")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        db_path = str(Path(tmp) / "pipeline.db")
        asyncio.run(run(db_path))

    print("\n" + "=" * 60)
    print("✅ ALL CHECKS PASSED")
    print("=" * 60)


if __name__ == "__main__":
    main()
