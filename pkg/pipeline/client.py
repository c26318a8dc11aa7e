"""
Async client for the backing store.

A client is constructed explicitly for one session and owns its lifecycle:
open() before use, close() at teardown (or `async with`). Closing a client
ends every subscription it handed out.

Operations:
    query / fetch / insert / update / delete  task collection
    list_identities / list_assets            selection widget data
    subscribe(event_mask)                     change stream
    current_identity()                        acting identity for this session
"""
import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .errors import PersistenceError, SubscriptionError
from .schema import ALL_CHANGES, Asset, ChangeEvent, ChangeType, Identity, Task
from .store import TaskStore

logger = logging.getLogger(__name__)


class Subscription:
    """
    Async iterator over committed changes.

    Polls the change log every `poll_interval` seconds starting after
    `start_seq`. Only events whose type is in `event_mask` are yielded.
    A failed poll ends the stream with SubscriptionError.
    """

    def __init__(
        self,
        fetch_changes: Callable[[int], Awaitable[List[ChangeEvent]]],
        start_seq: int,
        event_mask: Iterable[ChangeType] = ALL_CHANGES,
        poll_interval: float = 0.5,
    ):
        self._fetch = fetch_changes
        self._seq = start_seq
        self._mask = frozenset(event_mask)
        self._poll_interval = poll_interval
        self._buffer: deque = deque()
        self.closed = False

    @property
    def last_seq(self) -> int:
        return self._seq

    def close(self) -> None:
        self.closed = True
        self._buffer.clear()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChangeEvent:
        while True:
            if self.closed:
                raise StopAsyncIteration
            if self._buffer:
                return self._buffer.popleft()
            try:
                events = await self._fetch(self._seq)
            except PersistenceError as e:
                raise SubscriptionError(f"change stream lost: {e}") from e
            for event in events:
                self._seq = max(self._seq, event.seq)
                if event.change_type in self._mask:
                    self._buffer.append(event)
            if not self._buffer:
                await asyncio.sleep(self._poll_interval)


class BaseClient:
    """Lifecycle and subscription handling shared by store clients."""

    def __init__(self, identity_id: str, poll_interval: float = 0.5):
        if not identity_id:
            raise ValueError("identity_id is required")
        self._identity_id = identity_id
        self.poll_interval = poll_interval
        self._opened = False
        self._subscriptions: List[Subscription] = []

    # ── Lifecycle ────────────────────────────────────────────────────────

    @property
    def is_open(self) -> bool:
        return self._opened

    async def open(self) -> None:
        self._opened = True

    async def close(self) -> None:
        for sub in self._subscriptions:
            sub.close()
        self._subscriptions.clear()
        self._opened = False

    async def __aenter__(self):
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _ensure_open(self) -> None:
        if not self._opened:
            raise PersistenceError("client is closed")

    # ── Identity / subscriptions ─────────────────────────────────────────

    def current_identity(self) -> str:
        return self._identity_id

    async def subscribe(self, event_mask: Iterable[ChangeType] = ALL_CHANGES) -> Subscription:
        """Start a change stream beginning after the latest committed change."""
        self._ensure_open()
        try:
            start = await self._latest_seq()
        except PersistenceError as e:
            raise SubscriptionError(f"subscribe failed: {e}") from e
        sub = Subscription(self._changes_since, start, event_mask, self.poll_interval)
        self._subscriptions.append(sub)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.close()
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)

    async def _changes_since(self, seq: int) -> List[ChangeEvent]:
        raise NotImplementedError

    async def _latest_seq(self) -> int:
        raise NotImplementedError


class StoreClient(BaseClient):
    """Client over a local TaskStore. Blocking SQLite calls run off the event loop."""

    def __init__(self, store: TaskStore, identity_id: str, poll_interval: float = 0.5):
        super().__init__(identity_id, poll_interval)
        self._store = store

    async def _call(self, fn, *args, **kwargs):
        self._ensure_open()
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def query(self, filters: Optional[Dict[str, Any]] = None) -> List[Task]:
        return await self._call(self._store.query, filters)

    async def fetch(self, task_id: str) -> Optional[Task]:
        return await self._call(self._store.get, task_id)

    async def insert(self, task: Task) -> Task:
        return await self._call(self._store.insert, task)

    async def update(self, task_id: str, patch: Dict[str, Any]) -> Optional[Task]:
        return await self._call(self._store.update, task_id, patch)

    async def delete(self, task_id: str) -> bool:
        return await self._call(self._store.delete, task_id)

    async def list_identities(self) -> List[Identity]:
        return await self._call(self._store.list_identities)

    async def list_assets(self) -> List[Asset]:
        return await self._call(self._store.list_assets)

    async def _changes_since(self, seq: int) -> List[ChangeEvent]:
        return await self._call(self._store.changes_since, seq)

    async def _latest_seq(self) -> int:
        return await self._call(self._store.latest_change_seq)
