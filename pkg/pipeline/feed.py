"""
Change-feed listener.

Subscribes once per session to the unfiltered change stream of the task
collection, so every client sees every mutation from every identity.

  incremental=False  any event triggers a full board reload. Every
                     mutation by anyone makes every client refetch the
                     whole collection: fine for a small shop floor, a
                     scaling hazard beyond that.
  incremental=True   the event's task id and operation drive a single-row
                     merge instead.

A lost stream is resubscribed with exponential backoff, followed by a full
reload to cover whatever happened while disconnected.
"""
import asyncio
import logging
from typing import Optional

from .board import BoardStateManager
from .client import Subscription
from .errors import PipelineError, SubscriptionError
from .schema import ChangeEvent

logger = logging.getLogger(__name__)


class ChangeFeedListener:
    """Keeps a board in step with remote mutations."""

    def __init__(
        self,
        client,
        board: BoardStateManager,
        incremental: bool = True,
        reconnect_initial: float = 0.5,
        reconnect_max: float = 30.0,
    ):
        self._client = client
        self.board = board
        self.incremental = incremental
        self.reconnect_initial = reconnect_initial
        self.reconnect_max = reconnect_max
        self._subscription: Optional[Subscription] = None
        self._runner: Optional[asyncio.Task] = None
        self._disposed = False
        self.events_seen = 0
        self.reconnects = 0

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    async def start(self) -> None:
        """Subscribe and start consuming. Calling it again while running does nothing."""
        if self._disposed:
            raise RuntimeError("feed listener already disposed")
        if self.running:
            return
        self._subscription = await self._client.subscribe()
        self._runner = asyncio.get_running_loop().create_task(self._run())
        logger.info("Change feed subscribed (incremental=%s)", self.incremental)

    async def stop(self) -> None:
        """Unsubscribe and dispose; later events are ignored."""
        self._disposed = True
        if self._subscription is not None:
            self._client.unsubscribe(self._subscription)
            self._subscription = None
        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None
        logger.info("Change feed stopped")

    async def _run(self) -> None:
        while not self._disposed:
            try:
                async for event in self._subscription:
                    if self._disposed:
                        return
                    await self._handle(event)
                return
            except SubscriptionError as e:
                logger.warning("Change feed lost: %s", e)
                self._client.unsubscribe(self._subscription)
            self._subscription = await self._resubscribe()
            if self._subscription is None:
                return
            await self._reload()

    async def _resubscribe(self) -> Optional[Subscription]:
        delay = self.reconnect_initial
        while not self._disposed:
            await asyncio.sleep(delay)
            if self._disposed:
                break
            try:
                sub = await self._client.subscribe()
            except PipelineError as e:
                delay = min(delay * 2, self.reconnect_max)
                logger.warning("Resubscribe failed: %s; retrying in %.1fs", e, delay)
                continue
            self.reconnects += 1
            logger.info("Change feed resubscribed")
            return sub
        return None

    async def _handle(self, event: ChangeEvent) -> None:
        self.events_seen += 1
        logger.debug("Change %s %s (seq %d)", event.change_type.value, event.task_id, event.seq)
        if not self.incremental:
            await self._reload()
            return
        try:
            await self.board.apply_change(event)
        except PipelineError as e:
            logger.warning("Merging change for %s failed: %s", event.task_id, e)

    async def _reload(self) -> None:
        try:
            await self.board.load()
        except PipelineError as e:
            logger.warning("Board reload failed: %s", e)
