"""
One board session: a client plus the components that share it.

    async with BoardSession.from_config(cfg, "user-1") as session:
        session.drag.commit_move(task_id, "cutting")
        ...

start() opens the client, prefetches identities and assets, loads the board
and starts the change feed. close() stops the feed first so no callback
acts on a disposed board, then waits for in-flight moves and closes the
client.
"""
import logging
from typing import Dict, Optional

from .board import BoardStateManager
from .client import StoreClient
from .composer import Composer
from .config import PipelineConfig
from .drag import DragController
from .errors import ValidationError
from .feed import ChangeFeedListener
from .guard import AuthorizationGuard
from .http_client import HttpStoreClient
from .store import TaskStore

logger = logging.getLogger(__name__)


class BoardSession:
    """Wires board, drag, feed, guard and composer around one client."""

    def __init__(self, client, config: Optional[PipelineConfig] = None):
        self.config = config or PipelineConfig()
        self.client = client
        self.board = BoardStateManager(client)
        self.drag = DragController(self.board, client)
        self.feed = ChangeFeedListener(
            client,
            self.board,
            incremental=self.config.feed_incremental,
            reconnect_initial=self.config.reconnect_initial,
            reconnect_max=self.config.reconnect_max,
        )
        self.guard = AuthorizationGuard(client, self.board)
        self.composer = Composer(client, self.board)

    @classmethod
    def from_config(cls, config: PipelineConfig, identity_id: str) -> "BoardSession":
        """Build a session on a SQLite or HTTP client, per `config.backend`."""
        if config.backend == "sqlite":
            client = StoreClient(TaskStore(config.db_path), identity_id, config.poll_interval)
        elif config.backend == "http":
            client = HttpStoreClient(
                config.server_url,
                identity_id,
                api_key=config.api_key,
                timeout=config.request_timeout,
                poll_interval=config.poll_interval,
            )
        else:
            raise ValidationError(f"Unknown backend: {config.backend!r}")
        return cls(client, config)

    @property
    def identity(self) -> str:
        return self.client.current_identity()

    async def start(self) -> None:
        await self.client.open()
        await self.board.load_collaborators()
        await self.board.load()
        await self.feed.start()
        logger.info("Session for %s started: %d tasks", self.identity, len(self.board.all_tasks()))

    async def close(self) -> None:
        await self.feed.stop()
        await self.drag.drain()
        await self.client.close()
        logger.info("Session for %s closed", self.identity)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    async def delete(self, task_id: str) -> bool:
        """Delete a task as this session's identity (creator only)."""
        task = self.board.get(task_id) or await self.client.fetch(task_id)
        if task is None:
            return False
        return await self.guard.delete(task, self.identity)

    def department_counts(self) -> Dict[str, int]:
        return self.board.counts()

    def render(self):
        return self.board.render(self.identity)
