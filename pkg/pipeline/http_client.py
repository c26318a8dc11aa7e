"""
Async client for pipeline_server.py.

Same interface as StoreClient, over HTTP with requests. Blocking calls run
off the event loop. Status mapping:

    400        → ValidationError
    401 / 403  → AuthorizationError
    404        → None / False for single-row reads and writes
    5xx, transport errors → PersistenceError
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from .client import BaseClient
from .errors import AuthorizationError, PersistenceError, ValidationError
from .schema import Asset, ChangeEvent, Identity, Task

logger = logging.getLogger(__name__)


class HttpStoreClient(BaseClient):
    """Client for a remote pipeline server."""

    def __init__(
        self,
        base_url: str,
        identity_id: str,
        api_key: str = "",
        timeout: float = 5.0,
        poll_interval: float = 0.5,
        session=None,
    ):
        super().__init__(identity_id, poll_interval)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    async def open(self) -> None:
        if self._session is None:
            self._session = requests.Session()
        await super().open()

    async def close(self) -> None:
        await super().close()
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    # ── Transport ────────────────────────────────────────────────────────

    def _headers(self) -> Dict[str, str]:
        return {"X-API-Key": self.api_key, "X-Identity": self.current_identity()}

    def _request(self, method: str, path: str, params=None, payload=None) -> Tuple[int, Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            resp = self._session.request(
                method, url,
                params=params,
                json=payload,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise PersistenceError(f"{method} {path} failed: {e}") from e
        try:
            body = resp.json() or {}
        except ValueError:
            body = {}
        error = body.get("error") or f"HTTP {resp.status_code}"
        if resp.status_code == 400:
            raise ValidationError(error)
        if resp.status_code in (401, 403):
            raise AuthorizationError(error)
        if resp.status_code >= 500:
            logger.error("%s %s -> %s: %s", method, path, resp.status_code, error)
            raise PersistenceError(error)
        return resp.status_code, body

    async def _call(self, method: str, path: str, params=None, payload=None) -> Tuple[int, Dict[str, Any]]:
        self._ensure_open()
        return await asyncio.to_thread(self._request, method, path, params, payload)

    # ── Tasks ────────────────────────────────────────────────────────────

    async def query(self, filters: Optional[Dict[str, Any]] = None) -> List[Task]:
        params = {k: getattr(v, "value", v) for k, v in (filters or {}).items()}
        _, body = await self._call("GET", "/api/tasks", params=params)
        return [Task.from_dict(t) for t in body.get("tasks", [])]

    async def fetch(self, task_id: str) -> Optional[Task]:
        status, body = await self._call("GET", f"/api/tasks/{task_id}")
        if status == 404:
            return None
        return Task.from_dict(body["task"])

    async def insert(self, task: Task) -> Task:
        status, body = await self._call("POST", "/api/tasks", payload=task.to_dict())
        if status != 201:
            raise PersistenceError(body.get("error") or f"insert failed: HTTP {status}")
        return Task.from_dict(body["task"])

    async def update(self, task_id: str, patch: Dict[str, Any]) -> Optional[Task]:
        status, body = await self._call("PATCH", f"/api/tasks/{task_id}", payload=patch)
        if status == 404:
            return None
        return Task.from_dict(body["task"])

    async def delete(self, task_id: str) -> bool:
        status, body = await self._call("DELETE", f"/api/tasks/{task_id}")
        if status == 404:
            return False
        return bool(body.get("deleted"))

    async def list_identities(self) -> List[Identity]:
        _, body = await self._call("GET", "/api/identities")
        return [Identity.from_dict(i) for i in body.get("identities", [])]

    async def list_assets(self) -> List[Asset]:
        _, body = await self._call("GET", "/api/assets")
        return [Asset.from_dict(a) for a in body.get("assets", [])]

    # ── Change log ───────────────────────────────────────────────────────

    async def _changes_since(self, seq: int) -> List[ChangeEvent]:
        _, body = await self._call("GET", "/api/changes", params={"since": seq})
        return [ChangeEvent.from_dict(c) for c in body.get("changes", [])]

    async def _latest_seq(self) -> int:
        _, body = await self._call("GET", "/api/changes", params={"limit": 0})
        return int(body.get("latest", 0))
