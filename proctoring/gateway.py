import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Set

import httpx
from pydantic_core import PydanticSerializationError, to_jsonable_python

from .config import PROCTORING_API_URL, SYNC_TIMEOUT

logger = logging.getLogger(__name__)


class SyncGateway:
    """Best-effort mirror of locally observed events to the backend.

    ``notify_event`` and ``notify_session`` schedule the request in the
    background and return immediately; failures are logged, never raised.
    The report calls are the exception: they raise so the caller can fall
    back to a locally built report.
    """

    def __init__(
        self,
        base_url: str = PROCTORING_API_URL,
        timeout: float = SYNC_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)
        self._pending: Set[asyncio.Task] = set()

    def notify_event(self, event: Mapping[str, Any]) -> asyncio.Task:
        return self._schedule(self._post("/events", event))

    def notify_session(self, session_update: Mapping[str, Any]) -> asyncio.Task:
        return self._schedule(self._post("/sessions", session_update))

    async def test_connection(self) -> bool:
        try:
            response = await self._client.get("/health")
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning(f"[Sync] Backend unreachable at {self.base_url}: {e}")
            return False
        logger.info(f"[Sync] Backend reachable at {self.base_url}")
        return True

    async def fetch_report(self, candidate_id: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        response = await self._client.get(f"/reports/{candidate_id}", params=self._params(session_id))
        response.raise_for_status()
        return response.json()

    async def download_csv(self, candidate_id: str, session_id: Optional[str] = None) -> str:
        response = await self._client.get(f"/report/csv/{candidate_id}", params=self._params(session_id))
        response.raise_for_status()
        return response.text

    async def drain(self) -> None:
        """Wait for in-flight notifications to settle."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        # keep a reference until done so the task is not garbage collected
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _post(self, path: str, payload: Mapping[str, Any]) -> Optional[Dict[str, Any]]:
        try:
            # datetimes and other python values in meta become JSON here
            body = to_jsonable_python(dict(payload))
        except PydanticSerializationError as e:
            logger.warning(f"[Sync] POST {path} skipped, payload is not JSON serialisable: {e}")
            return None
        try:
            response = await self._client.post(path, json=body)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"[Sync] POST {path} rejected: {e.response.status_code} - {e.response.text}")
        except httpx.HTTPError as e:
            logger.warning(f"[Sync] POST {path} failed: {e!r}")
        except ValueError as e:
            logger.warning(f"[Sync] POST {path} returned an unreadable body: {e}")
        except Exception:
            # the local log stays authoritative, a sync failure never reaches the caller
            logger.exception(f"[Sync] POST {path} could not be sent")
        return None

    @staticmethod
    def _params(session_id: Optional[str]) -> Dict[str, str]:
        return {"sessionId": session_id} if session_id else {}
