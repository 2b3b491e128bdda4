"""HTTP action sink.

Creates tasks and calendar events by POSTing the rendered parameters to a
task/calendar service. Retries are owned by the core executor; this adapter
only classifies failures as transient or permanent.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from core.errors import SinkError

LOGGER = logging.getLogger(__name__)

TASKS_PATH = "/tasks"
EVENTS_PATH = "/calendar/events"

# 408 and 429 are worth one more try; other 4xx mean the payload was rejected.
_RETRYABLE_STATUS = {408, 429}


class HttpActionSink:
    """ActionSinkPort implementation backed by httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._headers = headers

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _post(self, path: str, params: Dict[str, Any]) -> str:
        try:
            resp = await self._client.post(path, json=params, headers=self._headers)
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            transient = status >= 500 or status in _RETRYABLE_STATUS
            raise SinkError(
                f"POST {path} returned {status}: {exc.response.text[:200]}",
                transient=transient,
            ) from exc
        except httpx.RequestError as exc:
            # Connection, protocol, decoding and redirect errors.
            raise SinkError(f"POST {path} failed: {exc}", transient=True) from exc

        try:
            body = resp.json()
        except ValueError as exc:
            raise SinkError(f"POST {path} returned a non-JSON body", transient=False) from exc

        external_id = body.get("id") if isinstance(body, dict) else None
        if external_id in (None, ""):
            raise SinkError(f"POST {path} response has no id", transient=False)
        LOGGER.debug("POST %s created %s", path, external_id)
        return str(external_id)

    async def create_task(self, params: Dict[str, Any]) -> str:
        return await self._post(TASKS_PATH, params)

    async def create_calendar_event(self, params: Dict[str, Any]) -> str:
        return await self._post(EVENTS_PATH, params)
