"""OpenCode runtime binding: HTTP control plane and the ``/event`` stream."""

from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, TypeVar

import httpx

from chatrelay.backends.protocols import RuntimeMessage
from chatrelay.config import settings
from chatrelay.coordinators.permissions import permission_response
from chatrelay.errors import RuntimeControlError
from chatrelay.events import RuntimeEvent, parse_runtime_event
from chatrelay.observability.logging import get_logger

logger = get_logger(__name__)

__all__ = ["OpencodeRuntime", "RuntimeEventStream", "iter_sse_data"]

T = TypeVar("T")


class OpencodeRuntime:
    """Control-plane client implementing ``RuntimeControl``.

    Args:
        base_url: Runtime API root; defaults to ``RUNTIME_BASE_URL``.
        timeout: Request timeout in seconds.
        client: Optional pre-configured HTTP client (useful for testing)
    """

    def __init__(
        self,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = (base_url or settings.runtime_base_url).rstrip("/")
        self.timeout = settings.runtime_request_timeout_seconds if timeout is None else timeout
        self._client = client

    async def _with_client(self, fn: Callable[[httpx.AsyncClient], Awaitable[T]]) -> T:
        if self._client is not None:
            return await fn(self._client)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await fn(client)

    async def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> Any:
        url = f"{self.base_url}{path}"

        async def _send(client: httpx.AsyncClient) -> Any:
            try:
                response = await client.request(method, url, json=payload)
            except httpx.HTTPError as exc:
                raise RuntimeControlError(f"{method} {path} failed: {exc}") from exc
            if response.status_code >= 400:
                raise RuntimeControlError(
                    f"{method} {path} returned {response.status_code}",
                    status_code=response.status_code,
                )
            if not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                return response.text

        return await self._with_client(_send)

    async def _command(self, method: str, path: str, payload: dict[str, Any] | None = None) -> bool:
        try:
            body = await self._request(method, path, payload)
        except RuntimeControlError as exc:
            logger.warning("runtime_call_failed", path=path, status_code=exc.status_code, error=str(exc))
            return False
        return body is not False

    async def abort(self, session_id: str) -> bool:
        return await self._command("POST", f"/session/{session_id}/abort")

    async def list_messages(self, session_id: str) -> list[RuntimeMessage]:
        """Return the session history, oldest first.

        Raises:
            RuntimeControlError: the runtime could not be reached or refused.
        """
        body = await self._request("GET", f"/session/{session_id}/message")
        messages: list[RuntimeMessage] = []
        for item in body if isinstance(body, list) else []:
            info = item.get("info", item) if isinstance(item, dict) else None
            if isinstance(info, dict) and isinstance(info.get("id"), str):
                messages.append(RuntimeMessage(id=info["id"], role=str(info.get("role") or "")))
        return messages

    async def rollback(self, session_id: str, target_message_id: str) -> bool:
        return await self._command(
            "POST", f"/session/{session_id}/revert", {"messageID": target_message_id}
        )

    async def respond_permission(
        self, session_id: str, permission_id: str, allow: bool, remember: bool = False
    ) -> bool:
        return await self._command(
            "POST",
            f"/session/{session_id}/permissions/{permission_id}",
            {"response": permission_response(allow, remember)},
        )

    async def reply_question(self, request_id: str, answers: list[list[str]]) -> bool:
        return await self._command("POST", f"/question/{request_id}/reply", {"answers": answers})

    async def reject_question(self, request_id: str) -> bool:
        return await self._command("POST", f"/question/{request_id}/reject")


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """Yield the data payload of each server-sent event."""
    data: list[str] = []
    async for line in lines:
        if not line.strip():
            if data:
                yield "\n".join(data)
                data = []
            continue
        if line.startswith("data:"):
            data.append(line[5:].lstrip())
    if data:
        yield "\n".join(data)


def _decode_envelope(raw: str) -> Optional[RuntimeEvent]:
    try:
        envelope = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("runtime_event_not_json", preview=raw[:120])
        return None
    if not isinstance(envelope, dict):
        return None
    # /global/event wraps the envelope in {"directory", "payload"}
    if isinstance(envelope.get("payload"), dict):
        envelope = envelope["payload"]
    event_type = envelope.get("type")
    if not isinstance(event_type, str):
        return None
    properties = envelope.get("properties")
    return parse_runtime_event(event_type, properties if isinstance(properties, dict) else {})


class RuntimeEventStream:
    """Subscribes to the runtime event stream, reconnecting when it drops."""

    def __init__(
        self,
        base_url: str | None = None,
        *,
        reconnect_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
        max_connections: int | None = None,
    ) -> None:
        self.base_url = (base_url or settings.runtime_base_url).rstrip("/")
        self.reconnect_seconds = (
            settings.runtime_event_reconnect_seconds if reconnect_seconds is None else reconnect_seconds
        )
        self._client = client
        self.max_connections = max_connections
        self._stopped = False

    def stop(self) -> None:
        self._stopped = True

    async def _consume(self, client: httpx.AsyncClient) -> AsyncIterator[RuntimeEvent]:
        async with client.stream("GET", f"{self.base_url}/event", timeout=None) as response:
            response.raise_for_status()
            logger.info("runtime_event_stream_connected", base_url=self.base_url)
            async for raw in iter_sse_data(response.aiter_lines()):
                event = _decode_envelope(raw)
                if event is not None:
                    yield event
                if self._stopped:
                    return

    async def events(self) -> AsyncIterator[RuntimeEvent]:
        connections = 0
        while not self._stopped:
            connections += 1
            try:
                if self._client is not None:
                    async for event in self._consume(self._client):
                        yield event
                else:
                    async with httpx.AsyncClient(timeout=None) as client:
                        async for event in self._consume(client):
                            yield event
            except httpx.HTTPError as exc:
                logger.warning("runtime_event_stream_error", error=str(exc))

            if self._stopped or (self.max_connections and connections >= self.max_connections):
                return
            logger.info("runtime_event_stream_reconnecting", delay=self.reconnect_seconds)
            await asyncio.sleep(self.reconnect_seconds)
