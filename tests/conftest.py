"""Pytest configuration and shared fixtures."""

import os
import sys
from pathlib import Path
from typing import Any

import httpx
import pytest

# Ensure source tree is importable without editable install
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = PROJECT_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


def pytest_configure(config):
    """Configure pytest markers and environment for tests."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")

    # These MUST override any developer shell/.env values to keep the test run deterministic.
    os.environ["ENVIRONMENT"] = "test"
    os.environ["RUNTIME_BASE_URL"] = "http://localhost:4096"
    os.environ["OUTPUT_UPDATE_INTERVAL_MS"] = "0"
    os.environ["UNDO_NOTICE_SECONDS"] = "0"
    os.environ["ENABLE_METRICS"] = "false"
    os.environ["LOG_LEVEL"] = "WARNING"


@pytest.fixture(autouse=True)
def block_external_http(monkeypatch):
    """Fail the fast lane if code tries to hit the public internet.

    Allowlist only localhost/loopback, where tests point the runtime client.
    """

    allowed_hosts = {"test", "testserver", "localhost", "127.0.0.1", "0.0.0.0"}

    async def _async_guard(self, method, url, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = httpx.URL(url) if not isinstance(url, httpx.URL) else url
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return await _orig_async_request(self, method, url, *args, **kwargs)

    def _sync_guard(self, method, url, *args, **kwargs):  # type: ignore[no-untyped-def]
        u = httpx.URL(url) if not isinstance(url, httpx.URL) else url
        if u.scheme in {"http", "https"} and (u.host or "") not in allowed_hosts:
            raise RuntimeError(f"External HTTP blocked in tests: {u!s}")
        return _orig_sync_request(self, method, url, *args, **kwargs)

    _orig_async_request = httpx.AsyncClient.request
    _orig_sync_request = httpx.Client.request
    monkeypatch.setattr(httpx.AsyncClient, "request", _async_guard, raising=True)
    monkeypatch.setattr(httpx.Client, "request", _sync_guard, raising=True)

    yield


@pytest.fixture(autouse=True)
def fresh_settings():
    """Drop cached settings so env tweaks in one test never leak into another."""
    from chatrelay.config import reset_settings_cache

    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def anyio_backend() -> str:
    """Run anyio tests on asyncio (the renderer schedules asyncio tasks)."""
    return "asyncio"


class FakeRenderSink:
    """Records every render-sink call; failures are switched on per test."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self.updated: list[tuple[str, dict[str, Any]]] = []
        self.deleted: list[str] = []
        self.documents: dict[str, dict[str, Any]] = {}
        self.fail_updates: set[str] = set()
        self.fail_sends = False
        self._counter = 0

    @property
    def call_count(self) -> int:
        return len(self.sent) + len(self.updated) + len(self.deleted)

    async def send_artifact(self, chat_id: str, document: dict[str, Any]) -> str | None:
        if self.fail_sends:
            return None
        self._counter += 1
        artifact_id = f"art-{self._counter}"
        self.sent.append((chat_id, artifact_id, document))
        self.documents[artifact_id] = document
        return artifact_id

    async def update_artifact(self, artifact_id: str, document: dict[str, Any]) -> bool:
        if artifact_id in self.fail_updates:
            return False
        self.updated.append((artifact_id, document))
        self.documents[artifact_id] = document
        return True

    async def delete_artifact(self, artifact_id: str) -> None:
        self.deleted.append(artifact_id)
        self.documents.pop(artifact_id, None)


class FakeRuntime:
    """Runtime control plane double recording calls."""

    def __init__(self) -> None:
        from chatrelay.backends.protocols import RuntimeMessage

        self.message_type = RuntimeMessage
        self.messages: list[RuntimeMessage] = []
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.result = True
        self.list_error: Exception | None = None

    def calls_named(self, name: str) -> list[tuple[Any, ...]]:
        return [args for call, args in self.calls if call == name]

    def add_message(self, message_id: str, role: str) -> None:
        self.messages.append(self.message_type(message_id, role))

    async def abort(self, session_id: str) -> bool:
        self.calls.append(("abort", (session_id,)))
        return self.result

    async def list_messages(self, session_id: str):  # type: ignore[no-untyped-def]
        self.calls.append(("list_messages", (session_id,)))
        if self.list_error is not None:
            raise self.list_error
        return list(self.messages)

    async def rollback(self, session_id: str, target_message_id: str) -> bool:
        self.calls.append(("rollback", (session_id, target_message_id)))
        return self.result

    async def respond_permission(
        self, session_id: str, permission_id: str, allow: bool, remember: bool = False
    ) -> bool:
        self.calls.append(("respond_permission", (session_id, permission_id, allow, remember)))
        return self.result

    async def reply_question(self, request_id: str, answers: list[list[str]]) -> bool:
        self.calls.append(("reply_question", (request_id, answers)))
        return self.result

    async def reject_question(self, request_id: str) -> bool:
        self.calls.append(("reject_question", (request_id,)))
        return self.result


@pytest.fixture
def fake_sink() -> FakeRenderSink:
    return FakeRenderSink()


@pytest.fixture
def fake_runtime() -> FakeRuntime:
    return FakeRuntime()
