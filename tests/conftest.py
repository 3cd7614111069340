"""
Pytest configuration and shared fixtures.
"""

import json
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from debrid_blackhole.models import Credential, utcnow
from debrid_blackhole.transport import HttpResponse


# ============================================================================
# Fake transport
# ============================================================================

def json_response(payload: Any, status: int = 200, reason: str = "OK") -> HttpResponse:
    """Build an HttpResponse with a JSON body."""
    return HttpResponse(status=status, reason=reason, body=json.dumps(payload).encode())


def envelope(value: Any, status: int = 200) -> HttpResponse:
    """Build a Debrid-Link API envelope response."""
    return json_response({"success": True, "value": value}, status=status)


@dataclass
class RecordedRequest:
    method: str
    url: str
    params: Optional[dict] = None
    headers: dict = field(default_factory=dict)
    data: Any = None
    json_body: Any = None
    auth: Any = None


class FakeTransport:
    """
    Stands in for HttpTransport.

    Responses are queued per URL suffix; the last queued response of a
    route keeps being returned once the others are consumed. Exceptions in
    the queue are raised instead of returned.
    """

    def __init__(self):
        self.requests: list[RecordedRequest] = []
        self._routes: dict[str, list] = {}
        self.closed = False

    def route(self, url_suffix: str, *responses) -> "FakeTransport":
        self._routes.setdefault(url_suffix, []).extend(responses)
        return self

    def requests_to(self, url_suffix: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.url.endswith(url_suffix)]

    async def request(
        self,
        method,
        url,
        *,
        params=None,
        headers=None,
        data=None,
        json_body=None,
        auth=None,
    ) -> HttpResponse:
        self.requests.append(RecordedRequest(
            method=method,
            url=url,
            params=params,
            headers=dict(headers or {}),
            data=data,
            json_body=json_body,
            auth=auth,
        ))
        for suffix, queue in self._routes.items():
            if url.endswith(suffix):
                if not queue:
                    break
                result = queue.pop(0) if len(queue) > 1 else queue[0]
                if isinstance(result, Exception):
                    raise result
                return result
        raise AssertionError(f"Unexpected request {method} {url}")

    async def close(self):
        self.closed = True


@pytest.fixture
def transport():
    """Create an empty fake transport."""
    return FakeTransport()


# ============================================================================
# Credential / auth fixtures
# ============================================================================

@pytest.fixture
def valid_credential():
    """A credential valid for another hour."""
    return Credential(
        access_token="cached-access",
        refresh_token="cached-refresh",
        expires_at=utcnow() + timedelta(hours=1),
    )


@pytest.fixture
def expired_credential():
    """A credential that expired a minute ago."""
    return Credential(
        access_token="stale-access",
        refresh_token="stale-refresh",
        expires_at=utcnow() - timedelta(minutes=1),
    )


@pytest.fixture
def token_path(tmp_path):
    return str(tmp_path / "cache" / "access_token.json")


@pytest.fixture
def lock_path(tmp_path):
    return str(tmp_path / "cache" / "access_token.json.lock")


@pytest.fixture
def token_store(token_path):
    from debrid_blackhole.token_store import TokenStore

    return TokenStore(token_path)


class RecordingMailer:
    """Mailer that records every notification."""

    def __init__(self, error: Optional[Exception] = None):
        self.notifications: list[tuple[str, str]] = []
        self.error = error

    async def notify(self, user_code: str, verification_link: str) -> None:
        self.notifications.append((user_code, verification_link))
        if self.error:
            raise self.error


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def make_auth_manager(token_path, lock_path, mailer):
    """Factory for AuthManagers sharing the same token and lock files."""
    from debrid_blackhole.auth_manager import AuthManager
    from debrid_blackhole.process_lock import ProcessLock
    from debrid_blackhole.token_store import TokenStore

    def _make(transport, mailer_override=None):
        return AuthManager(
            "client-id",
            mailer_override or mailer,
            transport,
            TokenStore(token_path),
            ProcessLock(lock_path, poll_interval=0.01),
            device_poll_interval=0.01,
        )

    return _make


@pytest.fixture
def device_code_payload():
    return {
        "device_code": "device-123",
        "user_code": "ABCD-EFGH",
        "verification_url": "https://debrid-link.com/device",
        "expires_in": 60,
        "interval": 5,
    }


@pytest.fixture
def token_payload():
    return {
        "access_token": "fresh-access",
        "refresh_token": "fresh-refresh",
        "expires_in": 3600,
    }


@pytest.fixture
def stub_auth():
    """An AuthManager stand-in handing out a fixed token."""
    auth = MagicMock()
    auth.get_token = AsyncMock(return_value="token-1")
    auth.clear_token = AsyncMock()
    return auth


# ============================================================================
# Sample Data Fixtures
# ============================================================================

@pytest.fixture
def torrent_payload():
    """A completed torrent as returned by /seedbox/list."""
    return {
        "id": "abc123",
        "name": "Ubuntu 24.04",
        "hashString": "0123456789abcdef",
        "status": 100,
        "totalSize": 3000,
        "downloadPercent": 100,
        "files": [
            {
                "id": "abc123-0",
                "name": "ubuntu.iso",
                "downloadUrl": "https://dl.debrid-link.com/ubuntu.iso",
                "size": 2000,
                "downloadPercent": 100,
            },
            {
                "id": "abc123-1",
                "name": "SHA256SUMS",
                "downloadUrl": "https://dl.debrid-link.com/SHA256SUMS",
                "size": 1000,
                "downloadPercent": 100,
            },
        ],
    }


# ============================================================================
# Logging Fixtures
# ============================================================================

@pytest.fixture
def clean_logging():
    """Clean up logging handlers before and after test."""
    import logging

    root = logging.getLogger()
    original_handlers = root.handlers[:]
    original_level = root.level

    yield

    for handler in root.handlers[:]:
        root.removeHandler(handler)
    for handler in original_handlers:
        root.addHandler(handler)
    root.setLevel(original_level)
