"""
HTTP Transport
Thin aiohttp wrapper used by every remote call: one shared session, whole-body
responses, and retries of transient network failures. HTTP status codes are
returned to the caller as-is and never retried here.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Union

import aiohttp

from .exceptions import TransportError
from .retry import RetryConfig, RetryHandler, TRANSIENT_ERRORS

logger = logging.getLogger(__name__)


@dataclass
class FilePart:
    """A file part of a multipart body."""
    name: str
    filename: str
    content: bytes
    content_type: str = "application/octet-stream"


@dataclass
class MultipartBody:
    """
    Multipart form body.
    Kept as plain data and turned into a fresh ``aiohttp.FormData`` for every
    attempt, since a FormData instance can only be sent once.
    """
    fields: dict[str, str] = field(default_factory=dict)
    files: list[FilePart] = field(default_factory=list)

    def to_form_data(self) -> aiohttp.FormData:
        form = aiohttp.FormData()
        for name, value in self.fields.items():
            form.add_field(name, value)
        for part in self.files:
            form.add_field(
                part.name,
                part.content,
                filename=part.filename,
                content_type=part.content_type,
            )
        return form


RequestBody = Union[None, str, bytes, MultipartBody]


@dataclass
class HttpResponse:
    """A fully read HTTP response."""
    status: int
    reason: str
    body: bytes
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)


class HttpTransport:
    """
    Shared HTTP transport with retry on transient network errors.
    """

    def __init__(
        self,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = 60.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self._retry_handler = RetryHandler(retry_config or RetryConfig())
        self._timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        data: RequestBody = None,
        json_body: Any = None,
        auth: Optional[aiohttp.BasicAuth] = None,
    ) -> HttpResponse:
        """
        Send a request and read the whole response.

        Raises:
            TransportError: the request failed at the network level after all retries
        """
        async def send() -> HttpResponse:
            session = await self._get_session()
            payload = data.to_form_data() if isinstance(data, MultipartBody) else data
            async with session.request(
                method,
                url,
                params=params,
                headers=headers,
                data=payload,
                json=json_body,
                auth=auth,
            ) as response:
                body = await response.read()
                return HttpResponse(
                    status=response.status,
                    reason=response.reason or "",
                    body=body,
                    url=str(response.url),
                )

        try:
            return await self._retry_handler.with_retry(
                operation=send,
                operation_id=f"{method} {url}",
            )
        except TRANSIENT_ERRORS as e:
            logger.error(f"Request {method} {url} failed: {e}")
            raise TransportError(f"Request {method} {url} failed: {e}", url=url) from e

    async def close(self):
        """Close the underlying session."""
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None
