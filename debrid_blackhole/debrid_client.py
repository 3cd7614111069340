"""
Debrid-Link API Client
Wraps the Debrid-Link v2 seedbox API: bearer token injection, body encoding,
envelope unwrapping, and re-authentication when a token is rejected.
"""

import json
import logging
from typing import Any, Optional, Union
from urllib.parse import quote, urlencode

from .auth_manager import AuthManager
from .exceptions import ApiError, ValidationError
from .models import (
    AddTorrentRequest,
    ApiEnvelope,
    LimitsAndUsage,
    PagerRequest,
    TorrentActivity,
    TorrentInfo,
)
from .transport import FilePart, HttpTransport, MultipartBody

logger = logging.getLogger(__name__)

Body = Union[None, dict, bytes, MultipartBody]


def _form_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return json.dumps(list(value))
    return str(value)


def encode_form(fields: dict) -> str:
    """Form-encode a flat dict; booleans as true/false, lists as JSON, None dropped."""
    return urlencode({
        key: _form_value(value)
        for key, value in fields.items()
        if value is not None
    })


def _ids_path(ids: Union[str, list[str]]) -> str:
    raw = json.dumps(list(ids)) if isinstance(ids, (list, tuple)) else str(ids)
    return quote(raw, safe=",")


class DebridLinkClient:
    """
    Client for the Debrid-Link v2 API.

    Every call asks the AuthManager for a token. A 401 clears the token and
    the request is replayed, at most MAX_AUTH_RETRIES times.
    """

    API_URI = "https://debrid-link.com/api/v2"
    MAX_AUTH_RETRIES = 2

    def __init__(self, auth_manager: AuthManager, transport: HttpTransport):
        if auth_manager is None:
            raise ValueError("Missing auth manager")
        self._auth = auth_manager
        self._transport = transport

    def _encode_body(self, body: Body) -> tuple[dict, Union[None, str, bytes, MultipartBody]]:
        """Return the content headers and wire payload for a body."""
        if body is None:
            return {}, None
        if isinstance(body, MultipartBody):
            # aiohttp sets the boundary header itself
            return {}, body
        if isinstance(body, (bytes, bytearray)):
            return {"Content-Type": "application/octet-stream"}, bytes(body)
        return {"Content-Type": "application/x-www-form-urlencoded"}, encode_form(body)

    async def call(
        self,
        path: str,
        method: str = "GET",
        params: Optional[dict] = None,
        body: Body = None,
    ) -> Any:
        """
        Perform an authenticated API call and return the envelope ``value``.

        Returns None when a 2xx body is not a readable envelope.

        Raises:
            ApiError: non-2xx status, or 401 after all re-authentication attempts
        """
        url = f"{self.API_URI}{path}"
        content_headers, payload = self._encode_body(body)

        attempts = self.MAX_AUTH_RETRIES + 1
        for attempt in range(1, attempts + 1):
            token = await self._auth.get_token()
            headers = {"Authorization": f"Bearer {token}", **content_headers}

            response = await self._transport.request(
                method,
                url,
                params=params or None,
                headers=headers,
                data=payload,
            )

            if response.ok:
                envelope = ApiEnvelope.parse(response.body)
                if envelope is None:
                    logger.debug(f"Unreadable payload from {method} {url}")
                    return None
                logger.debug(f"Got response payload from {method} {url}")
                return envelope.value

            if response.status == 401:
                logger.warning(
                    f"Token rejected for {method} {url} (attempt {attempt}/{attempts}), re-authenticating"
                )
                await self._auth.clear_token()
                continue

            raise ApiError(url, response.status, response.reason, response.text())

        raise ApiError(
            url,
            401,
            "Unauthorized",
            message=f"The server kept rejecting the token for '{url}' after {attempts} attempts",
        )

    async def list_torrents(self, pager: Optional[PagerRequest] = None) -> list[TorrentInfo]:
        """
        List the torrents.
        A torrent is ready for download once ``download_percent`` is 100.
        """
        logger.debug(f"Listing torrents: {pager}")
        value = await self.call("/seedbox/list", params=pager.to_params() if pager else None)
        return [TorrentInfo.from_dict(item) for item in value or []]

    async def get_torrents_activity(
        self, pager: Optional[PagerRequest] = None
    ) -> dict[str, TorrentActivity]:
        """Activity indexed by torrent id; lighter than list_torrents."""
        logger.debug(f"Getting torrents activity: {pager}")
        value = await self.call("/seedbox/activity", params=pager.to_params() if pager else None)
        if not isinstance(value, dict):
            return {}
        return {
            torrent_id: TorrentActivity.from_dict(activity)
            for torrent_id, activity in value.items()
        }

    async def add_torrent(self, request: AddTorrentRequest) -> Optional[TorrentInfo]:
        """
        Add a torrent by URL/magnet/hash or by uploading a .torrent file.
        With ``async_`` set, poll list_torrents for files, names and sizes.
        """
        if request.url:
            if request.file is not None or request.file_name:
                logger.warning("Using URL, ignoring file and file name")
            fields = {"url": request.url, **request.options()}
            logger.debug(f"Adding torrent from URL: {request.url[:80]}")
            value = await self.call("/seedbox/add", method="POST", body=fields)
        else:
            if not request.file or not request.file_name:
                raise ValidationError("Missing URL or file and file name")
            body = MultipartBody(
                fields={key: _form_value(value) for key, value in request.options().items()},
                files=[FilePart(name="file", filename=request.file_name, content=request.file)],
            )
            logger.debug(f"Uploading torrent file {request.file_name} ({len(request.file)} bytes)")
            value = await self.call("/seedbox/add", method="POST", body=body)

        return TorrentInfo.from_dict(value) if isinstance(value, dict) else None

    async def remove_torrent(self, ids: Union[str, list[str]]) -> list[str]:
        """Remove one torrent id or a list of ids; returns the removed ids."""
        logger.debug(f"Removing torrents: {ids}")
        value = await self.call(f"/seedbox/{_ids_path(ids)}/remove", method="DELETE")
        return [str(torrent_id) for torrent_id in value or []]

    async def zip_torrent_files(self, torrent_id: str) -> Any:
        """Ask the server to build a zip of the torrent files."""
        logger.debug(f"Compressing torrent files: {torrent_id}")
        return await self.call(f"/seedbox/{quote(str(torrent_id))}/zip", method="POST")

    async def configure_torrent(
        self, torrent_id: str, unwanted_file_ids: Union[str, list[str]]
    ) -> None:
        """
        Configure a waiting torrent.
        An empty list of unwanted file ids downloads every file.
        """
        logger.debug(f"Configuring unwanted files of {torrent_id}: {unwanted_file_ids}")
        await self.call(
            f"/seedbox/{quote(str(torrent_id))}/config",
            method="POST",
            body={"files-unwanted": unwanted_file_ids},
        )

    async def get_limits_and_usage(self) -> Optional[LimitsAndUsage]:
        logger.debug("Getting limits and usage")
        value = await self.call("/seedbox/limits")
        return LimitsAndUsage.from_dict(value) if isinstance(value, dict) else None
