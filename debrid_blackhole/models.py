"""
Data model for Debrid-Link Blackhole.
Dataclasses for the persisted credential, OAuth responses and the
Debrid-Link seedbox payloads, each built from the camelCase wire format.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

# A token is treated as expired this long before its real expiry.
EXPIRY_MARGIN = timedelta(seconds=60)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Credential:
    """OAuth bearer credential persisted between invocations."""
    access_token: str
    refresh_token: str
    expires_at: datetime

    def __post_init__(self):
        if not self.access_token or not self.refresh_token:
            raise ValueError("Credential requires both an access token and a refresh token")
        if self.expires_at.tzinfo is None:
            self.expires_at = self.expires_at.replace(tzinfo=timezone.utc)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """True once ``now`` is within the safety margin of the expiry."""
        now = now or utcnow()
        return now + EXPIRY_MARGIN >= self.expires_at

    def to_dict(self) -> dict:
        return {
            "accessToken": self.access_token,
            "refreshToken": self.refresh_token,
            "expiresAt": self.expires_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Credential":
        try:
            expires_at = datetime.fromisoformat(data["expiresAt"].replace("Z", "+00:00"))
            return cls(
                access_token=data["accessToken"],
                refresh_token=data["refreshToken"],
                expires_at=expires_at,
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise ValueError(f"Invalid credential record: {e}") from e

    @classmethod
    def from_token_response(
        cls,
        payload: dict,
        previous_refresh_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> "Credential":
        """Build a credential from an OAuth token endpoint response."""
        now = now or utcnow()
        try:
            expires_in = int(payload.get("expires_in", 0))
        except (TypeError, ValueError):
            expires_in = 0
        return cls(
            access_token=payload.get("access_token") or "",
            refresh_token=payload.get("refresh_token") or previous_refresh_token or "",
            expires_at=now + timedelta(seconds=expires_in),
        )


@dataclass
class DeviceCode:
    """Response of the OAuth device code endpoint."""
    device_code: str
    user_code: str
    verification_url: str
    expires_in: int
    interval: int = 5

    @property
    def verification_link(self) -> str:
        return f"{self.verification_url.rstrip('/')}/{self.user_code}"

    @classmethod
    def from_dict(cls, data: dict) -> "DeviceCode":
        try:
            return cls(
                device_code=data["device_code"],
                user_code=data["user_code"],
                verification_url=data["verification_url"],
                expires_in=int(data["expires_in"]),
                interval=int(data.get("interval") or 5),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValueError(f"Invalid device code response: {e}") from e


@dataclass
class AddTorrentRequest:
    """
    Request to add a torrent to the seedbox.

    Either ``url`` (torrent URL, magnet or hash) or ``file`` plus
    ``file_name`` must be set. When both are given the URL wins.
    """
    url: Optional[str] = None
    file: Optional[bytes] = None
    file_name: Optional[str] = None
    # Wait before starting the torrent so files can be selected
    wait: bool = False
    # Fast add: do not wait for metadata before returning
    async_: bool = True
    structure_type: Optional[str] = None

    def options(self) -> dict:
        """Form fields shared by both variants."""
        fields = {"wait": self.wait, "async": self.async_}
        if self.structure_type:
            fields["structureType"] = self.structure_type
        return fields


@dataclass
class TorrentFile:
    """A file inside a seedbox torrent."""
    id: str
    name: str
    download_url: str
    size: int
    download_percent: float = 0.0

    @classmethod
    def from_dict(cls, data: dict) -> "TorrentFile":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            download_url=data.get("downloadUrl", ""),
            size=int(data.get("size") or 0),
            download_percent=float(data.get("downloadPercent") or 0),
        )


@dataclass
class TorrentInfo:
    """A torrent as listed by the seedbox."""
    id: str
    name: str
    hash_string: str = ""
    status: int = 0
    total_size: int = 0
    download_percent: float = 0.0
    download_speed: int = 0
    upload_speed: int = 0
    upload_ratio: float = 0.0
    peers_connected: int = 0
    server_id: str = ""
    wait: bool = False
    created: int = 0
    files: list[TorrentFile] = field(default_factory=list)

    @property
    def is_complete(self) -> bool:
        return self.download_percent == 100

    @classmethod
    def from_dict(cls, data: dict) -> "TorrentInfo":
        return cls(
            id=str(data.get("id", "")),
            name=data.get("name", ""),
            hash_string=data.get("hashString", ""),
            status=int(data.get("status") or 0),
            total_size=int(data.get("totalSize") or 0),
            download_percent=float(data.get("downloadPercent") or 0),
            download_speed=int(data.get("downloadSpeed") or 0),
            upload_speed=int(data.get("uploadSpeed") or 0),
            upload_ratio=float(data.get("uploadRatio") or 0),
            peers_connected=int(data.get("peersConnected") or 0),
            server_id=str(data.get("serverId", "")),
            wait=bool(data.get("wait", False)),
            created=int(data.get("created") or 0),
            files=[TorrentFile.from_dict(f) for f in data.get("files") or []],
        )


@dataclass
class TorrentActivity:
    """Lightweight torrent status returned by the activity endpoint."""
    status: int = 0
    download_percent: float = 0.0
    download_speed: int = 0
    upload_speed: int = 0
    upload_ratio: float = 0.0
    peers_connected: int = 0
    size: int = 0
    wait: bool = False
    # Download percent of each file, same order as TorrentInfo.files
    files: list[float] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "TorrentActivity":
        return cls(
            status=int(data.get("status") or 0),
            download_percent=float(data.get("downloadPercent") or 0),
            download_speed=int(data.get("downloadSpeed") or 0),
            upload_speed=int(data.get("uploadSpeed") or 0),
            upload_ratio=float(data.get("uploadRatio") or 0),
            peers_connected=int(data.get("peersConnected") or 0),
            size=int(data.get("size") or 0),
            wait=bool(data.get("wait", False)),
            files=[float(p) for p in data.get("files") or []],
        )


@dataclass
class UsageCounter:
    current: float = 0
    value: float = 0

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "UsageCounter":
        data = data or {}
        return cls(current=data.get("current", 0), value=data.get("value", 0))


@dataclass
class LimitsAndUsage:
    """Seedbox account limits and current usage."""
    usage_percent: UsageCounter
    next_reset_seconds: UsageCounter
    day_count: UsageCounter

    @classmethod
    def from_dict(cls, data: dict) -> "LimitsAndUsage":
        return cls(
            usage_percent=UsageCounter.from_dict(data.get("usagePercent")),
            next_reset_seconds=UsageCounter.from_dict(data.get("nextResetSeconds")),
            day_count=UsageCounter.from_dict(data.get("dayCount")),
        )


@dataclass
class PagerRequest:
    """Paging and filtering parameters for list requests."""
    # Torrent IDs (50 max.)
    ids: Optional[Union[str, list[str]]] = None
    structure_type: Optional[str] = None  # "list" or "tree"
    page: Optional[int] = None
    per_page: Optional[int] = None  # 20 to 50

    def to_params(self) -> dict:
        params = {}
        if self.ids:
            params["ids"] = self.ids if isinstance(self.ids, str) else ",".join(self.ids)
        if self.structure_type:
            params["structureType"] = self.structure_type
        if self.page is not None:
            params["page"] = str(self.page)
        if self.per_page is not None:
            params["perPage"] = str(self.per_page)
        return params


@dataclass
class ApiEnvelope:
    """Wrapper around every Debrid-Link API payload."""
    success: bool
    value: Any = None
    pagination: Optional[dict] = None

    @classmethod
    def parse(cls, body: bytes) -> Optional["ApiEnvelope"]:
        """Parse a response body, returning None when it is not an envelope."""
        try:
            payload = json.loads(body)
        except (ValueError, UnicodeDecodeError):
            return None
        if not isinstance(payload, dict):
            return None
        return cls(
            success=bool(payload.get("success", False)),
            value=payload.get("value"),
            pagination=payload.get("pagination"),
        )
