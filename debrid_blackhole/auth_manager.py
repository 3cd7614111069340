"""
OAuth2 token lifecycle for Debrid-Link.

Tokens are served from the cached credential while valid, refreshed with the
refresh token once (almost) expired, and otherwise obtained through the device
authorization grant: a human approves the device from a mailed link while this
process polls the token endpoint. Only one process at a time may run the device
flow; the others wait on the shared lock and reuse its result.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Optional
from urllib.parse import urlencode

from .exceptions import (
    AuthenticationError,
    DeviceAuthorizationExpiredError,
    MailerError,
    TransportError,
)
from .logging_config import LogContext
from .mailer import Mailer
from .models import Credential, DeviceCode, utcnow
from .process_lock import ProcessLock
from .token_store import TokenStore
from .transport import HttpTransport, HttpResponse

logger = logging.getLogger(__name__)

FORM_HEADERS = {"Content-Type": "application/x-www-form-urlencoded"}


class AuthManager:
    """Owns the bearer credential for the lifetime of the process."""

    OAUTH_ENDPOINT = "https://debrid-link.com/api/oauth"
    SCOPE = "get.post.delete.seedbox"
    DEVICE_GRANT_TYPE = "http://oauth.net/grant_type/device/1.0"
    REFRESH_GRANT_TYPE = "refresh_token"

    def __init__(
        self,
        client_id: str,
        mailer: Mailer,
        transport: HttpTransport,
        token_store: TokenStore,
        process_lock: ProcessLock,
        device_poll_interval: float = 5.0,
    ):
        if not client_id:
            raise AuthenticationError("Missing OAuth2 client id")
        if mailer is None:
            raise AuthenticationError("Missing mailer for the device verification link")

        self.client_id = client_id
        self.device_poll_interval = device_poll_interval
        self._mailer = mailer
        self._transport = transport
        self._store = token_store
        self._lock = process_lock

        self._credential: Optional[Credential] = None
        self._loaded = False

    @property
    def credential(self) -> Optional[Credential]:
        return self._credential

    async def _load(self) -> None:
        if self._loaded:
            return
        self._loaded = True
        self._credential = await self._store.load()
        if self._credential:
            logger.debug(f"Loaded cached credential expiring at {self._credential.expires_at.isoformat()}")

    async def _adopt(self, credential: Credential) -> str:
        self._credential = credential
        await self._store.save(credential)
        return credential.access_token

    async def get_token(self, scope: Optional[str] = None) -> str:
        """
        Return a valid access token, refreshing or re-authorizing as needed.

        Raises:
            DeviceAuthorizationExpiredError: nobody approved the device in time
        """
        await self._load()

        credential = self._credential
        if credential and not credential.is_expired():
            logger.debug(f"Using cached token, expires at {credential.expires_at.isoformat()}")
            return credential.access_token

        if credential and credential.refresh_token:
            logger.debug("Token (almost) expired, trying to refresh")
            try:
                refreshed = await self._refresh(credential.refresh_token)
            except (AuthenticationError, TransportError) as e:
                # stale tokens stay in place until the device flow clears them
                logger.info(f"Unable to refresh token: {e}")
            else:
                logger.info(f"Token refreshed, expires at {refreshed.expires_at.isoformat()}")
                return await self._adopt(refreshed)

        return await self._authorize_device(scope or self.SCOPE)

    async def clear_token(self) -> None:
        """Forget the credential in memory and on disk."""
        self._credential = None
        self._loaded = True
        await self._store.delete()

    async def _post_form(self, path: str, fields: dict) -> HttpResponse:
        return await self._transport.request(
            "POST",
            f"{self.OAUTH_ENDPOINT}{path}",
            headers=FORM_HEADERS,
            data=urlencode(fields),
        )

    def _parse_token_response(
        self,
        response: HttpResponse,
        previous_refresh_token: Optional[str] = None,
    ) -> Credential:
        try:
            payload = response.json()
        except ValueError:
            payload = None
        if not isinstance(payload, dict):
            raise AuthenticationError(
                f"Token endpoint returned an unreadable response ({response.status})"
            )
        if not response.ok or "error" in payload:
            raise AuthenticationError(
                f"Token endpoint returned {response.status}",
                payload.get("error_description") or payload.get("error"),
            )
        try:
            return Credential.from_token_response(payload, previous_refresh_token)
        except ValueError as e:
            raise AuthenticationError("Token endpoint returned no usable token", str(e)) from e

    async def _refresh(self, refresh_token: str) -> Credential:
        response = await self._post_form("/token", {
            "grant_type": self.REFRESH_GRANT_TYPE,
            "client_id": self.client_id,
            "refresh_token": refresh_token,
        })
        return self._parse_token_response(response, previous_refresh_token=refresh_token)

    async def _request_device_code(self, scope: str) -> DeviceCode:
        response = await self._post_form("/device/code", {
            "client_id": self.client_id,
            "scope": scope,
        })
        if not response.ok:
            raise AuthenticationError(
                f"Device code request failed ({response.status} {response.reason})",
                response.text(),
            )
        try:
            return DeviceCode.from_dict(response.json())
        except (ValueError, AttributeError) as e:
            raise AuthenticationError("Device code response is invalid", str(e)) from e

    async def _exchange_device_code(self, device_code: str) -> Credential:
        response = await self._post_form("/token", {
            "grant_type": self.DEVICE_GRANT_TYPE,
            "client_id": self.client_id,
            "code": device_code,
        })
        return self._parse_token_response(response)

    async def _authorize_device(self, scope: str) -> str:
        async with self._lock:
            # another process may have completed the authorization while we waited
            stored = await self._store.load()
            if stored and not stored.is_expired():
                logger.info("Using credential authorized by another process")
                self._credential = stored
                return stored.access_token

            await self.clear_token()

            device_code = await self._request_device_code(scope)
            verification_expiry = utcnow() + timedelta(seconds=device_code.expires_in)
            link = device_code.verification_link

            with LogContext(url=link):
                logger.info(
                    f"Received device link: {link}, expires on '{verification_expiry.isoformat()}'"
                )
                try:
                    await self._mailer.notify(device_code.user_code, link)
                except MailerError as e:
                    logger.error(f"Couldn't deliver verification link: {e}")

            while utcnow() <= verification_expiry:
                try:
                    credential = await self._exchange_device_code(device_code.device_code)
                except (AuthenticationError, TransportError) as e:
                    logger.debug(f"Device not authorized yet: {e}")
                    await asyncio.sleep(self.device_poll_interval)
                    continue

                logger.info("Device authorized")
                return await self._adopt(credential)

        raise DeviceAuthorizationExpiredError(
            "Unable to generate access_token using device code: authorization expired",
            user_code=device_code.user_code,
        )
