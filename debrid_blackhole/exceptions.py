"""
Custom exception hierarchy for Debrid-Link Blackhole.
Provides specific exception types for better error handling and debugging.
"""

from typing import Optional


class DebridBlackholeError(Exception):
    """Base exception for all Debrid-Link Blackhole errors."""

    def __init__(self, message: str, details: str | None = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


# Configuration errors
class ConfigurationError(DebridBlackholeError):
    """Raised when there's a configuration problem."""

    pass


class MissingCredentialsError(ConfigurationError):
    """Raised when required credentials are missing."""

    pass


# Validation errors
class ValidationError(DebridBlackholeError):
    """Raised when input validation fails."""

    pass


# Authentication errors
class AuthenticationError(DebridBlackholeError):
    """Raised when OAuth authentication against Debrid-Link fails."""

    pass


class DeviceAuthorizationExpiredError(AuthenticationError):
    """Raised when the device verification window closed without approval."""

    def __init__(self, message: str = "Device authorization expired", user_code: Optional[str] = None):
        super().__init__(message)
        self.user_code = user_code


# Debrid-Link API errors
class ApiError(DebridBlackholeError):
    """Raised when the Debrid-Link API answers with a non-2xx status."""

    def __init__(
        self,
        url: str,
        status: int,
        reason: str = "",
        body: Optional[str] = None,
        message: Optional[str] = None,
    ):
        super().__init__(
            message or f"The server returned an error for '{url}': ({status}) {reason}",
            body or None,
        )
        self.url = url
        self.status = status
        self.reason = reason
        self.body = body


class TransportError(DebridBlackholeError):
    """Raised when a request could not be delivered after all retries."""

    def __init__(self, message: str, url: Optional[str] = None):
        super().__init__(message)
        self.url = url


# Download errors
class DownloadError(DebridBlackholeError):
    """Raised when a single file could not be downloaded."""

    def __init__(self, message: str, url: Optional[str] = None, file_name: Optional[str] = None):
        super().__init__(message)
        self.url = url
        self.file_name = file_name


# Notification errors
class MailerError(DebridBlackholeError):
    """Raised when the verification link could not be delivered."""

    pass
