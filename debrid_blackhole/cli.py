"""
Command Line Interface for Debrid-Link Blackhole
Sends one magnet or torrent file to the Debrid-Link seedbox and fetches the result.
"""

import argparse
import asyncio
import logging
import os
import sys
from typing import Optional, Sequence

from pydantic import ValidationError as SettingsValidationError

from .auth_manager import AuthManager
from .config import Settings
from .debrid_client import DebridLinkClient
from .downloaders import DownloaderKind, create_downloader
from .exceptions import (
    AuthenticationError,
    ConfigurationError,
    DebridBlackholeError,
)
from .logging_config import setup_logging
from .mailer import create_mailer
from .manager import DownloadManager
from .process_lock import ProcessLock
from .retry import RetryConfig
from .token_store import TokenStore
from .transport import HttpTransport

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="debrid-blackhole",
        description="Send a magnet or torrent file to the Debrid-Link seedbox and download the result",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Print the download links of a magnet
  debrid-blackhole ~/watch/ubuntu.magnet

  # Download through aria2
  DOWNLOADER=aria2 DOWNLOADS=/srv/downloads debrid-blackhole ubuntu.torrent

Environment Variables:
  DEBRID_LINK_CLIENT_ID - OAuth2 client id (required)
  DOWNLOADS             - Destination directory for completed files
  IN_PROGRESS           - Directory for in-progress files (default: DOWNLOADS)
  DOWNLOADER            - aria2, http (alias fetch) or unset to print links
  REMOVE_AFTER_DOWNLOAD - Remove the torrent from the seedbox when done
  TOKEN_FILE            - Cached credential path
  SMTP_HOST, SMTP_PORT, SMTP_USER, SMTP_PASS, MAIL_FROM, MAIL_TO
                        - SMTP delivery of the device verification link
  SMTP_INSECURE_TLS     - Skip STARTTLS certificate checks (self-signed relay)
  MJ_APIKEY_PUBLIC, MJ_APIKEY_PRIVATE
                        - Mailjet delivery of the device verification link
  ARIA2_RPC_URL, ARIA2_SECRET, ARIA2_SPAWN
                        - aria2 JSON-RPC endpoint and daemon options
  LOG_LEVEL, LOG_FORMAT, LOG_FILE
                        - Logging options
        """,
    )
    parser.add_argument("target", help="Path to a .magnet file or a .torrent file")
    parser.add_argument("--log-level", "-l", help="Log level (overrides LOG_LEVEL)")
    parser.add_argument(
        "--log-format", choices=["text", "json"], help="Log format (overrides LOG_FORMAT)"
    )
    parser.add_argument("--log-file", help="Log file path, enables rotation (overrides LOG_FILE)")
    return parser


def validate(settings: Settings, target: str) -> DownloaderKind:
    """
    Check everything needed before the first network call.

    Raises:
        ConfigurationError: missing target, destination or an unknown downloader
        AuthenticationError: missing OAuth2 client id
    """
    if not target:
        raise ConfigurationError("Missing torrent or magnet link")
    if not os.path.isfile(target):
        raise ConfigurationError(f"Target '{target}' is not a file")
    if not settings.debrid_link_client_id:
        raise AuthenticationError("Missing OAuth2 client id", "set DEBRID_LINK_CLIENT_ID")

    kind = DownloaderKind.from_setting(settings.downloader)
    if kind is not DownloaderKind.PRINT_ONLY and not settings.destination:
        raise ConfigurationError("Missing downloads destination configuration", "set DOWNLOADS")
    return kind


async def run(settings: Settings, target: str, kind: DownloaderKind) -> int:
    """Wire the components together and process ``target``."""
    transport = HttpTransport(
        RetryConfig(max_attempts=settings.http_retry_attempts),
        timeout=settings.http_timeout,
    )
    try:
        mailer = create_mailer(settings, transport)
        auth_manager = AuthManager(
            settings.debrid_link_client_id,
            mailer,
            transport,
            TokenStore(settings.token_path),
            ProcessLock(settings.lock_path, poll_interval=settings.lock_poll_interval),
            device_poll_interval=settings.device_poll_interval,
        )
        client = DebridLinkClient(auth_manager, transport)
        manager = DownloadManager(
            client,
            create_downloader(kind, settings, transport),
            destination=settings.destination,
            temp_destination=settings.temp_destination,
            poll_interval=settings.poll_interval,
            remove_after_download=settings.remove_after_download,
        )
        return await manager.run(target)
    finally:
        await transport.close()


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings()
    except SettingsValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(
        log_level=args.log_level or settings.log_level,
        log_file=args.log_file or settings.log_file,
        log_format=args.log_format or settings.log_format,
    )

    try:
        kind = validate(settings, args.target)
    except (ConfigurationError, AuthenticationError) as e:
        logger.error(str(e))
        sys.exit(1)

    logger.debug(f"destination: '{settings.destination}' - temp destination: '{settings.temp_destination}'")
    logger.debug(f"downloader: {kind.value}")

    try:
        exit_code = asyncio.run(run(settings, args.target, kind))
    except (DebridBlackholeError, OSError) as e:
        logger.info(f"Couldn't process '{args.target}'")
        logger.error(f"{type(e).__name__}: {e}")
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
