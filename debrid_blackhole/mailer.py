"""
Verification link notifiers.
The device authorization needs a human to open a link; these deliver it by
SMTP, through the Mailjet send API, or only to the log.
"""

import asyncio
import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

import aiohttp

from .config import Settings
from .exceptions import MailerError, MissingCredentialsError, TransportError
from .transport import HttpTransport

logger = logging.getLogger(__name__)

SUBJECT = "Confirm device"


def _text_body(verification_link: str) -> str:
    return f"Please confirm your Debrid Link device: {verification_link}"


def _html_body(user_code: str, verification_link: str) -> str:
    return (
        f'<p>Please confirm your Debrid Link device: '
        f'<a href="{verification_link}">{user_code}</a></p>'
    )


class Mailer(ABC):
    """Delivers the device verification prompt to a human."""

    @abstractmethod
    async def notify(self, user_code: str, verification_link: str) -> None:
        """
        Send the verification prompt.

        Raises:
            MailerError: the prompt could not be delivered
        """


class LogMailer(Mailer):
    """Writes the verification link to the log only."""

    async def notify(self, user_code: str, verification_link: str) -> None:
        logger.warning(f"Confirm this device by visiting {verification_link} (code {user_code})")


class SmtpMailer(Mailer):
    """Sends the verification prompt over SMTP, upgrading to STARTTLS when offered."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        sender: str,
        recipients: list[str],
        timeout: float = 30.0,
        verify_certificate: bool = True,
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.recipients = recipients
        self.timeout = timeout
        self.verify_certificate = verify_certificate

    def _build_message(self, user_code: str, verification_link: str) -> EmailMessage:
        message = EmailMessage()
        message["Subject"] = SUBJECT
        message["From"] = self.sender
        message["To"] = ", ".join(self.recipients)
        message.set_content(_text_body(verification_link))
        message.add_alternative(_html_body(user_code, verification_link), subtype="html")
        return message

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                context = ssl.create_default_context()
                if not self.verify_certificate:
                    context.check_hostname = False
                    context.verify_mode = ssl.CERT_NONE
                smtp.starttls(context=context)
                smtp.ehlo()
            smtp.login(self.username, self.password)
            smtp.send_message(message)

    async def notify(self, user_code: str, verification_link: str) -> None:
        message = self._build_message(user_code, verification_link)
        try:
            await asyncio.to_thread(self._send, message)
        except (smtplib.SMTPException, OSError) as e:
            raise MailerError("Couldn't send email", str(e)) from e
        logger.debug(f"Verification email sent to {message['To']}")


class MailjetMailer(Mailer):
    """Sends the verification prompt with the Mailjet v3.1 send API."""

    SEND_URL = "https://api.mailjet.com/v3.1/send"

    def __init__(
        self,
        transport: HttpTransport,
        api_key: str,
        api_secret: str,
        sender: str,
        recipients: list[str],
        sender_name: str = "Debrid-Link Blackhole",
    ):
        self._transport = transport
        self._auth = aiohttp.BasicAuth(api_key, api_secret)
        self.sender = sender
        self.sender_name = sender_name
        self.recipients = recipients

    def build_payload(self, user_code: str, verification_link: str) -> dict:
        return {
            "Messages": [
                {
                    "From": {"Email": self.sender, "Name": self.sender_name},
                    "To": [{"Email": recipient} for recipient in self.recipients],
                    "Subject": SUBJECT,
                    "TextPart": _text_body(verification_link),
                    "HTMLPart": _html_body(user_code, verification_link),
                }
            ]
        }

    async def notify(self, user_code: str, verification_link: str) -> None:
        try:
            response = await self._transport.request(
                "POST",
                self.SEND_URL,
                json_body=self.build_payload(user_code, verification_link),
                auth=self._auth,
            )
        except TransportError as e:
            raise MailerError("Couldn't reach Mailjet", str(e)) from e

        if not response.ok:
            raise MailerError(
                f"Mailjet rejected the message ({response.status} {response.reason})",
                response.text(),
            )
        logger.debug(f"Mailjet response: {response.text()}")


def create_mailer(settings: Settings, transport: HttpTransport) -> Mailer:
    """
    Pick the notifier from configuration: Mailjet when both API keys are set,
    otherwise SMTP when a host is set, otherwise the log.
    """
    if settings.mj_apikey_public or settings.mj_apikey_private:
        if not (settings.mj_apikey_public and settings.mj_apikey_private):
            raise MissingCredentialsError("Missing Mailjet API key or secret")
        logger.debug("Selected Mailjet mailer")
        return MailjetMailer(
            transport,
            settings.mj_apikey_public,
            settings.mj_apikey_private,
            sender=settings.mail_from,
            recipients=settings.mail_recipients,
        )

    if settings.smtp_host:
        missing: Optional[str] = None
        if not settings.smtp_port:
            missing = "SMTP port"
        elif not settings.smtp_user:
            missing = "SMTP user"
        elif not settings.smtp_pass:
            missing = "SMTP pass"
        if missing:
            raise MissingCredentialsError(f"Missing {missing}")
        logger.debug("Selected SMTP mailer")
        return SmtpMailer(
            settings.smtp_host,
            settings.smtp_port,
            settings.smtp_user,
            settings.smtp_pass,
            sender=settings.mail_from,
            recipients=settings.mail_recipients,
            verify_certificate=not settings.smtp_insecure_tls,
        )

    logger.debug("No mailer configured, verification links go to the log")
    return LogMailer()
