"""
Tests for verification link notifiers (debrid_blackhole/mailer.py)
"""

import smtplib
import ssl

import pytest
from unittest.mock import MagicMock, patch

from debrid_blackhole.config import Settings
from debrid_blackhole.exceptions import MailerError, MissingCredentialsError, TransportError
from debrid_blackhole.mailer import (
    LogMailer,
    MailjetMailer,
    SmtpMailer,
    create_mailer,
)

from conftest import json_response


LINK = "https://debrid-link.com/device/ABCD"


def _settings(**overrides):
    return Settings(_env_file=None, mail_from="bot@example.test", mail_to="a@example.test, b@example.test", **overrides)


class TestCreateMailer:
    """Tests for mailer selection."""

    def test_log_mailer_by_default(self, transport):
        assert isinstance(create_mailer(_settings(), transport), LogMailer)

    def test_mailjet(self, transport):
        mailer = create_mailer(_settings(mj_apikey_public="pub", mj_apikey_private="priv"), transport)
        assert isinstance(mailer, MailjetMailer)
        assert mailer.recipients == ["a@example.test", "b@example.test"]

    def test_mailjet_missing_secret(self, transport):
        with pytest.raises(MissingCredentialsError):
            create_mailer(_settings(mj_apikey_public="pub"), transport)

    def test_smtp(self, transport):
        mailer = create_mailer(
            _settings(smtp_host="mail.test", smtp_port=587, smtp_user="u", smtp_pass="p"),
            transport,
        )
        assert isinstance(mailer, SmtpMailer)
        assert mailer.port == 587
        assert mailer.verify_certificate is True

    def test_smtp_insecure_tls(self, transport):
        mailer = create_mailer(
            _settings(
                smtp_host="mail.test", smtp_port=587, smtp_user="u", smtp_pass="p", smtp_insecure_tls=True
            ),
            transport,
        )
        assert mailer.verify_certificate is False

    @pytest.mark.parametrize("missing", ["smtp_port", "smtp_user", "smtp_pass"])
    def test_smtp_missing_setting(self, transport, missing):
        values = {"smtp_host": "mail.test", "smtp_port": 587, "smtp_user": "u", "smtp_pass": "p"}
        del values[missing]
        with pytest.raises(MissingCredentialsError):
            create_mailer(_settings(**values), transport)


class TestLogMailer:
    @pytest.mark.asyncio
    async def test_logs_link(self, caplog):
        await LogMailer().notify("ABCD", LINK)
        assert LINK in caplog.text


class TestSmtpMailer:
    """Tests for SmtpMailer."""

    @pytest.fixture
    def mailer(self):
        return SmtpMailer("mail.test", 587, "user", "secret", "bot@example.test", ["a@example.test"])

    def test_message(self, mailer):
        message = mailer._build_message("ABCD", LINK)
        assert message["Subject"] == "Confirm device"
        assert message["To"] == "a@example.test"
        assert LINK in message.get_body(("plain",)).get_content()

    @pytest.mark.asyncio
    async def test_send_with_starttls(self, mailer):
        smtp = MagicMock()
        smtp.has_extn.return_value = True
        with patch("debrid_blackhole.mailer.smtplib.SMTP") as smtp_class:
            smtp_class.return_value.__enter__.return_value = smtp
            await mailer.notify("ABCD", LINK)

        smtp_class.assert_called_once_with("mail.test", 587, timeout=30.0)
        smtp.starttls.assert_called_once()
        context = smtp.starttls.call_args.kwargs["context"]
        assert context.verify_mode == ssl.CERT_REQUIRED
        assert context.check_hostname is True
        smtp.login.assert_called_once_with("user", "secret")
        smtp.send_message.assert_called_once()

    @pytest.mark.asyncio
    async def test_starttls_without_verification(self):
        mailer = SmtpMailer(
            "mail.test", 587, "user", "secret", "bot@example.test", ["a@example.test"],
            verify_certificate=False,
        )
        smtp = MagicMock()
        smtp.has_extn.return_value = True
        with patch("debrid_blackhole.mailer.smtplib.SMTP") as smtp_class:
            smtp_class.return_value.__enter__.return_value = smtp
            await mailer.notify("ABCD", LINK)

        context = smtp.starttls.call_args.kwargs["context"]
        assert context.verify_mode == ssl.CERT_NONE
        assert context.check_hostname is False

    @pytest.mark.asyncio
    async def test_send_failure(self, mailer):
        with patch("debrid_blackhole.mailer.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
            with pytest.raises(MailerError):
                await mailer.notify("ABCD", LINK)


class TestMailjetMailer:
    """Tests for MailjetMailer."""

    @pytest.fixture
    def mailer(self, transport):
        return MailjetMailer(transport, "pub", "priv", "bot@example.test", ["a@example.test"])

    def test_payload(self, mailer):
        message = mailer.build_payload("ABCD", LINK)["Messages"][0]
        assert message["From"]["Email"] == "bot@example.test"
        assert message["To"] == [{"Email": "a@example.test"}]
        assert message["Subject"] == "Confirm device"
        assert message["TextPart"] == f"Please confirm your Debrid Link device: {LINK}"

    @pytest.mark.asyncio
    async def test_send(self, mailer, transport):
        transport.route("/v3.1/send", json_response({"Messages": [{"Status": "success"}]}))

        await mailer.notify("ABCD", LINK)

        request = transport.requests[0]
        assert request.method == "POST"
        assert request.url == MailjetMailer.SEND_URL
        assert request.auth.login == "pub"
        assert request.auth.password == "priv"
        assert request.json_body["Messages"][0]["Subject"] == "Confirm device"

    @pytest.mark.asyncio
    async def test_rejected(self, mailer, transport):
        transport.route("/v3.1/send", json_response({"ErrorMessage": "bad key"}, status=401))
        with pytest.raises(MailerError):
            await mailer.notify("ABCD", LINK)

    @pytest.mark.asyncio
    async def test_unreachable(self, mailer, transport):
        transport.route("/v3.1/send", TransportError("refused"))
        with pytest.raises(MailerError):
            await mailer.notify("ABCD", LINK)
