"""
Tests for the Debrid-Link API client (debrid_blackhole/debrid_client.py)
"""

from urllib.parse import parse_qs

import pytest

from debrid_blackhole.debrid_client import DebridLinkClient, encode_form
from debrid_blackhole.exceptions import ApiError, ValidationError
from debrid_blackhole.models import AddTorrentRequest, PagerRequest
from debrid_blackhole.transport import HttpResponse, MultipartBody

from conftest import envelope, json_response


API = DebridLinkClient.API_URI

UNAUTHORIZED = json_response({"success": False, "error": "badToken"}, status=401, reason="Unauthorized")


@pytest.fixture
def client(stub_auth, transport):
    return DebridLinkClient(stub_auth, transport)


class TestEncodeForm:
    """Tests for form encoding."""

    def test_booleans_and_lists(self):
        encoded = encode_form({"wait": False, "async": True, "files-unwanted": ["a", "b"], "skip": None})
        assert parse_qs(encoded) == {
            "wait": ["false"],
            "async": ["true"],
            "files-unwanted": ['["a", "b"]'],
        }


class TestCall:
    """Tests for the authenticated call and its re-authentication."""

    def test_requires_auth_manager(self, transport):
        with pytest.raises(ValueError):
            DebridLinkClient(None, transport)

    @pytest.mark.asyncio
    async def test_bearer_token_and_envelope(self, client, transport, stub_auth):
        transport.route("/seedbox/limits", envelope({"usagePercent": {"current": 5, "value": 100}}))

        value = await client.call("/seedbox/limits")

        assert value == {"usagePercent": {"current": 5, "value": 100}}
        request = transport.requests[0]
        assert request.method == "GET"
        assert request.url == f"{API}/seedbox/limits"
        assert request.headers["Authorization"] == "Bearer token-1"

    @pytest.mark.asyncio
    async def test_rejected_three_times(self, client, transport, stub_auth):
        transport.route("/seedbox/list", UNAUTHORIZED)

        with pytest.raises(ApiError) as exc_info:
            await client.call("/seedbox/list")

        assert exc_info.value.status == 401
        assert len(transport.requests) == 3
        assert stub_auth.get_token.await_count == 3
        assert stub_auth.clear_token.await_count == 3

    @pytest.mark.asyncio
    async def test_succeeds_after_reauthentication(self, client, transport, stub_auth):
        stub_auth.get_token.side_effect = ["old-token", "new-token"]
        transport.route("/seedbox/list", UNAUTHORIZED, envelope([]))

        assert await client.call("/seedbox/list") == []

        assert [r.headers["Authorization"] for r in transport.requests] == [
            "Bearer old-token",
            "Bearer new-token",
        ]
        assert stub_auth.clear_token.await_count == 1

    @pytest.mark.asyncio
    async def test_other_error_status(self, client, transport, stub_auth):
        transport.route(
            "/seedbox/add",
            HttpResponse(status=500, reason="Internal Server Error", body=b"upstream down"),
        )

        with pytest.raises(ApiError) as exc_info:
            await client.call("/seedbox/add", method="POST", body={"url": "x"})

        error = exc_info.value
        assert error.status == 500
        assert error.reason == "Internal Server Error"
        assert error.body == "upstream down"
        assert error.url == f"{API}/seedbox/add"
        assert len(transport.requests) == 1
        stub_auth.clear_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unreadable_success_body(self, client, transport):
        transport.route("/seedbox/list", HttpResponse(status=200, reason="OK", body=b"<html></html>"))
        assert await client.call("/seedbox/list") is None

    @pytest.mark.asyncio
    async def test_bytes_body(self, client, transport):
        transport.route("/upload", envelope(None))
        await client.call("/upload", method="POST", body=b"\x00\x01")
        request = transport.requests[0]
        assert request.headers["Content-Type"] == "application/octet-stream"
        assert request.data == b"\x00\x01"


class TestEndpoints:
    """Tests for the seedbox endpoints."""

    @pytest.mark.asyncio
    async def test_list_torrents(self, client, transport, torrent_payload):
        transport.route("/seedbox/list", envelope([torrent_payload]))

        torrents = await client.list_torrents(PagerRequest(ids=["abc123"]))

        assert [t.id for t in torrents] == ["abc123"]
        assert torrents[0].is_complete
        assert transport.requests[0].params == {"ids": "abc123"}

    @pytest.mark.asyncio
    async def test_list_torrents_unreadable(self, client, transport):
        transport.route("/seedbox/list", HttpResponse(status=200, reason="OK", body=b"nope"))
        assert await client.list_torrents() == []

    @pytest.mark.asyncio
    async def test_add_torrent_by_url(self, client, transport, torrent_payload):
        transport.route("/seedbox/add", envelope(torrent_payload))

        torrent = await client.add_torrent(AddTorrentRequest(url="magnet:?xt=urn:btih:abc"))

        assert torrent.id == "abc123"
        request = transport.requests[0]
        assert request.method == "POST"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert parse_qs(request.data) == {
            "url": ["magnet:?xt=urn:btih:abc"],
            "wait": ["false"],
            "async": ["true"],
        }

    @pytest.mark.asyncio
    async def test_add_torrent_url_wins_over_file(self, client, transport, torrent_payload, caplog):
        transport.route("/seedbox/add", envelope(torrent_payload))

        await client.add_torrent(AddTorrentRequest(
            url="magnet:?xt=urn:btih:abc",
            file=b"d8:announce",
            file_name="x.torrent",
        ))

        form = parse_qs(transport.requests[0].data)
        assert "file" not in form
        assert "ignoring file" in caplog.text

    @pytest.mark.asyncio
    async def test_add_torrent_by_file(self, client, transport, torrent_payload):
        transport.route("/seedbox/add", envelope(torrent_payload))

        await client.add_torrent(AddTorrentRequest(file=b"d8:announce", file_name="ubuntu.torrent"))

        request = transport.requests[0]
        assert isinstance(request.data, MultipartBody)
        assert "Content-Type" not in request.headers
        assert "url" not in request.data.fields
        assert request.data.fields == {"wait": "false", "async": "true"}
        part = request.data.files[0]
        assert part.name == "file"
        assert part.filename == "ubuntu.torrent"
        assert part.content == b"d8:announce"

    @pytest.mark.asyncio
    async def test_add_torrent_without_source(self, client, transport):
        with pytest.raises(ValidationError):
            await client.add_torrent(AddTorrentRequest(file=b"d8:announce"))
        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_remove_single_torrent(self, client, transport):
        transport.route("/remove", envelope(["abc123"]))

        assert await client.remove_torrent("abc123") == ["abc123"]

        request = transport.requests[0]
        assert request.method == "DELETE"
        assert request.url == f"{API}/seedbox/abc123/remove"

    @pytest.mark.asyncio
    async def test_remove_several_torrents(self, client, transport):
        transport.route("/remove", envelope(["a", "b"]))

        await client.remove_torrent(["a", "b"])

        assert transport.requests[0].url == f"{API}/seedbox/%5B%22a%22,%20%22b%22%5D/remove"

    @pytest.mark.asyncio
    async def test_zip_torrent_files(self, client, transport):
        transport.route("/zip", envelope({"downloadUrl": "https://dl.debrid-link.com/abc.zip"}))

        value = await client.zip_torrent_files("abc123")

        assert value["downloadUrl"].endswith("abc.zip")
        assert transport.requests[0].url == f"{API}/seedbox/abc123/zip"
        assert transport.requests[0].method == "POST"

    @pytest.mark.asyncio
    async def test_configure_torrent(self, client, transport):
        transport.route("/config", envelope(None))

        await client.configure_torrent("abc123", ["abc123-1"])

        request = transport.requests[0]
        assert request.url == f"{API}/seedbox/abc123/config"
        assert parse_qs(request.data) == {"files-unwanted": ['["abc123-1"]']}

    @pytest.mark.asyncio
    async def test_activity(self, client, transport):
        transport.route("/seedbox/activity", envelope({"abc123": {"downloadPercent": 50}}))

        activity = await client.get_torrents_activity()

        assert activity["abc123"].download_percent == 50

    @pytest.mark.asyncio
    async def test_limits(self, client, transport):
        transport.route("/seedbox/limits", envelope({"dayCount": {"current": 1, "value": 25}}))

        limits = await client.get_limits_and_usage()

        assert limits.day_count.value == 25
