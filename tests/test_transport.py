"""
Unit tests for chat transports.
"""

import io
import json
from unittest.mock import AsyncMock

import httpx
import pytest
from aiohttp import test_utils

from mqtt_relay.errors import TransportError
from mqtt_relay.transport import ConsoleTransport, OneBotTransport


class TestOneBotTransport:
    @pytest.mark.asyncio
    async def test_send_private_message(self):
        requests = []

        def handler(request: httpx.Request):
            requests.append(request)
            return httpx.Response(200, json={"status": "ok", "retcode": 0, "data": {"message_id": 1}})

        transport = OneBotTransport(
            api_url="http://onebot.local",
            access_token="secret",
            http_transport=httpx.MockTransport(handler),
        )
        await transport.send("10001", "[sensors/1]: 24C")
        await transport.close()

        assert len(requests) == 1
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == "http://onebot.local/send_msg"
        assert request.headers["Authorization"] == "Bearer secret"
        assert json.loads(request.content) == {
            "message_type": "private",
            "user_id": "10001",
            "message": "[sensors/1]: 24C",
        }

    @pytest.mark.asyncio
    async def test_no_token_no_header(self):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"status": "ok", "retcode": 0})

        transport = OneBotTransport(
            api_url="http://onebot.local",
            access_token="",
            http_transport=httpx.MockTransport(handler),
        )
        await transport.send("10001", "hi")

        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_failed_status_raises(self):
        transport = OneBotTransport(
            api_url="http://onebot.local",
            access_token="",
            http_transport=httpx.MockTransport(
                lambda request: httpx.Response(200, json={"status": "failed", "retcode": 100})
            ),
        )

        with pytest.raises(TransportError, match="retcode=100"):
            await transport.send("10001", "hi")

    @pytest.mark.asyncio
    async def test_http_error_raises(self):
        transport = OneBotTransport(
            api_url="http://onebot.local",
            access_token="",
            http_transport=httpx.MockTransport(lambda request: httpx.Response(500)),
        )

        with pytest.raises(httpx.HTTPStatusError):
            await transport.send("10001", "hi")


class TestOneBotEvents:
    @pytest.fixture
    def onebot(self):
        return OneBotTransport(
            api_url="http://onebot.local",
            access_token="",
            http_transport=httpx.MockTransport(lambda request: httpx.Response(200, json={"status": "ok"})),
            event_path="/onebot/event",
        )

    @pytest.mark.asyncio
    async def test_private_message_reaches_handler(self, onebot):
        handler = AsyncMock()
        event = {
            "post_type": "message",
            "message_type": "private",
            "user_id": 10001,
            "message": [{"type": "text", "data": {"text": "#mqtt status"}}],
        }

        async with test_utils.TestClient(test_utils.TestServer(onebot.make_app(handler))) as client:
            resp = await client.post("/onebot/event", json=event)

        assert resp.status == 204
        handler.assert_awaited_once_with("10001", "#mqtt status")

    @pytest.mark.asyncio
    async def test_other_events_are_acknowledged_and_ignored(self, onebot):
        handler = AsyncMock()

        async with test_utils.TestClient(test_utils.TestServer(onebot.make_app(handler))) as client:
            group = await client.post("/onebot/event", json={
                "post_type": "message",
                "message_type": "group",
                "user_id": 1,
                "message": "#mqtt help",
            })
            heartbeat = await client.post("/onebot/event", json={"post_type": "meta_event"})

        assert group.status == 204
        assert heartbeat.status == 204
        handler.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_json_rejected(self, onebot):
        handler = AsyncMock()

        async with test_utils.TestClient(test_utils.TestServer(onebot.make_app(handler))) as client:
            resp = await client.post("/onebot/event", data=b"not json")

        assert resp.status == 400
        handler.assert_not_awaited()


class TestConsoleTransport:
    @pytest.mark.asyncio
    async def test_send_writes_line(self):
        out = io.StringIO()
        transport = ConsoleTransport(stdin=io.StringIO(), stdout=out)

        await transport.send("alice", "hello")

        assert out.getvalue() == "-> alice: hello\n"

    @pytest.mark.asyncio
    async def test_listen_reads_until_eof(self):
        stdin = io.StringIO("alice #mqtt help\n\nbob\ncarol   #mqtt status  \n")
        transport = ConsoleTransport(stdin=stdin, stdout=io.StringIO())
        handler = AsyncMock()

        await transport.listen(handler)

        assert [call.args for call in handler.await_args_list] == [
            ("alice", "#mqtt help"),
            ("carol", "#mqtt status"),
        ]
