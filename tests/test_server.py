"""
End-to-end tests for MQTTRelayServer with a fake broker connection.
"""

import pytest

from mqtt_relay.server import MQTTRelayServer
from type import ConnectionState


@pytest.fixture
def server(fake_client, transport):
    fake_client.state = ConnectionState.DISCONNECTED
    fake_client.broker_url = ""
    return MQTTRelayServer(transport, client=fake_client, prefix="#mqtt")


class TestScenario:
    @pytest.mark.asyncio
    async def test_publish_before_connect(self, server, transport, fake_client):
        response = await server.handle_message("alice", "#mqtt publish sensors/1 hi")

        assert response.startswith("❌ MQTT broker is not connected")
        assert transport.to("alice") == [response]
        assert fake_client.published == []

    @pytest.mark.asyncio
    async def test_connect_subscribe_receive(self, server, transport, fake_client):
        await server.handle_message("alice", "#mqtt connect mqtt://broker:1883")
        await server.handle_message("alice", "#mqtt subscribe sensors/1")

        fake_client.deliver("sensors/1", b"24C")
        await server.wait_deliveries()

        notifications = [text for text in transport.to("alice") if text.startswith("[")]
        assert notifications == ["[sensors/1]: 24C"]

    @pytest.mark.asyncio
    async def test_fan_out_only_to_subscribers(self, server, transport, fake_client):
        await server.handle_message("alice", "#mqtt connect mqtt://broker:1883")
        await server.handle_message("alice", "#mqtt subscribe X")
        await server.handle_message("bob", "#mqtt subscribe X")
        await server.handle_message("carol", "#mqtt subscribe other")
        transport.sent.clear()

        fake_client.deliver("X", b"1")
        fake_client.deliver("Y", b"2")
        await server.wait_deliveries()

        assert sorted(transport.sent) == [("alice", "[X]: 1"), ("bob", "[X]: 1")]

    @pytest.mark.asyncio
    async def test_disconnect_stops_deliveries(self, server, transport, fake_client):
        await server.handle_message("alice", "#mqtt connect mqtt://broker:1883")
        await server.handle_message("alice", "#mqtt subscribe X")
        await server.handle_message("alice", "#mqtt disconnect")
        transport.sent.clear()

        fake_client.deliver("X", b"late")
        await server.wait_deliveries()

        assert transport.sent == []
        assert server.registry.subscribers_of("X") == set()

    @pytest.mark.asyncio
    async def test_plain_chat_gets_no_response(self, server, transport):
        assert await server.handle_message("alice", "just chatting") is None
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_response_send_failure_is_swallowed(self, server, transport):
        transport.fail_users.add("alice")

        response = await server.handle_message("alice", "#mqtt help")

        assert response.startswith("📋")


class TestEvents:
    @pytest.mark.asyncio
    async def test_private_message_event(self, server, transport):
        event = {
            "post_type": "message",
            "message_type": "private",
            "user_id": 10001,
            "message": [{"type": "text", "data": {"text": "#mqtt list"}}],
        }

        response = await server.handle_event(event)

        assert response == "📌 You have not subscribed to any topics"
        assert transport.to("10001") == [response]

    @pytest.mark.asyncio
    async def test_group_and_non_message_events_ignored(self, server, transport):
        assert await server.handle_event({"post_type": "notice", "user_id": 1}) is None
        assert await server.handle_event({
            "post_type": "message",
            "message_type": "group",
            "group_id": 5,
            "user_id": 1,
            "message": "#mqtt help",
        }) is None
        assert transport.sent == []


class TestShutdown:
    @pytest.mark.asyncio
    async def test_shutdown_clears_state(self, server, transport, fake_client):
        await server.handle_message("alice", "#mqtt connect mqtt://broker:1883")
        await server.handle_message("alice", "#mqtt subscribe X")

        await server.shutdown()

        assert fake_client.closed
        assert not fake_client.is_connected
        assert server.registry.topics() == []
        assert server.registry.sessions == {}
        assert transport.closed
