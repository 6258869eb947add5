"""
Shared fixtures for relay tests.

FakeMQTTClient stands in for MQTTClient: it keeps the same public surface
(state, generation, connect/disconnect/publish/subscribe/unsubscribe) but
acknowledges broker requests immediately, or when ``gate`` is set.
"""

import asyncio
from typing import List, Optional, Set, Tuple

import pytest

from mqtt_relay.client import parse_broker_url
from mqtt_relay.errors import AlreadyConnected, NotConnected, TransportError
from mqtt_relay.registry import SubscriptionRegistry
from mqtt_relay.transport import Transport
from type import BrokerStatus, ConnectionState


class FakeMQTTClient:
    def __init__(self, connected: bool = True):
        self.state = ConnectionState.CONNECTED if connected else ConnectionState.DISCONNECTED
        self.broker_url = "mqtt://broker:1883" if connected else ""
        self.generation = 1
        self.calls: List[Tuple[str, str]] = []
        self.published: List[Tuple[str, str]] = []
        self.fail_topics: Set[str] = set()
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

        self.message_handler = None
        self.teardown_handler = None

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def status(self) -> BrokerStatus:
        return BrokerStatus(
            connected=self.is_connected,
            state=self.state,
            broker_url=self.broker_url,
            client_id="mqttrelay_test",
        )

    async def connect(self, url, username=None, password=None):
        if self.is_connected:
            raise AlreadyConnected()
        parse_broker_url(url)
        self.generation += 1
        self.state = ConnectionState.CONNECTED
        self.broker_url = url

    async def disconnect(self):
        if not self.is_connected:
            raise NotConnected()
        await self.close()

    async def close(self):
        self.closed = True
        self.generation += 1
        self.state = ConnectionState.DISCONNECTED
        self.broker_url = ""
        if self.teardown_handler is not None:
            self.teardown_handler()

    def publish(self, topic, payload):
        if not self.is_connected:
            raise NotConnected()
        self.published.append((topic, payload))

    async def subscribe(self, topic):
        await self._request("subscribe", topic)

    async def unsubscribe(self, topic):
        await self._request("unsubscribe", topic)

    async def _request(self, action, topic):
        if not self.is_connected:
            raise NotConnected()
        self.calls.append((action, topic))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if topic in self.fail_topics:
            raise TransportError(f"broker rejected request: {action} {topic}")

    def deliver(self, topic, payload):
        """Simulate a message arriving from the broker"""
        self.message_handler(topic, payload)


class RecordingTransport(Transport):
    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self.fail_users: Set[str] = set()
        self.closed = False

    async def send(self, user_id, text):
        if user_id in self.fail_users:
            raise ConnectionError(f"user {user_id} unreachable")
        self.sent.append((user_id, text))

    async def close(self):
        self.closed = True

    def to(self, user_id):
        return [text for uid, text in self.sent if uid == user_id]


@pytest.fixture
def fake_client():
    return FakeMQTTClient()


@pytest.fixture
def registry(fake_client):
    reg = SubscriptionRegistry(fake_client)
    fake_client.teardown_handler = reg.clear_all
    return reg


@pytest.fixture
def transport():
    return RecordingTransport()
