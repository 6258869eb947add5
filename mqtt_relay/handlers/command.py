"""
Handler for "#mqtt ..." directives sent by users
"""
from typing import List, Optional

import config
from log import setup_logger
from mqtt_relay.client import MQTTClient
from mqtt_relay.directives import parse_directive, usage
from mqtt_relay.errors import (
    InternalError,
    InvalidArgument,
    NotConnected,
    RelayError,
    TransportError,
)
from mqtt_relay.registry import SubscriptionRegistry
from type import Command, ConnectionState, Directive, Session

logger = setup_logger(__name__)


def _sentence(reason: str) -> str:
    return reason[:1].upper() + reason[1:]


class CommandHandler:
    def __init__(self, mqtt_client: MQTTClient, registry: SubscriptionRegistry, prefix: Optional[str] = None):
        """
        Xử lý lệnh của người dùng: parse, kiểm tra điều kiện, thực thi và trả về
        một chuỗi phản hồi duy nhất cho mỗi lệnh
        """
        self.mqtt_client = mqtt_client
        self.registry = registry
        self.prefix = prefix or config.RELAY_COMMAND_PREFIX

    async def handle(self, user_id: str, text: str) -> Optional[str]:
        """
        Xử lý một tin nhắn của user

        Returns:
            str: Phản hồi cho user, None nếu tin nhắn không phải lệnh
        """
        directive = parse_directive(text, self.prefix)
        if directive is None:
            return None

        logger.info(f"[user {user_id}] Received directive: {text.strip()}")
        session = self.registry.session(user_id)
        try:
            return await self.execute(session, directive)
        except RelayError as e:
            logger.warning(f"[user {user_id}] {directive.command.value} failed: {e.reason}")
            return self.format_error(directive, e)
        except Exception as e:
            logger.exception(f"[user {user_id}] Unexpected error while handling {directive.command.value}")
            return self.format_error(directive, InternalError(str(e) or type(e).__name__))

    async def execute(self, session: Session, directive: Directive) -> str:
        args = directive.args
        match directive.command:
            case Command.CONNECT:
                return await self.handle_connect(session, args)
            case Command.DISCONNECT:
                return await self.handle_disconnect(session)
            case Command.PUBLISH:
                return self.handle_publish(session, args)
            case Command.SUBSCRIBE:
                return await self.handle_subscribe(session, args)
            case Command.UNSUBSCRIBE:
                return await self.handle_unsubscribe(session, args)
            case Command.STATUS:
                return self.handle_status(session)
            case Command.LIST:
                return self.handle_list(session)
            case Command.CLEAR:
                return await self.handle_clear(session)
            case Command.HELP:
                return self.handle_help()
            case Command.UNKNOWN:
                return self.handle_unknown(directive)
            case _:
                raise InternalError(f"no handler for {directive.command!r}")

    def format_error(self, directive: Directive, error: RelayError) -> str:
        name = directive.name or directive.command.value
        if isinstance(error, NotConnected):
            return (
                "❌ MQTT broker is not connected\n"
                f"Connect first: {usage(Command.CONNECT, self.prefix)}"
            )
        if error.is_warning:
            return f"⚠️ {_sentence(error.reason)}"
        if isinstance(error, InvalidArgument):
            return (
                f"❌ {_sentence(name)} failed: {error.reason}\n"
                f"Usage: {usage(directive.command, self.prefix)}"
            )
        if isinstance(error, TransportError):
            return f"❌ {_sentence(name)} failed: {error.reason}"
        return f"❌ Internal error while handling {name}: {error.reason}"

    def _require_connected(self):
        if not self.mqtt_client.is_connected:
            raise NotConnected()

    async def handle_connect(self, session: Session, args: List[str]) -> str:
        if self.mqtt_client.is_connected:
            return "⚠️ Already connected to an MQTT broker, disconnect first"
        if not args:
            raise InvalidArgument("missing broker URL")

        url = args[0]
        username = args[1] if len(args) > 1 else None
        password = args[2] if len(args) > 2 else None

        await self.mqtt_client.connect(url, username, password)
        session.record("connect")

        credentials = f"Username: {username}" if username else "No credentials"
        return f"✅ Connected to MQTT broker\nBroker: {url}\n{credentials}"

    async def handle_disconnect(self, session: Session) -> str:
        if not self.mqtt_client.is_connected:
            return "⚠️ MQTT broker is not connected or already disconnected"

        await self.mqtt_client.disconnect()
        session.record("disconnect")
        return "✅ Disconnected from MQTT broker, all subscriptions were dropped"

    def handle_publish(self, session: Session, args: List[str]) -> str:
        self._require_connected()
        if len(args) < 2:
            raise InvalidArgument("topic and message are required")

        topic = args[0]
        message = " ".join(args[1:])
        self.mqtt_client.publish(topic, message)
        session.record(f"publish {topic}")
        logger.info(f"[user {session.user_id}] Published to topic {topic}")
        return f"✅ Message published to topic: {topic}\nContent: {message}"

    async def handle_subscribe(self, session: Session, args: List[str]) -> str:
        self._require_connected()
        if not args:
            raise InvalidArgument("topic is required")

        topic = args[0]
        count = await self.registry.subscribe(session.user_id, topic)
        session.record(f"subscribe {topic}")
        return f"✅ Subscribed to topic: {topic}\nSubscribed topics: {count}"

    async def handle_unsubscribe(self, session: Session, args: List[str]) -> str:
        self._require_connected()
        if not args:
            raise InvalidArgument("topic is required")

        topic = args[0]
        count = await self.registry.unsubscribe(session.user_id, topic)
        session.record(f"unsubscribe {topic}")
        return f"✅ Unsubscribed from topic: {topic}\nSubscribed topics: {count}"

    def handle_status(self, session: Session) -> str:
        status = self.mqtt_client.status()
        if status.connected:
            connection = "✅ connected"
        elif status.state is ConnectionState.CONNECTING:
            connection = "⏳ connecting"
        else:
            connection = "❌ not connected"

        topics = self.registry.list_user_topics(session.user_id)
        topic_list = "\n".join(f"  • {topic}" for topic in topics) or "  • (none)"
        if topics and not status.connected:
            # Broker đã bỏ các subscription này (clean session), lần connect sau sẽ xóa chúng
            topic_list += "\n  (inactive until you reconnect)"
        return (
            "📊 MQTT status:\n"
            f"Connection: {connection}\n"
            f"Broker: {status.broker_url or '(not set)'}\n"
            f"Your subscribed topics: {len(topics)}\n{topic_list}\n"
            f"Your operations: {session.operation_count}"
        )

    def handle_list(self, session: Session) -> str:
        topics = self.registry.list_user_topics(session.user_id)
        if not topics:
            return "📌 You have not subscribed to any topics"
        lines = "\n".join(f"{index}. {topic}" for index, topic in enumerate(topics, start=1))
        return f"📌 Your subscribed topics ({len(topics)}):\n{lines}"

    async def handle_clear(self, session: Session) -> str:
        self._require_connected()
        total = len(session.subscribed_topics)
        if total == 0:
            return "⚠️ You have not subscribed to any topics"

        cleared = await self.registry.clear_user(session.user_id)
        session.record("clear")
        if cleared < total:
            return f"⚠️ Cleared {cleared} of {total} subscriptions, the rest could not be removed"
        return f"✅ Cleared all subscriptions ({cleared} topics)"

    def handle_help(self) -> str:
        p = self.prefix
        return (
            "📋 MQTT commands:\n"
            f"{usage(Command.CONNECT, p)} - connect to an MQTT broker\n"
            f"{usage(Command.DISCONNECT, p)} - disconnect from the broker\n"
            f"{usage(Command.PUBLISH, p)} - publish a message to a topic\n"
            f"{usage(Command.SUBSCRIBE, p)} - subscribe to a topic\n"
            f"{usage(Command.UNSUBSCRIBE, p)} - unsubscribe from a topic\n"
            f"{usage(Command.STATUS, p)} - show connection status and your subscriptions\n"
            f"{usage(Command.LIST, p)} - list the topics you subscribed to\n"
            f"{usage(Command.CLEAR, p)} - remove all your subscriptions\n"
            f"{usage(Command.HELP, p)} - show this help\n\n"
            "📝 Examples:\n"
            f"{p} connect mqtt://mqtt.example.com:1883\n"
            f"{p} connect mqtts://mqtt.example.com:8883 username password\n\n"
            "💡 Every user has an independent set of subscriptions; "
            "the broker connection is shared."
        )

    def handle_unknown(self, directive: Directive) -> str:
        name = directive.name or "(empty)"
        return (
            f"❌ Unrecognized directive: {name}\n"
            f"Send {usage(Command.HELP, self.prefix)} to see available commands"
        )
