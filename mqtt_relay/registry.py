"""
Subscription registry: user -> topics and topic -> users
"""
import asyncio
from contextlib import asynccontextmanager
from typing import Dict, List, Set

import paho.mqtt.client as mqtt

from log import setup_logger
from mqtt_relay.client import MQTTClient
from mqtt_relay.errors import (
    AlreadySubscribed,
    NotConnected,
    NotSubscribed,
    TransportError,
)
from type import Session

logger = setup_logger(__name__)


class SubscriptionRegistry:
    def __init__(self, mqtt_client: MQTTClient):
        """
        Quản lý session của từng người dùng và chỉ mục topic -> users.

        Bất biến: user nằm trong topic_users[T] khi và chỉ khi T nằm trong
        session.subscribed_topics của user đó; topic không còn ai subscribe
        thì bị xóa khỏi chỉ mục.
        """
        self.mqtt_client = mqtt_client
        self.sessions: Dict[str, Session] = {}
        self.topic_users: Dict[str, Set[str]] = {}

        # topic -> [lock, số coroutine đang giữ/chờ]
        self._topic_locks: Dict[str, list] = {}

    def session(self, user_id: str) -> Session:
        """Lấy session của user, tạo mới nếu chưa có"""
        if user_id not in self.sessions:
            self.sessions[user_id] = Session(user_id=user_id)
            logger.debug(f"Created session for user {user_id}")
        return self.sessions[user_id]

    def forget(self, user_id: str):
        session = self.sessions.pop(user_id, None)
        if session is None:
            return
        for topic in session.subscribed_topics:
            self._remove_pair(user_id, topic)

    def list_user_topics(self, user_id: str) -> List[str]:
        session = self.sessions.get(user_id)
        if session is None:
            return []
        return sorted(session.subscribed_topics)

    def subscribers_of(self, topic: str) -> Set[str]:
        return set(self.topic_users.get(topic, ()))

    def topics(self) -> List[str]:
        return sorted(self.topic_users)

    def matching_subscribers(self, topic: str) -> Set[str]:
        """
        Tất cả user có subscription khớp với topic của message,
        kể cả subscription dùng wildcard (+, #)
        """
        users = self.subscribers_of(topic)
        for subscription, subscribers in self.topic_users.items():
            if subscription != topic and mqtt.topic_matches_sub(subscription, topic):
                users.update(subscribers)
        return users

    @asynccontextmanager
    async def _topic_lock(self, topic: str):
        entry = self._topic_locks.setdefault(topic, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._topic_locks[topic]

    async def subscribe(self, user_id: str, topic: str) -> int:
        """
        Subscribe topic cho user, chỉ ghi vào registry sau khi broker xác nhận

        Returns:
            int: Số topic user đang subscribe sau thao tác
        """
        if not self.mqtt_client.is_connected:
            raise NotConnected()

        session = self.session(user_id)
        async with self._topic_lock(topic):
            if topic in session.subscribed_topics:
                raise AlreadySubscribed(topic)

            generation = self.mqtt_client.generation
            await self.mqtt_client.subscribe(topic)
            if self.mqtt_client.generation != generation:
                raise TransportError(f"connection closed before subscription to {topic} was confirmed")

            session.subscribed_topics.add(topic)
            self.topic_users.setdefault(topic, set()).add(user_id)

        logger.info(f"[user {user_id}] Subscribed to topic: {topic}")
        return len(session.subscribed_topics)

    async def unsubscribe(self, user_id: str, topic: str) -> int:
        """
        Hủy subscribe topic của user.

        Chỉ gửi UNSUBSCRIBE tới broker khi user là người cuối cùng subscribe
        topic đó; nếu còn user khác thì subscription phía broker được giữ lại.

        Returns:
            int: Số topic user còn subscribe sau thao tác
        """
        if not self.mqtt_client.is_connected:
            raise NotConnected()

        session = self.session(user_id)
        async with self._topic_lock(topic):
            if topic not in session.subscribed_topics:
                raise NotSubscribed(topic)

            if self.topic_users.get(topic, set()) <= {user_id}:
                generation = self.mqtt_client.generation
                await self.mqtt_client.unsubscribe(topic)
                if self.mqtt_client.generation != generation:
                    raise TransportError(f"connection closed before unsubscribe from {topic} was confirmed")

            self._remove_pair(user_id, topic)

        logger.info(f"[user {user_id}] Unsubscribed from topic: {topic}")
        return len(session.subscribed_topics)

    async def clear_user(self, user_id: str) -> int:
        """
        Hủy toàn bộ subscription của user (best-effort)

        Returns:
            int: Số topic đã hủy thành công
        """
        topics = self.list_user_topics(user_id)
        if not topics:
            return 0

        results = await asyncio.gather(
            *(self.unsubscribe(user_id, topic) for topic in topics),
            return_exceptions=True,
        )

        cleared = 0
        for topic, result in zip(topics, results):
            if isinstance(result, BaseException):
                logger.error(f"[user {user_id}] Failed to unsubscribe from {topic}: {result}")
            else:
                cleared += 1
        logger.info(f"[user {user_id}] Cleared {cleared}/{len(topics)} subscriptions")
        return cleared

    def clear_all(self):
        """
        Xóa toàn bộ chỉ mục mà không gửi UNSUBSCRIBE (kết nối đã bị đóng)
        """
        count = len(self.topic_users)
        self.topic_users.clear()
        for session in self.sessions.values():
            session.subscribed_topics.clear()
        if count:
            logger.info(f"Dropped subscriptions for {count} topics")

    def _remove_pair(self, user_id: str, topic: str):
        session = self.sessions.get(user_id)
        if session is not None:
            session.subscribed_topics.discard(topic)

        users = self.topic_users.get(topic)
        if users is None:
            return
        users.discard(user_id)
        # Không để lại topic rỗng trong chỉ mục
        if not users:
            del self.topic_users[topic]
