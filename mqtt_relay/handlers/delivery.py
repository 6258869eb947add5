"""
Handler forwarding broker messages to subscribed users
"""
import asyncio
from typing import Union

from log import setup_logger
from mqtt_relay.registry import SubscriptionRegistry
from mqtt_relay.transport import Transport
from mqtt_relay.utils.helpers import decode_payload, format_notification

logger = setup_logger(__name__)


class DeliveryHandler:
    def __init__(self, registry: SubscriptionRegistry, transport: Transport):
        self.registry = registry
        self.transport = transport

    async def handle_message(self, topic: str, payload: Union[bytes, str]) -> int:
        """
        Gửi message từ broker tới từng user đã subscribe topic

        Returns:
            int: Số user nhận được thông báo
        """
        logger.info(f"Received message [{topic}]: {decode_payload(payload)}")

        # Snapshot danh sách user, registry có thể thay đổi trong lúc gửi
        user_ids = sorted(self.registry.matching_subscribers(topic))
        if not user_ids:
            logger.info(f"Topic {topic} has no subscribers, dropping message")
            return 0

        notification = format_notification(topic, payload)
        results = await asyncio.gather(*(self._deliver(user_id, notification) for user_id in user_ids))
        return sum(results)

    async def _deliver(self, user_id: str, notification: str) -> bool:
        try:
            await self.transport.send(user_id, notification)
        except Exception as e:
            logger.error(f"Failed to forward message to user {user_id}: {e}")
            return False
        logger.info(f"Forwarded message to user {user_id}")
        return True
