"""
Relay server: one shared broker connection, many isolated users
"""
import asyncio
from typing import Any, Dict, Optional, Set, Union

from log import setup_logger
from mqtt_relay.client import MQTTClient
from mqtt_relay.handlers.command import CommandHandler
from mqtt_relay.handlers.delivery import DeliveryHandler
from mqtt_relay.registry import SubscriptionRegistry
from mqtt_relay.transport import Transport
from mqtt_relay.utils.helpers import parse_private_message

logger = setup_logger(__name__)


class MQTTRelayServer:
    def __init__(self, transport: Transport, client: Optional[MQTTClient] = None, prefix: Optional[str] = None):
        """
        Khởi tạo relay server với transport dùng để gửi phản hồi và thông báo
        """
        self.transport = transport

        self.client = client or MQTTClient()
        self.registry = SubscriptionRegistry(self.client)
        self.command_handler = CommandHandler(self.client, self.registry, prefix=prefix)
        self.delivery_handler = DeliveryHandler(self.registry, transport)

        # Message từ broker -> fan-out; client bị đóng -> xóa toàn bộ subscription
        self.client.message_handler = self.handle_broker_message
        self.client.teardown_handler = self.registry.clear_all

        self._delivery_tasks: Set[asyncio.Task] = set()

    async def handle_message(self, user_id: str, text: str) -> Optional[str]:
        """
        Xử lý tin nhắn từ một user và gửi phản hồi (nếu là lệnh)
        """
        response = await self.command_handler.handle(user_id, text)
        if response is None:
            return None

        try:
            await self.transport.send(user_id, response)
            logger.debug(f"Sent response to user {user_id}")
        except Exception as e:
            logger.error(f"Failed to send response to user {user_id}: {e}")
        return response

    async def handle_event(self, event: Dict[str, Any]) -> Optional[str]:
        """
        Nhận event kiểu OneBot, chỉ xử lý tin nhắn riêng (private)
        """
        message = parse_private_message(event)
        if message is None:
            return None
        return await self.handle_message(*message)

    def handle_broker_message(self, topic: str, payload: Union[bytes, str]):
        """
        Được MQTTClient gọi trên event loop cho mỗi message còn hợp lệ
        """
        task = asyncio.get_running_loop().create_task(
            self.delivery_handler.handle_message(topic, payload)
        )
        self._delivery_tasks.add(task)
        task.add_done_callback(self._delivery_tasks.discard)

    async def wait_deliveries(self):
        """
        Chờ các lượt fan-out đang chạy hoàn tất
        """
        while self._delivery_tasks:
            await asyncio.gather(*list(self._delivery_tasks), return_exceptions=True)

    async def start(self, inbound: Optional[Transport] = None):
        """
        Khởi động server và lắng nghe lệnh cho tới khi inbound đóng
        """
        inbound = inbound or self.transport
        logger.info("=" * 60)
        logger.info("    MQTT Relay Server    ")
        logger.info("=" * 60)
        logger.info(f"Listening for directives on {type(inbound).__name__}")
        try:
            await inbound.listen(self.handle_message)
        finally:
            await self.shutdown()

    async def shutdown(self):
        """
        Dọn dẹp: xóa session, subscription và đóng kết nối broker
        """
        logger.info("Shutting down MQTT relay...")
        try:
            await self.wait_deliveries()
            await self.client.close()
            for user_id in list(self.registry.sessions):
                self.registry.forget(user_id)
            await self.transport.close()
        except Exception as e:
            logger.error(f"Error while shutting down relay: {e}")
        logger.info("MQTT relay stopped")
