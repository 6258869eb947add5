"""
MQTT broker connection shared by every relay user
"""
import asyncio
import threading
import uuid
from typing import Callable, Dict, Optional, Tuple
from urllib.parse import unquote, urlsplit

import paho.mqtt.client as mqtt

import config
from log import setup_logger
from mqtt_relay.errors import (
    AlreadyConnected,
    InvalidArgument,
    NotConnected,
    TransportError,
)
from type import BrokerStatus, ConnectionState

logger = setup_logger(__name__)

# scheme -> (default port, TLS)
SCHEMES = {
    "mqtt": (1883, False),
    "mqtts": (8883, True),
}

MessageHandler = Callable[[str, bytes], None]


def parse_broker_url(url: str):
    """
    Tách broker URL thành (host, port, use_tls, username, password)

    Raises:
        InvalidArgument: URL không bắt đầu bằng mqtt:// hoặc mqtts://, hoặc thiếu host
    """
    if not url.startswith(("mqtt://", "mqtts://")):
        raise InvalidArgument(f"broker URL must start with mqtt:// or mqtts://: {url}")

    parts = urlsplit(url)
    try:
        port = parts.port
    except ValueError:
        raise InvalidArgument(f"invalid port in broker URL: {url}") from None
    if not parts.hostname:
        raise InvalidArgument(f"broker URL has no host: {url}")

    default_port, use_tls = SCHEMES[parts.scheme]
    username = unquote(parts.username) if parts.username else None
    password = unquote(parts.password) if parts.password else None
    return parts.hostname, port or default_port, use_tls, username, password


class MQTTClient:
    def __init__(self):
        """
        Quản lý kết nối duy nhất tới MQTT broker.

        Network loop của paho chạy trên thread riêng (loop_start); mọi callback
        chỉ chuyển kết quả về event loop bằng call_soon_threadsafe, trạng thái
        chỉ được thay đổi trên event loop.
        """
        self.client: Optional[mqtt.Client] = None
        self.client_id = ""
        self.broker_url = ""
        self.state = ConnectionState.DISCONNECTED
        # Tăng mỗi lần mở hoặc đóng client, dùng để bỏ qua callback của client cũ
        self.generation = 0

        # Handler nhận (topic, payload) cho mỗi message từ broker
        self.message_handler: Optional[MessageHandler] = None
        # Gọi mỗi khi client bị đóng (xóa toàn bộ subscription)
        self.teardown_handler: Optional[Callable[[], None]] = None

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._connect_future: Optional[asyncio.Future] = None
        # (generation, mid) -> future chờ SUBACK/UNSUBACK
        self._pending: Dict[Tuple[int, int], asyncio.Future] = {}
        self._pending_lock = threading.Lock()
        self._connect_lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    def status(self) -> BrokerStatus:
        return BrokerStatus(
            connected=self.is_connected,
            state=self.state,
            broker_url=self.broker_url,
            client_id=self.client_id if self.client is not None else "",
        )

    async def connect(self, url: str, username: Optional[str] = None, password: Optional[str] = None):
        """
        Kết nối tới MQTT broker và chờ CONNACK

        Args:
            url (str): mqtt://host[:port] hoặc mqtts://host[:port]
            username (str): Tên đăng nhập (tùy chọn)
            password (str): Mật khẩu (tùy chọn)
        """
        if self.state is ConnectionState.CONNECTED:
            raise AlreadyConnected()
        # Lock giữ suốt cả lúc dọn client cũ, khi đó state tạm thời là DISCONNECTED
        if self.state is ConnectionState.CONNECTING or self._connect_lock.locked():
            raise AlreadyConnected("a connection attempt is already in progress")

        host, port, use_tls, url_username, url_password = parse_broker_url(url)
        username = username or url_username
        password = password or url_password

        async with self._connect_lock:
            await self._open(url, host, port, use_tls, username, password)

    async def _open(self, url: str, host: str, port: int, use_tls: bool,
                    username: Optional[str], password: Optional[str]):
        self._loop = asyncio.get_running_loop()

        # Dọn client cũ (đã mất kết nối) trước khi tạo client mới
        if self.client is not None:
            logger.info(f"Tearing down stale MQTT client {self.client_id}")
            await self._teardown()

        self.generation += 1
        generation = self.generation
        self.client_id = f"{config.MQTT_CLIENT_ID_PREFIX}{uuid.uuid4().hex[:8]}"

        client = mqtt.Client(
            mqtt.CallbackAPIVersion.VERSION2,
            client_id=self.client_id,
            clean_session=True,
            userdata=generation,
            protocol=mqtt.MQTTv311,
            reconnect_on_failure=False,
        )
        client.connect_timeout = config.MQTT_CONNECT_TIMEOUT
        client.on_connect = self._on_connect
        client.on_connect_fail = self._on_connect_fail
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        client.on_subscribe = self._on_ack
        client.on_unsubscribe = self._on_ack
        client.on_publish = self._on_publish

        self.client = client
        self.broker_url = url
        self.state = ConnectionState.CONNECTING
        self._connect_future = self._loop.create_future()

        logger.info(f"Connecting to MQTT broker {host}:{port} (tls={use_tls}) as {self.client_id}")
        try:
            if username:
                client.username_pw_set(username, password or None)
            if use_tls:
                client.tls_set()
            client.connect_async(host, port, keepalive=config.MQTT_KEEPALIVE)
            client.loop_start()
            await asyncio.wait_for(self._connect_future, timeout=config.MQTT_CONNECT_TIMEOUT)
        except asyncio.TimeoutError:
            await self._abort(generation)
            raise TransportError(f"timed out connecting to {url}") from None
        except TransportError:
            await self._abort(generation)
            raise
        except (OSError, ValueError) as e:
            await self._abort(generation)
            raise TransportError(f"could not connect to {url}: {e}") from e

    async def disconnect(self):
        """
        Ngắt kết nối, không chờ các ack đang chờ xử lý
        """
        if not self.is_connected:
            raise NotConnected()
        url = self.broker_url
        await self._teardown()
        logger.info(f"Disconnected from MQTT broker {url}")

    async def close(self):
        """
        Đóng client bất kể trạng thái (dùng khi tắt tiến trình)
        """
        if self.client is not None or self.state is not ConnectionState.DISCONNECTED:
            await self._teardown()

    def publish(self, topic: str, payload: str):
        """
        Gửi message tới broker (QoS 0, không retain, không chờ xác nhận)
        """
        client = self._require_connected()
        try:
            info = client.publish(topic, payload, qos=0, retain=False)
        except ValueError as e:
            raise InvalidArgument(f"invalid topic {topic!r}: {e}") from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            logger.error(f"Publish to {topic} failed: {mqtt.error_string(info.rc)}")
            raise TransportError(f"publish to {topic} failed: {mqtt.error_string(info.rc)}")
        logger.debug(f"Queued publish to {topic} (mid={info.mid})")

    async def subscribe(self, topic: str):
        """
        Subscribe ở phía broker và chờ SUBACK
        """
        await self._request(lambda client: client.subscribe(topic, qos=0), f"subscribe to {topic}")

    async def unsubscribe(self, topic: str):
        """
        Unsubscribe ở phía broker và chờ UNSUBACK
        """
        await self._request(lambda client: client.unsubscribe(topic), f"unsubscribe from {topic}")

    def _require_connected(self) -> mqtt.Client:
        if not self.is_connected or self.client is None:
            raise NotConnected()
        return self.client

    async def _request(self, send, action: str):
        client = self._require_connected()
        generation = self.generation
        future = self._loop.create_future()

        # Giữ lock cho tới khi future được đăng ký, tránh trường hợp ack về trước
        with self._pending_lock:
            try:
                result, mid = send(client)
            except ValueError as e:
                raise InvalidArgument(f"cannot {action}: {e}") from e
            if result != mqtt.MQTT_ERR_SUCCESS:
                raise TransportError(f"cannot {action}: {mqtt.error_string(result)}")
            key = (generation, mid)
            self._pending[key] = future

        try:
            await asyncio.wait_for(future, timeout=config.MQTT_ACK_TIMEOUT)
        except asyncio.TimeoutError:
            raise TransportError(f"no acknowledgment from broker for {action}") from None
        finally:
            with self._pending_lock:
                self._pending.pop(key, None)

    async def _abort(self, generation: int):
        if generation == self.generation:
            await self._teardown()

    async def _teardown(self):
        client = self.client
        self.client = None
        self.generation += 1
        self.state = ConnectionState.DISCONNECTED
        self.broker_url = ""

        self._fail_pending(TransportError("connection to broker closed"))
        future = self._connect_future
        if future is not None and not future.done():
            future.set_exception(TransportError("connection attempt aborted"))
        self._connect_future = None

        if self.teardown_handler is not None:
            self.teardown_handler()

        if client is not None:
            await asyncio.to_thread(self._close_client, client)

    @staticmethod
    def _close_client(client: mqtt.Client):
        rc = client.disconnect()
        if rc != mqtt.MQTT_ERR_SUCCESS:
            logger.debug(f"Client disconnect returned: {mqtt.error_string(rc)}")
        client.loop_stop()

    def _fail_pending(self, exc: Exception):
        with self._pending_lock:
            futures = list(self._pending.values())
            self._pending.clear()
        for future in futures:
            if not future.done():
                future.set_exception(exc)

    # ---- Callback từ network thread của paho ----

    def _call_soon(self, callback, *args):
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            loop.call_soon_threadsafe(callback, *args)
        except RuntimeError:
            # Event loop đã đóng trong lúc tắt tiến trình
            logger.debug("Event loop closed, dropping MQTT callback")

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        self._call_soon(self._handle_connect, userdata, reason_code)

    def _on_connect_fail(self, client, userdata):
        self._call_soon(self._handle_connect_fail, userdata)

    def _on_disconnect(self, client, userdata, disconnect_flags, reason_code, properties=None):
        self._call_soon(self._handle_closed, userdata, reason_code)

    def _on_message(self, client, userdata, msg):
        self._call_soon(self._handle_message, userdata, msg.topic, msg.payload)

    def _on_ack(self, client, userdata, mid, reason_code_list, properties=None):
        with self._pending_lock:
            future = self._pending.get((userdata, mid))
        if future is not None:
            self._call_soon(self._resolve_ack, future, list(reason_code_list or []))

    def _on_publish(self, client, userdata, mid, reason_code=None, properties=None):
        logger.debug(f"Broker accepted publish mid={mid}")

    # ---- Xử lý trên event loop ----

    def _handle_connect(self, generation: int, reason_code):
        if generation != self.generation:
            return
        future = self._connect_future
        if reason_code.is_failure:
            logger.error(f"MQTT broker refused connection: {reason_code}")
            if future is not None and not future.done():
                future.set_exception(TransportError(f"broker refused connection: {reason_code}"))
            return

        self.state = ConnectionState.CONNECTED
        logger.info(f"Connected to MQTT broker {self.broker_url} with result code: {reason_code}")
        if future is not None and not future.done():
            future.set_result(None)

    def _handle_connect_fail(self, generation: int):
        if generation != self.generation:
            return
        logger.error(f"Could not reach MQTT broker {self.broker_url}")
        future = self._connect_future
        if future is not None and not future.done():
            future.set_exception(TransportError(f"could not reach broker {self.broker_url}"))

    def _handle_closed(self, generation: int, reason_code):
        if generation != self.generation:
            return
        if reason_code is not None and reason_code.is_failure:
            logger.warning(f"Connection to MQTT broker lost: {reason_code}")
        else:
            logger.info("Connection to MQTT broker closed")

        # Không tự reconnect: chỉ đánh dấu mất kết nối, lần connect sau sẽ dọn client cũ
        self.state = ConnectionState.DISCONNECTED
        self._fail_pending(TransportError("connection to broker closed"))
        future = self._connect_future
        if future is not None and not future.done():
            future.set_exception(TransportError("connection closed before it was established"))

    def _handle_message(self, generation: int, topic: str, payload: bytes):
        if generation != self.generation or not self.is_connected:
            logger.debug(f"Dropping message on {topic} from a closed connection")
            return
        if self.message_handler is None:
            logger.warning(f"No message handler registered, dropping message on {topic}")
            return
        self.message_handler(topic, payload)

    def _resolve_ack(self, future: asyncio.Future, reason_codes):
        if future.done():
            return
        failed = [rc for rc in reason_codes if rc.is_failure]
        if failed:
            future.set_exception(TransportError(f"broker rejected request: {failed[0]}"))
        else:
            future.set_result(None)
