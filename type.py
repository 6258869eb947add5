import time
from enum import Enum
from typing import List, Set

from pydantic import BaseModel, Field


class Command(str, Enum):
    CONNECT = "connect"
    DISCONNECT = "disconnect"
    PUBLISH = "publish"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"
    STATUS = "status"
    LIST = "list"
    CLEAR = "clear"
    HELP = "help"
    UNKNOWN = "unknown"


class Directive(BaseModel):
    """Lệnh đã được parse từ tin nhắn của người dùng"""
    command: Command
    # Tên lệnh đúng như người dùng gõ (dùng cho thông báo lỗi khi UNKNOWN)
    name: str = ""
    args: List[str] = Field(default_factory=list)


class Session(BaseModel):
    """Trạng thái riêng của từng người dùng"""
    user_id: str
    subscribed_topics: Set[str] = Field(default_factory=set)
    last_command: str = ""
    command_time: float = 0.0
    operation_count: int = 0

    def record(self, label: str):
        self.last_command = label
        self.command_time = time.time()
        self.operation_count += 1


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class BrokerStatus(BaseModel):
    connected: bool
    state: ConnectionState
    broker_url: str = ""
    client_id: str = ""
