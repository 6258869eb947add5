import os
import dotenv

dotenv.load_dotenv()

# Tiền tố của mọi lệnh gửi tới relay, ví dụ: "#mqtt subscribe sensors/1"
RELAY_COMMAND_PREFIX = os.getenv("RELAY_COMMAND_PREFIX", "#mqtt")
# console | onebot
RELAY_TRANSPORT = os.getenv("RELAY_TRANSPORT", "console")

MQTT_CLIENT_ID_PREFIX = os.getenv("MQTT_CLIENT_ID_PREFIX", "mqttrelay_")
MQTT_KEEPALIVE = int(os.getenv("MQTT_KEEPALIVE", "60"))
MQTT_CONNECT_TIMEOUT = float(os.getenv("MQTT_CONNECT_TIMEOUT", "30"))
MQTT_ACK_TIMEOUT = float(os.getenv("MQTT_ACK_TIMEOUT", "10"))

# OneBot v11 HTTP API (NapCat, go-cqhttp, ...)
ONEBOT_API_URL = os.getenv("ONEBOT_API_URL", "http://127.0.0.1:3000")
ONEBOT_ACCESS_TOKEN = os.getenv("ONEBOT_ACCESS_TOKEN", "")
ONEBOT_TIMEOUT = float(os.getenv("ONEBOT_TIMEOUT", "10"))
# Địa chỉ relay lắng nghe event do OneBot POST tới
ONEBOT_EVENT_HOST = os.getenv("ONEBOT_EVENT_HOST", "127.0.0.1")
ONEBOT_EVENT_PORT = int(os.getenv("ONEBOT_EVENT_PORT", "8080"))
ONEBOT_EVENT_PATH = os.getenv("ONEBOT_EVENT_PATH", "/onebot/event")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# Để trống thì không ghi log ra file
LOG_FILE = os.getenv("LOG_FILE", "")
LOG_MAX_BYTES = int(os.getenv("LOG_MAX_BYTES", str(1024 * 1024)))

BASE_DIR = os.path.dirname(os.path.abspath(__file__))
