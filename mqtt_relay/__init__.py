"""
MQTT Relay
==========

Chia sẻ một kết nối MQTT broker cho nhiều người dùng chat:
- Mỗi user subscribe / unsubscribe topic độc lập
- Message từ broker được chuyển tới mọi user đã subscribe topic đó
- User có thể publish message qua kết nối chung

Lệnh (tiền tố mặc định "#mqtt"):
- connect <broker_url> [username] [password]
- disconnect
- publish <topic> <message>
- subscribe <topic> / unsubscribe <topic>
- status / list / clear / help
"""

from mqtt_relay.server import MQTTRelayServer


__all__ = ['MQTTRelayServer']
