"""
Main entry point for the MQTT relay
"""
import asyncio

import config
from mqtt_relay.server import MQTTRelayServer
from mqtt_relay.transport import ConsoleTransport, OneBotTransport


def build_transport():
    if config.RELAY_TRANSPORT == "onebot":
        return OneBotTransport()
    return ConsoleTransport()


async def main():
    # Transport vừa nhận lệnh vừa gửi phản hồi: stdin/stdout hoặc OneBot (event POST + /send_msg)
    server = MQTTRelayServer(build_transport())
    await server.start()

def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    run()
