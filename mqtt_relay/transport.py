"""
Chat transports used to talk to relay users
"""
import asyncio
import sys
from typing import Awaitable, Callable, Optional

import httpx
from aiohttp import web

import config
from log import setup_logger
from mqtt_relay.errors import TransportError
from mqtt_relay.utils.helpers import parse_private_message

logger = setup_logger(__name__)

InboundHandler = Callable[[str, str], Awaitable[Optional[str]]]


class Transport:
    """Gửi tin nhắn tới một user, định danh bằng user id dạng chuỗi"""

    async def send(self, user_id: str, text: str):
        raise NotImplementedError

    async def listen(self, handler: InboundHandler):
        raise NotImplementedError(f"{type(self).__name__} does not receive messages")

    async def close(self):
        pass


class ConsoleTransport(Transport):
    def __init__(self, stdin=None, stdout=None):
        """
        Transport đọc lệnh từ stdin và in phản hồi ra stdout.

        Mỗi dòng có dạng: <user_id> <nội dung tin nhắn>
        """
        self.stdin = stdin or sys.stdin
        self.stdout = stdout or sys.stdout

    async def send(self, user_id: str, text: str):
        self.stdout.write(f"-> {user_id}: {text}\n")
        self.stdout.flush()

    async def listen(self, handler: InboundHandler):
        loop = asyncio.get_running_loop()
        while True:
            line = await loop.run_in_executor(None, self.stdin.readline)
            if not line:
                logger.info("Console input closed")
                return
            parts = line.strip().split(maxsplit=1)
            if len(parts) < 2:
                continue
            await handler(parts[0], parts[1])


class OneBotTransport(Transport):
    def __init__(self, api_url: Optional[str] = None, access_token: Optional[str] = None,
                 timeout: Optional[float] = None, http_transport: Optional[httpx.AsyncBaseTransport] = None,
                 event_host: Optional[str] = None, event_port: Optional[int] = None,
                 event_path: Optional[str] = None):
        """
        Gửi tin nhắn riêng qua OneBot v11 HTTP API (POST /send_msg) và nhận
        event do OneBot POST tới (chế độ HTTP POST / webhook)
        """
        headers = {}
        token = access_token if access_token is not None else config.ONEBOT_ACCESS_TOKEN
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self.client = httpx.AsyncClient(
            base_url=api_url or config.ONEBOT_API_URL,
            headers=headers,
            timeout=timeout or config.ONEBOT_TIMEOUT,
            transport=http_transport,
        )

        self.event_host = event_host or config.ONEBOT_EVENT_HOST
        self.event_port = event_port if event_port is not None else config.ONEBOT_EVENT_PORT
        self.event_path = event_path or config.ONEBOT_EVENT_PATH

    async def send(self, user_id: str, text: str):
        resp = await self.client.post(
            "/send_msg",
            json={
                "message_type": "private",
                "user_id": user_id,
                "message": text,
            },
        )
        resp.raise_for_status()
        payload = resp.json()
        if payload.get("status") == "failed":
            raise TransportError(f"send_msg failed for user {user_id}: retcode={payload.get('retcode')}")

    def make_app(self, handler: InboundHandler) -> web.Application:
        """
        Tạo aiohttp app nhận event OneBot tại event_path, chỉ chuyển tin nhắn
        riêng tới handler
        """
        async def receive_event(request: web.Request):
            try:
                event = await request.json()
            except ValueError:
                logger.warning("Received OneBot event with invalid JSON body")
                return web.Response(status=400, text="invalid JSON")

            message = parse_private_message(event)
            if message is not None:
                await handler(*message)
            return web.Response(status=204)

        app = web.Application()
        app.router.add_post(self.event_path, receive_event)
        return app

    async def listen(self, handler: InboundHandler):
        runner = web.AppRunner(self.make_app(handler))
        await runner.setup()
        site = web.TCPSite(runner, self.event_host, self.event_port)
        await site.start()
        logger.info(f"Receiving OneBot events on http://{self.event_host}:{self.event_port}{self.event_path}")
        try:
            # Chạy cho tới khi task bị hủy (Ctrl+C)
            await asyncio.Event().wait()
        finally:
            await runner.cleanup()

    async def close(self):
        await self.client.aclose()
