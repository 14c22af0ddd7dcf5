# core/proxy/tunnel.py
"""WebSocket туннель, смонтированный на фиксированном префиксе"""

import asyncio
import logging
from typing import Optional

from aiohttp import web, ClientSession, ClientTimeout, ClientError, DummyCookieJar, WSCloseCode, WSMsgType

from core.proxy.dispatcher import extract_target_url

logger = logging.getLogger(__name__)


class WebSocketTunnel:
    def __init__(self, prefix: str = '/bare/', target_param: str = 'url', connect_timeout: float = 10):
        """
        Args:
            prefix: Путь, на котором смонтирован туннель
            target_param: Query параметр с ws:// или wss:// адресом
            connect_timeout: Таймаут установки соединения с upstream
        """
        self.prefix = prefix
        self.target_param = target_param
        self.connect_timeout = connect_timeout
        self.session: Optional[ClientSession] = None

    async def initialize(self):
        if self.session is None:
            # Без total таймаута: соединение живет сколько нужно
            self.session = ClientSession(
                cookie_jar=DummyCookieJar(),
                timeout=ClientTimeout(total=None, sock_connect=self.connect_timeout)
            )

    async def cleanup(self):
        if self.session:
            await self.session.close()
            self.session = None

    def should_route(self, request: web.BaseRequest) -> bool:
        return (request.path.startswith(self.prefix) and
                request.headers.get('Upgrade', '').lower() == 'websocket')

    async def route_upgrade(self, request: web.BaseRequest) -> web.StreamResponse:
        target_url = extract_target_url(request, self.target_param)
        if not target_url or not target_url.lower().startswith(('ws://', 'wss://')):
            logger.warning(f"⚠️ Tunnel: invalid target {target_url!r}")
            return web.Response(text="Invalid tunnel target", status=400)

        await self.initialize()

        protocols = [p.strip() for p in request.headers.get('Sec-WebSocket-Protocol', '').split(',') if p.strip()]

        try:
            upstream_ws = await self.session.ws_connect(target_url, protocols=protocols)
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            logger.error(f"❌ Tunnel: upstream {target_url} недоступен: {e}")
            return web.Response(text="Tunnel error", status=502)

        client_ws = web.WebSocketResponse(protocols=[upstream_ws.protocol] if upstream_ws.protocol else ())
        try:
            await client_ws.prepare(request)
            logger.info(f"🔌 Tunnel open: {request.remote} ↔ {target_url}")

            await self._relay(client_ws, upstream_ws)
        finally:
            await upstream_ws.close()
            await client_ws.close()
            logger.info(f"🔌 Tunnel closed: {target_url}")

        return client_ws

    async def _relay(self, client_ws, upstream_ws):
        """Пересылает кадры в обе стороны, пока одна из сторон не закроется"""

        async def pipe(src, dst, direction):
            while True:
                msg = await src.receive()
                if msg.type == WSMsgType.TEXT:
                    await dst.send_str(msg.data)
                elif msg.type == WSMsgType.BINARY:
                    await dst.send_bytes(msg.data)
                elif msg.type == WSMsgType.CLOSE:
                    # Код и причина закрытия доходят до другой стороны
                    await dst.close(code=msg.data or WSCloseCode.OK, message=(msg.extra or '').encode())
                    break
                elif msg.type == WSMsgType.ERROR:
                    logger.error(f"❌ Tunnel {direction} error: {src.exception()}")
                    break
                elif msg.type in (WSMsgType.CLOSING, WSMsgType.CLOSED):
                    break

        tasks = [
            asyncio.ensure_future(pipe(client_ws, upstream_ws, 'client→upstream')),
            asyncio.ensure_future(pipe(upstream_ws, client_ws, 'upstream→client')),
        ]
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)

        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

        for task in done:
            if task.exception() is not None:
                logger.error(f"❌ Tunnel relay error: {task.exception()}")
