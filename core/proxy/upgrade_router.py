# core/proxy/upgrade_router.py
"""Передача upgrade-запросов (WebSocket) в туннель"""

import logging
from typing import Protocol

from aiohttp import web

logger = logging.getLogger(__name__)


class TunnelEngine(Protocol):
    """Туннель для upgrade-соединений. Решает сам, что ему принадлежит"""

    def should_route(self, request: web.BaseRequest) -> bool:
        ...

    async def route_upgrade(self, request: web.BaseRequest) -> web.StreamResponse:
        ...


def is_upgrade_request(request: web.BaseRequest) -> bool:
    connection = request.headers.get('Connection', '').lower()
    return 'upgrade' in connection and 'Upgrade' in request.headers


class UpgradeRouter:
    def __init__(self, tunnel: TunnelEngine):
        self.tunnel = tunnel

    def route(self, request: web.BaseRequest) -> bool:
        """True если запрос нужно отдать туннелю"""
        if not is_upgrade_request(request):
            return False
        return bool(self.tunnel.should_route(request))

    @web.middleware
    async def middleware(self, request, handler):
        if self.route(request):
            logger.debug(f"🔀 Upgrade {request.path} → tunnel")
            return await self.tunnel.route_upgrade(request)
        return await handler(request)
