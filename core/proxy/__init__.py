# core/proxy/__init__.py
"""
Proxy pipeline package.

RequestDispatcher загружает target URL, ContentSanitizer чистит ответ,
UpgradeRouter отдает WebSocket-апгрейды в WebSocketTunnel.
"""

from core.proxy.content_sanitizer import ContentSanitizer, SanitizedResponse
from core.proxy.dispatcher import DispatchError, RequestDispatcher, UpstreamResponse
from core.proxy.tunnel import WebSocketTunnel
from core.proxy.upgrade_router import TunnelEngine, UpgradeRouter

__all__ = [
    'ContentSanitizer',
    'SanitizedResponse',
    'DispatchError',
    'RequestDispatcher',
    'UpstreamResponse',
    'WebSocketTunnel',
    'TunnelEngine',
    'UpgradeRouter',
]
