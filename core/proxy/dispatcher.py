# core/proxy/dispatcher.py
"""Прием proxy-запроса, загрузка target URL и передача ответа в санитайзер"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

from aiohttp import web, ClientError, ClientSession
from multidict import CIMultiDict

from core.proxy.content_sanitizer import ContentSanitizer
from core.proxy.upgrade_router import is_upgrade_request

logger = logging.getLogger(__name__)

# Заголовки соединения клиента, которые не имеют смысла для upstream
HOP_BY_HOP_HEADERS = frozenset({
    'host', 'connection', 'keep-alive', 'content-length', 'transfer-encoding',
    'upgrade', 'accept-encoding', 'cookie'
})


class DispatchError(Exception):
    """Сетевая ошибка при загрузке target URL"""

    def __init__(self, target_url: str, cause: BaseException):
        super().__init__(f"{target_url}: {type(cause).__name__}: {cause}")
        self.target_url = target_url
        self.cause = cause


@dataclass
class UpstreamResponse:
    status: int
    headers: CIMultiDict
    body: bytes
    charset: Optional[str] = None

    @property
    def content_type(self) -> str:
        return self.headers.get('Content-Type', '')


def extract_target_url(request: web.BaseRequest, param: str = 'url') -> Optional[str]:
    """Возвращает target URL из query string или None если его нет"""
    target_url = request.query.get(param, '').strip()
    return target_url or None


def build_upstream_headers(headers) -> CIMultiDict:
    """
    Готовит заголовки для запроса на upstream

    Все заголовки клиента кроме hop-by-hop, Cookie всегда пустой.

    Args:
        headers: Заголовки входящего запроса

    Returns:
        CIMultiDict: Новый набор заголовков
    """
    upstream_headers = CIMultiDict()
    for key, value in headers.items():
        if key.lower() in HOP_BY_HOP_HEADERS:
            continue
        upstream_headers.add(key, value)

    upstream_headers['Cookie'] = ''
    return upstream_headers


class RequestDispatcher:
    def __init__(self, session: ClientSession, sanitizer: ContentSanitizer,
                 target_param: str = 'url', error_status: int = 500,
                 error_message: str = 'Proxy error'):
        """
        Args:
            session: Общая ClientSession (пул соединений, без cookie jar)
            sanitizer: ContentSanitizer для ответов upstream
            target_param: Имя query параметра с target URL
            error_status: Статус ответа при ошибке upstream
            error_message: Тело ответа при ошибке upstream
        """
        self.session = session
        self.sanitizer = sanitizer
        self.target_param = target_param
        self.error_status = error_status
        self.error_message = error_message

    async def dispatch(self, request: web.BaseRequest) -> UpstreamResponse:
        """
        Загружает target URL методом GET

        Raises:
            DispatchError: DNS, соединение, таймаут, битый URL или обрыв тела
        """
        target_url = extract_target_url(request, self.target_param)
        headers = build_upstream_headers(request.headers)

        logger.debug(f"🌐 Proxying GET {target_url}")

        try:
            async with self.session.get(target_url, headers=headers, allow_redirects=True) as upstream:
                body = await upstream.read()
                return UpstreamResponse(
                    status=upstream.status,
                    headers=CIMultiDict(upstream.headers),
                    body=body,
                    charset=upstream.charset
                )
        except (ClientError, asyncio.TimeoutError, ValueError) as e:
            raise DispatchError(target_url, e) from e

    @web.middleware
    async def middleware(self, request, handler):
        """Proxy-запросы обрабатываем сами, остальное уходит дальше по цепочке"""
        if is_upgrade_request(request):
            return await handler(request)

        if extract_target_url(request, self.target_param) is None:
            return await handler(request)

        try:
            upstream = await self.dispatch(request)
        except DispatchError as e:
            logger.error(f"❌ Proxy error: {e}", exc_info=e.cause)
            return web.Response(text=self.error_message, status=self.error_status)

        logger.debug(f"Upstream response: {upstream.status} {upstream.content_type}")
        return self.sanitizer.sanitize(upstream).to_response()
