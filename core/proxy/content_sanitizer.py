# core/proxy/content_sanitizer.py
"""Очистка ответов upstream: заголовки cookie и блокировка WebRTC в HTML"""

import logging
from dataclasses import dataclass
from typing import Optional

from aiohttp import web
from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup
from multidict import CIMultiDict

logger = logging.getLogger(__name__)

# Заголовки, которыми сервер ставит cookie
COOKIE_SETTING_HEADERS = frozenset({'set-cookie', 'set-cookie2'})

# Тело уже раскодировано клиентской сессией и будет переупаковано сервером
REFRAMING_HEADERS = frozenset({
    'content-length', 'content-encoding', 'transfer-encoding', 'connection', 'keep-alive'
})

INJECTION_SCRIPT = """
          // Block WebRTC leaks
          if (window.RTCPeerConnection) {
            window.RTCPeerConnection = function() {
              throw new Error("WebRTC disabled by proxy for security.");
            };
          }
          if (window.webkitRTCPeerConnection) {
            window.webkitRTCPeerConnection = function() {
              throw new Error("WebRTC disabled by proxy for security.");
            };
          }
          // Strip fingerprinting cookies
          document.cookie = "";
        """


@dataclass
class SanitizedResponse:
    """Ответ, готовый к отправке клиенту"""
    status: int
    headers: CIMultiDict
    body: bytes
    injected: bool = False

    def to_response(self) -> web.Response:
        return web.Response(status=self.status, headers=self.headers, body=self.body)


def filter_response_headers(headers) -> CIMultiDict:
    """
    Копирует заголовки ответа upstream без cookie и без заголовков кадрирования

    Args:
        headers: Заголовки upstream (mapping или multidict, повторы допустимы)

    Returns:
        CIMultiDict: Новый набор заголовков, исходный не изменяется
    """
    filtered = CIMultiDict()
    for key, value in headers.items():
        key_lower = key.lower()
        if key_lower in COOKIE_SETTING_HEADERS or key_lower in REFRAMING_HEADERS:
            continue
        filtered.add(key, value)
    return filtered


def is_html(content_type: str) -> bool:
    return 'text/html' in (content_type or '').lower()


def _ensure_head(soup: BeautifulSoup):
    """Находит <head> документа, при отсутствии создает его"""
    head = soup.head
    if head is not None:
        return head

    head = soup.new_tag('head')
    if soup.html is not None:
        soup.html.insert(0, head)
    else:
        soup.insert(0, head)
    return head


def _append_script(soup: BeautifulSoup):
    script = soup.new_tag('script')
    script.string = INJECTION_SCRIPT
    _ensure_head(soup).append(script)


def inject_fragment(html: str) -> str:
    """
    Добавляет скрипт блокировки WebRTC в конец <head>

    Args:
        html: HTML документ

    Returns:
        str: Пересобранный документ
    """
    soup = BeautifulSoup(html, 'lxml')
    _append_script(soup)
    return str(soup)


def rewrite_document(body: bytes, charset: Optional[str] = None) -> bytes:
    """
    То же, что inject_fragment, но для сырого тела ответа

    Кодировку определяет BeautifulSoup: charset из Content-Type,
    затем BOM и <meta charset>, затем utf-8 и windows-1252.
    Документ собирается обратно в той же кодировке.
    """
    soup = BeautifulSoup(body, 'lxml', from_encoding=charset)
    _append_script(soup)
    return soup.encode(soup.original_encoding or 'utf-8')


class ContentSanitizer:
    """Превращает UpstreamResponse в SanitizedResponse"""

    def sanitize(self, upstream) -> SanitizedResponse:
        """
        Очищает ответ upstream

        Args:
            upstream: UpstreamResponse от RequestDispatcher

        Returns:
            SanitizedResponse: Статус без изменений, заголовки без cookie,
            тело с внедренным скриптом если это HTML и его удалось разобрать
        """
        headers = filter_response_headers(upstream.headers)

        if not is_html(upstream.content_type):
            return SanitizedResponse(status=upstream.status, headers=headers, body=upstream.body)

        rewritten = self.rewrite_html(upstream.body, upstream.charset)
        if rewritten is None:
            # Санитизация best-effort: отдаем оригинальное тело
            logger.warning(f"⚠️ HTML не обработан, тело передается без изменений ({len(upstream.body)} bytes)")
            return SanitizedResponse(status=upstream.status, headers=headers, body=upstream.body)

        return SanitizedResponse(status=upstream.status, headers=headers, body=rewritten, injected=True)

    def rewrite_html(self, body: bytes, charset: Optional[str] = None) -> Optional[bytes]:
        """
        Внедряет скрипт в HTML тело

        Невалидные байты и неизвестный charset не мешают внедрению:
        декодирование подбирает рабочую кодировку само.

        Args:
            body: Тело ответа
            charset: Кодировка из Content-Type

        Returns:
            bytes или None: Новое тело, None только если парсер отверг
            документ или его не удалось собрать обратно
        """
        try:
            return rewrite_document(body, charset)
        except (ParserRejectedMarkup, LookupError, ValueError, TypeError, RecursionError) as e:
            logger.debug(f"Ошибка разбора HTML: {e}")
            return None
