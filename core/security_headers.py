# core/security_headers.py
"""Заголовки безопасности уровня процесса для всех ответов"""

# CSP и COEP не ставим: внедряемые в страницы скрипты их нарушают
SECURITY_HEADERS = {
    'X-Content-Type-Options': 'nosniff',
    'X-Frame-Options': 'SAMEORIGIN',
    'Referrer-Policy': 'no-referrer',
    'Strict-Transport-Security': 'max-age=15552000; includeSubDomains',
    'X-DNS-Prefetch-Control': 'off',
    'X-Download-Options': 'noopen',
    'X-Permitted-Cross-Domain-Policies': 'none',
    'Cross-Origin-Opener-Policy': 'same-origin',
    'Cross-Origin-Resource-Policy': 'same-origin',
    'Origin-Agent-Cluster': '?1',
    'X-XSS-Protection': '0',
}


async def apply_security_headers(request, response):
    """
    Обработчик сигнала on_response_prepare

    Заголовки, уже выставленные upstream, не перезаписываются.
    """
    for key, value in SECURITY_HEADERS.items():
        response.headers.setdefault(key, value)
