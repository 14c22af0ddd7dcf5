# core/__init__.py
"""Umbra Proxy core: конфигурация, контекст сервера и заголовки безопасности."""
