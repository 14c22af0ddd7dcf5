# proxy_manager.py
import asyncio
import logging
from pathlib import Path
from aiohttp import web, ClientSession, TCPConnector, ClientTimeout, DummyCookieJar
from utils.port_utils import check_port_availability, get_process_using_port
from core.config_manager import ConfigManager
from core.security_headers import apply_security_headers
from core.proxy.content_sanitizer import ContentSanitizer
from core.proxy.dispatcher import RequestDispatcher
from core.proxy.tunnel import WebSocketTunnel
from core.proxy.upgrade_router import UpgradeRouter

logger = logging.getLogger(__name__)

STATIC_DIR = web.AppKey('static_dir', Path)


class ServerContext:
    def __init__(self, config: ConfigManager, tunnel=None):
        """
        Контекст сервера: создается один раз при старте и передается
        в регистрацию HTTP-обработчиков и upgrade-маршрутизации

        Args:
            config: ConfigManager с настройками
            tunnel: TunnelEngine (по умолчанию WebSocketTunnel из конфига)
        """
        self.config = config
        proxy_config = config.get_proxy_config()

        # Connection pool для upstream, создается в initialize()
        self.connector = None
        self.session = None

        self.sanitizer = ContentSanitizer()
        self.dispatcher = RequestDispatcher(
            session=None,
            sanitizer=self.sanitizer,
            target_param=proxy_config.get('target_param', 'url'),
            error_status=proxy_config.get('error_status', 500),
            error_message=proxy_config.get('error_message', 'Proxy error'),
        )

        if tunnel is None and config.get('tunnel.enabled', True):
            tunnel_config = config.get_tunnel_config()
            tunnel = WebSocketTunnel(
                prefix=tunnel_config.get('prefix', '/bare/'),
                target_param=proxy_config.get('target_param', 'url'),
                connect_timeout=tunnel_config.get('connect_timeout', 10),
            )
        self.tunnel = tunnel
        self.upgrade_router = UpgradeRouter(tunnel) if tunnel is not None else None

    async def initialize(self):
        """Инициализация connection pool для upstream"""
        proxy_config = self.config.get_proxy_config()

        if self.connector is None:
            self.connector = TCPConnector(
                limit=proxy_config.get('connection_limit', 100),
                limit_per_host=proxy_config.get('limit_per_host', 50),
                ttl_dns_cache=300,  # DNS кэш на 5 минут
                enable_cleanup_closed=True
            )

        if self.session is None:
            self.session = ClientSession(
                connector=self.connector,
                # Cookie не сохраняются между запросами разных клиентов
                cookie_jar=DummyCookieJar(),
                timeout=ClientTimeout(
                    total=proxy_config.get('timeout_total', 30),
                    connect=proxy_config.get('timeout_connect', 10)
                )
            )

        self.dispatcher.session = self.session

    async def cleanup(self):
        """Очистка ресурсов"""
        if self.session:
            await self.session.close()
            self.session = None
        if self.connector:
            await self.connector.close()
            self.connector = None
        if self.tunnel is not None and hasattr(self.tunnel, 'cleanup'):
            await self.tunnel.cleanup()


async def index(request):
    static_dir = request.app[STATIC_DIR]
    index_path = static_dir / 'index.html'
    if not index_path.is_file():
        raise web.HTTPNotFound()
    return web.FileResponse(index_path)


def create_app(context: ServerContext) -> web.Application:
    """Собирает aiohttp приложение вокруг контекста"""
    middlewares = []
    if context.upgrade_router is not None:
        middlewares.append(context.upgrade_router.middleware)
    middlewares.append(context.dispatcher.middleware)

    app = web.Application(middlewares=middlewares)

    static_dir = Path(context.config.get('server.static_dir'))
    app[STATIC_DIR] = static_dir

    app.router.add_get('/', index)
    if static_dir.is_dir():
        app.router.add_static('/', static_dir)
    else:
        logger.warning(f"⚠️ Static directory not found: {static_dir}")

    if context.config.get('server.security_headers', True):
        app.on_response_prepare.append(apply_security_headers)

    async def on_startup(app):
        await context.initialize()

    async def on_cleanup(app):
        await context.cleanup()

    app.on_startup.append(on_startup)
    app.on_cleanup.append(on_cleanup)

    return app


class ProxyServer:
    def __init__(self, config: ConfigManager):
        self.config = config
        self.is_running = False
        self.host = config.get('server.host', '0.0.0.0')
        self.port = config.get_port()
        self.context = None
        self.runner = None
        self.site = None

        # Error tracking
        self.last_error_type = None  # Тип последней ошибки: 'port', 'unknown'
        self.last_error_details = None

    async def start(self):
        """
        Запуск сервера

        Returns:
            bool: True если успешно запущен
        """
        if self.is_running:
            logger.warning("⚠️ Сервер уже запущен")
            return False

        port_available, port_message = check_port_availability(self.port)
        if not port_available:
            logger.error(f"❌ {port_message}")

            process_info = get_process_using_port(self.port)
            if process_info:
                logger.info(
                    f"📌 Процесс на порту {self.port}:\n"
                    f"   PID: {process_info.get('pid')}\n"
                    f"   Name: {process_info.get('name')}\n"
                    f"   User: {process_info.get('username', 'N/A')}"
                )
            self.last_error_type = 'port'
            self.last_error_details = port_message
            return False

        try:
            self.context = ServerContext(self.config)
            app = create_app(self.context)

            # handler_cancellation: обрыв клиента отменяет загрузку upstream
            self.runner = web.AppRunner(app, access_log=None, handler_cancellation=True)
            await self.runner.setup()

            self.site = web.TCPSite(self.runner, host=self.host, port=self.port)
            await self.site.start()

        except OSError as e:
            logger.error(f"❌ Ошибка запуска сервера: {e}")
            self.last_error_type = 'unknown'
            self.last_error_details = str(e)
            await self.stop()
            return False

        self.is_running = True
        logger.info(f"✅ Umbra proxy running on port {self.port}")
        logger.info(f"📊 Connection pool: лимит={self.context.connector.limit}, per_host={self.context.connector.limit_per_host}")
        return True

    async def stop(self):
        """Остановка сервера"""
        logger.info("🛑 Stopping proxy...")
        self.is_running = False

        if self.site:
            await self.site.stop()
            self.site = None
        if self.runner:
            # on_cleanup закрывает ClientSession контекста
            await self.runner.cleanup()
            self.runner = None

        logger.info("✅ Proxy stopped")

    async def serve_forever(self):
        """Запускает сервер и ждет отмены"""
        if not await self.start():
            return False

        try:
            await asyncio.Event().wait()
        finally:
            await self.stop()
        return True

    def get_status(self):
        """Возвращает статус сервера"""
        status = {
            'running': self.is_running,
            'host': self.host,
            'port': self.port,
        }
        if self.last_error_type:
            status['error'] = self.last_error_type
            status['error_details'] = self.last_error_details
        return status
