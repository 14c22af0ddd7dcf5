# main.py
import sys
import asyncio
import logging


def setup_logging(config):
    """Настраивает логирование ДО всех операций с ротацией"""
    from core.config_manager import get_app_data_dir
    from logging.handlers import RotatingFileHandler

    app_data_dir = get_app_data_dir()
    logs_dir = app_data_dir / "logs"
    logs_dir.mkdir(exist_ok=True)

    log_file = logs_dir / "umbra_proxy.log"

    formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    # Ротирующий обработчик: по умолчанию 5MB, 5 резервных копий
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=config.get('logging.max_bytes', 5 * 1024 * 1024),
        backupCount=config.get('logging.backup_count', 5),
        encoding='utf-8'
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    logging.basicConfig(
        level=config.get('logging.level', 'INFO'),
        handlers=[console_handler, file_handler]
    )


def setup_exception_handler():
    """Настраивает глобальный обработчик исключений"""
    logger = logging.getLogger(__name__)

    def exception_handler(exc_type, exc_value, exc_traceback):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_traceback)
            return

        logger.critical("Необработанное исключение:",
                        exc_info=(exc_type, exc_value, exc_traceback))

    sys.excepthook = exception_handler


def main():
    """Основная функция приложения"""
    from core.config_manager import get_config
    from core.proxy_manager import ProxyServer

    config = get_config()

    # НАСТРАИВАЕМ ЛОГИРОВАНИЕ САМЫМ ПЕРВЫМ ДЕЛОМ
    setup_logging(config)
    setup_exception_handler()
    logger = logging.getLogger(__name__)

    logger.info("🚀 Запуск Umbra Proxy")

    server = ProxyServer(config)
    try:
        started = asyncio.run(server.serve_forever())
    except KeyboardInterrupt:
        logger.info("🛑 Завершение работы по Ctrl+C")
        return 0

    if not started:
        logger.error(f"❌ Сервер не запущен: {server.last_error_details}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
