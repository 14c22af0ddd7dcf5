import json
import sys
import logging
from pathlib import Path
from typing import Dict, Any, Optional
import os

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).parent.parent


def get_app_data_dir():
    """Возвращает путь для хранения данных приложения"""
    if getattr(sys, 'frozen', False):
        # Собранный бинарник: конфиги и логи в домашнем каталоге пользователя
        if os.name == 'nt':  # Windows
            appdata_dir = Path(os.getenv('LOCALAPPDATA', Path.home() / 'AppData' / 'Local'))
            app_data_dir = appdata_dir / 'Umbra'
        else:  # Linux/Mac
            app_data_dir = Path.home() / '.config' / 'umbra'
    else:
        # Dev режим
        app_data_dir = PROJECT_ROOT / 'app_data'

    app_data_dir.mkdir(parents=True, exist_ok=True)
    return app_data_dir


class ConfigManager:
    def __init__(self, config_path: Optional[Path] = None):
        self.config_path = Path(config_path) if config_path else self._get_config_path()
        self.config = self._load_config()

    def _get_config_path(self) -> Path:
        """Возвращает путь к файлу конфигурации"""
        return get_app_data_dir() / 'config.json'

    def _get_default_config(self) -> dict:
        """Возвращает конфигурацию по умолчанию"""
        return {
            'server': {
                'host': '0.0.0.0',
                'port': 8080,
                'static_dir': str(PROJECT_ROOT / 'public'),
                'security_headers': True,
            },

            'proxy': {
                'target_param': 'url',
                'timeout_total': 30,
                'timeout_connect': 10,
                'connection_limit': 100,
                'limit_per_host': 50,
                'error_status': 500,
                'error_message': 'Proxy error',
            },

            'tunnel': {
                'enabled': True,
                'prefix': '/bare/',
                'connect_timeout': 10,
            },

            'logging': {
                'level': 'INFO',
                'max_bytes': 5 * 1024 * 1024,  # 5MB
                'backup_count': 5,
            }
        }

    def _load_config(self) -> Dict[str, Any]:
        """Загружает конфигурацию из файла"""
        default_config = self._get_default_config()

        try:
            if self.config_path.exists():
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    loaded_config = json.load(f)
                    # Объединяем с дефолтными значениями
                    return self._deep_merge(default_config, loaded_config)
        except (OSError, ValueError) as e:
            logger.error(f"Ошибка загрузки конфига {self.config_path}: {e}")

        return default_config

    def _deep_merge(self, base: Dict[str, Any], update: Dict[str, Any]) -> Dict[str, Any]:
        """Рекурсивное объединение словарей"""
        result = base.copy()

        for key, value in update.items():
            if (key in result and
                    isinstance(result[key], dict) and
                    isinstance(value, dict)):
                result[key] = self._deep_merge(result[key], value)
            else:
                result[key] = value

        return result

    def save(self) -> bool:
        """Сохраняет конфигурацию в файл"""
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, 'w', encoding='utf-8') as f:
                json.dump(self.config, f, indent=2, ensure_ascii=False)
            logger.info("Конфигурация сохранена")
            return True
        except OSError as e:
            logger.error(f"Ошибка сохранения конфига: {e}")
            return False

    def get(self, key: str, default: Any = None) -> Any:
        """Получает значение по ключу (dot notation)"""
        value = self.config

        for k in key.split('.'):
            if isinstance(value, dict) and k in value:
                value = value[k]
            else:
                return default

        return value

    def set(self, key: str, value: Any, save: bool = False) -> bool:
        """Устанавливает значение по ключу (dot notation)"""
        keys = key.split('.')
        config_ref = self.config

        for k in keys[:-1]:
            if k not in config_ref or not isinstance(config_ref[k], dict):
                config_ref[k] = {}
            config_ref = config_ref[k]

        config_ref[keys[-1]] = value

        if save:
            return self.save()
        return True

    def get_port(self) -> int:
        """
        Порт для прослушивания.

        Переменная окружения PORT имеет приоритет над конфигом.
        """
        env_port = os.getenv('PORT')
        if env_port:
            try:
                return int(env_port)
            except ValueError:
                logger.warning(f"⚠️ Некорректное значение PORT={env_port!r}, используем конфиг")
        return int(self.get('server.port', 8080))

    def get_server_config(self) -> Dict[str, Any]:
        """Возвращает настройки сервера"""
        return self.get('server', {})

    def get_proxy_config(self) -> Dict[str, Any]:
        """Возвращает настройки прокси"""
        return self.get('proxy', {})

    def get_tunnel_config(self) -> Dict[str, Any]:
        """Возвращает настройки туннеля"""
        return self.get('tunnel', {})

    def reset_to_defaults(self) -> bool:
        """Сбрасывает настройки к значениям по умолчанию"""
        self.config = self._get_default_config()
        return self.save()


# Экземпляр на процесс
_config_instance = None


def get_config() -> ConfigManager:
    """Возвращает глобальный экземпляр ConfigManager"""
    global _config_instance
    if _config_instance is None:
        _config_instance = ConfigManager()
    return _config_instance
