"""Тесты JSON менеджера конфигурации"""

import json

from core.config_manager import ConfigManager


class TestConfigManager:

    def test_defaults_without_file(self, tmp_path):
        config = ConfigManager(config_path=tmp_path / 'config.json')

        assert config.get('server.port') == 8080
        assert config.get('proxy.target_param') == 'url'
        assert config.get('proxy.error_status') == 500
        assert config.get('proxy.error_message') == 'Proxy error'
        assert config.get('tunnel.prefix') == '/bare/'
        assert config.get('proxy.timeout_total') == 30

    def test_file_is_deep_merged(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text(json.dumps({'proxy': {'timeout_total': 5}, 'extra': {'a': 1}}), encoding='utf-8')

        config = ConfigManager(config_path=path)

        assert config.get('proxy.timeout_total') == 5
        assert config.get('proxy.timeout_connect') == 10
        assert config.get('extra.a') == 1

    def test_invalid_json_falls_back_to_defaults(self, tmp_path):
        path = tmp_path / 'config.json'
        path.write_text('{not json', encoding='utf-8')

        assert ConfigManager(config_path=path).get('server.port') == 8080

    def test_get_missing_key(self, tmp_path):
        config = ConfigManager(config_path=tmp_path / 'config.json')

        assert config.get('nope.nothing') is None
        assert config.get('server.port.deeper', 'fallback') == 'fallback'

    def test_set_and_save(self, tmp_path):
        path = tmp_path / 'nested' / 'config.json'
        config = ConfigManager(config_path=path)

        assert config.set('tunnel.prefix', '/ws/', save=True)
        assert config.set('new.section.value', 3)

        reloaded = ConfigManager(config_path=path)
        assert reloaded.get('tunnel.prefix') == '/ws/'
        assert config.get('new.section.value') == 3

    def test_reset_to_defaults(self, tmp_path):
        config = ConfigManager(config_path=tmp_path / 'config.json')
        config.set('server.port', 9999)

        assert config.reset_to_defaults()
        assert config.get('server.port') == 8080

    def test_port_from_environment(self, tmp_path, monkeypatch):
        config = ConfigManager(config_path=tmp_path / 'config.json')

        monkeypatch.setenv('PORT', '9090')
        assert config.get_port() == 9090

        monkeypatch.setenv('PORT', 'abc')
        assert config.get_port() == 8080

        monkeypatch.delenv('PORT')
        config.set('server.port', 7070)
        assert config.get_port() == 7070
