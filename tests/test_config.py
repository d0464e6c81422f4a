"""Tests for HTTP Logger configuration module."""

import yaml

from httplogger.config import (
    DEFAULT_CONFIG,
    HttpLoggerConfig,
    ProxyConfig,
    _deep_merge,
    load_config,
    save_config,
)


def test_default_config():
    """Test that default config is created properly."""
    cfg = HttpLoggerConfig()
    assert cfg.proxy.address == "127.0.0.1"
    assert cfg.proxy.port == 8642
    assert cfg.proxy.system_proxy is True
    assert cfg.upstream.timeout == 15.0
    assert cfg.upstream.verify_tls is True
    assert cfg.certs.persist_authority is True
    assert cfg.certs.cache_leaf_certificates is False
    assert cfg.trace.console is True
    assert cfg.ui.show_banner is True


def test_dataclass_defaults_match_default_config():
    """The dataclasses and DEFAULT_CONFIG describe the same defaults."""
    assert HttpLoggerConfig().to_dict() == DEFAULT_CONFIG


def test_proxy_config():
    proxy = ProxyConfig(address="0.0.0.0", port=9000, max_workers=4)
    assert proxy.address == "0.0.0.0"
    assert proxy.port == 9000
    assert proxy.max_workers == 4


def test_deep_merge():
    """Test deep merge of config dictionaries."""
    base = {"a": {"b": 1, "c": 2}, "d": 3}
    override = {"a": {"b": 10}, "e": 5}
    result = _deep_merge(base, override)
    assert result["a"]["b"] == 10
    assert result["a"]["c"] == 2
    assert result["d"] == 3
    assert result["e"] == 5


def test_deep_merge_does_not_mutate_base():
    base = {"a": {"b": 1}}
    result = _deep_merge(base, {})
    result["a"]["b"] = 2
    assert base["a"]["b"] == 1


def test_load_from_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump({"proxy": {"port": 9999}, "trace": {"file": True}}))
    cfg = load_config(path)
    assert cfg.proxy.port == 9999
    assert cfg.proxy.address == "127.0.0.1"
    assert cfg.trace.file is True


def test_env_var_override(monkeypatch, tmp_path):
    """Test that environment variables override config."""
    monkeypatch.setenv("HTTPLOGGER_ADDRESS", "0.0.0.0")
    monkeypatch.setenv("HTTPLOGGER_PORT", "9100")
    monkeypatch.setenv("HTTPLOGGER_NO_SYSTEM_PROXY", "1")
    monkeypatch.setenv("HTTPLOGGER_VERIFY_UPSTREAM", "false")
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg.proxy.address == "0.0.0.0"
    assert cfg.proxy.port == 9100
    assert cfg.proxy.system_proxy is False
    assert cfg.upstream.verify_tls is False
    # Overrides never leak into the shared defaults
    assert DEFAULT_CONFIG["proxy"]["port"] == 8642


def test_save_and_reload(tmp_path):
    path = tmp_path / "config.yaml"
    cfg = HttpLoggerConfig()
    cfg.proxy.port = 7000
    cfg.certs.cache_leaf_certificates = True
    save_config(cfg, path)
    reloaded = load_config(path)
    assert reloaded.proxy.port == 7000
    assert reloaded.certs.cache_leaf_certificates is True
