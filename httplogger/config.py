"""
HTTP Logger Configuration Management
====================================
Handles config loading, environment overrides, and platform-specific paths.
"""

from __future__ import annotations

import copy
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from platformdirs import user_config_dir, user_data_dir

APP_NAME = "httplogger"

# ── paths ────────────────────────────────────────────────────────────────────

CONFIG_DIR = Path(user_config_dir(APP_NAME))
DATA_DIR = Path(user_data_dir(APP_NAME))
CA_DIR = DATA_DIR / "ca"
LOGS_DIR = DATA_DIR / "logs"
CONFIG_FILE = CONFIG_DIR / "config.yaml"
LOG_FILE = LOGS_DIR / "proxy.log"
TRACE_FILE = LOGS_DIR / "traffic.jsonl"


def ensure_dirs() -> None:
    """Create all required directories."""
    for d in (CONFIG_DIR, DATA_DIR, CA_DIR, LOGS_DIR):
        d.mkdir(parents=True, exist_ok=True)


# ── default config ───────────────────────────────────────────────────────────

DEFAULT_CONFIG: Dict[str, Any] = {
    "proxy": {
        "address": "127.0.0.1",
        "port": 8642,
        "max_workers": 32,
        "backlog": 64,
        "shutdown_grace": 5.0,
        "client_timeout": None,
        "system_proxy": True,
    },
    "upstream": {
        "timeout": 15.0,
        "verify_tls": True,
    },
    "certs": {
        "persist_authority": True,
        "leaf_days": 365,
        "key_size": 2048,
        "cache_leaf_certificates": False,
    },
    "trace": {
        "console": True,
        "file": False,
        "path": "",
        "max_entries": 1000,
    },
    "ui": {
        "show_banner": True,
        "verbose": False,
    },
}


@dataclass
class ProxyConfig:
    address: str = "127.0.0.1"
    port: int = 8642
    max_workers: int = 32
    backlog: int = 64
    shutdown_grace: float = 5.0
    client_timeout: Optional[float] = None
    system_proxy: bool = True


@dataclass
class UpstreamConfig:
    timeout: float = 15.0
    verify_tls: bool = True


@dataclass
class CertConfig:
    persist_authority: bool = True
    leaf_days: int = 365
    key_size: int = 2048
    cache_leaf_certificates: bool = False


@dataclass
class TraceConfig:
    console: bool = True
    file: bool = False
    path: str = ""
    max_entries: int = 1000


@dataclass
class UIConfig:
    show_banner: bool = True
    verbose: bool = False


@dataclass
class HttpLoggerConfig:
    proxy: ProxyConfig = field(default_factory=ProxyConfig)
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    certs: CertConfig = field(default_factory=CertConfig)
    trace: TraceConfig = field(default_factory=TraceConfig)
    ui: UIConfig = field(default_factory=UIConfig)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None or value == "":
        return None
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(path: Optional[Path] = None) -> HttpLoggerConfig:
    """Load configuration from disk, env vars, and defaults."""
    ensure_dirs()
    config_file = path or CONFIG_FILE
    raw: Dict[str, Any] = {}

    if config_file.exists():
        with open(config_file) as f:
            raw = yaml.safe_load(f) or {}

    # Merge with defaults
    merged = _deep_merge(DEFAULT_CONFIG, raw)

    # Env-var overrides
    if os.environ.get("HTTPLOGGER_ADDRESS"):
        merged["proxy"]["address"] = os.environ["HTTPLOGGER_ADDRESS"]
    if os.environ.get("HTTPLOGGER_PORT"):
        merged["proxy"]["port"] = int(os.environ["HTTPLOGGER_PORT"])
    no_system_proxy = _env_flag("HTTPLOGGER_NO_SYSTEM_PROXY")
    if no_system_proxy is not None:
        merged["proxy"]["system_proxy"] = not no_system_proxy
    verify = _env_flag("HTTPLOGGER_VERIFY_UPSTREAM")
    if verify is not None:
        merged["upstream"]["verify_tls"] = verify

    cfg = HttpLoggerConfig(
        proxy=ProxyConfig(**merged.get("proxy", {})),
        upstream=UpstreamConfig(**merged.get("upstream", {})),
        certs=CertConfig(**merged.get("certs", {})),
        trace=TraceConfig(**merged.get("trace", {})),
        ui=UIConfig(**merged.get("ui", {})),
    )
    return cfg


def save_config(cfg: HttpLoggerConfig, path: Optional[Path] = None) -> None:
    """Persist current configuration to disk."""
    ensure_dirs()
    with open(path or CONFIG_FILE, "w") as f:
        yaml.dump(cfg.to_dict(), f, default_flow_style=False, sort_keys=False)


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = copy.deepcopy(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result
