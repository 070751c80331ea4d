from __future__ import annotations

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/tabula/config.json").expanduser()
DEFAULT_DATA_DIR = "~/.tabula"

CONFIG_ENV_OVERRIDES = {
    "data_dir": "TABULA_DATA_DIR",
    "server_host": "TABULA_HOST",
    "server_port": "TABULA_PORT",
    "retention_days": "TABULA_RETENTION_DAYS",
    "cleanup_interval_s": "TABULA_CLEANUP_INTERVAL_S",
    "ai_timeout_s": "TABULA_AI_TIMEOUT_S",
    "command_queue_size": "TABULA_COMMAND_QUEUE_SIZE",
    "log_level": "TABULA_LOG_LEVEL",
    "server_logs": "TABULA_SERVER_LOGS",
}

_INT_KEYS = {
    "server_port",
    "retention_days",
    "cleanup_interval_s",
    "ai_timeout_s",
    "command_queue_size",
}
_BOOL_KEYS = {"server_logs"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("TABULA_CONFIG", DEFAULT_CONFIG_PATH))
    return candidate.expanduser()


def read_config_file(path: Path | None = None) -> dict[str, Any]:
    config_path = get_config_path(path)
    if not config_path.exists():
        return {}
    raw = config_path.read_text()
    if not raw.strip():
        return {}
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError("invalid config json") from exc
    if not isinstance(data, dict):
        raise ValueError("config must be an object")
    return data


def write_config_file(data: dict[str, Any], path: Path | None = None) -> Path:
    config_path = get_config_path(path)
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(json.dumps(data, ensure_ascii=False, indent=2) + "\n")
    return config_path


def get_env_overrides() -> dict[str, str]:
    overrides: dict[str, str] = {}
    for key, env_var in CONFIG_ENV_OVERRIDES.items():
        value = os.getenv(env_var)
        if value is not None:
            overrides[key] = value
    return overrides


@dataclass
class TabulaConfig:
    data_dir: str = DEFAULT_DATA_DIR
    server_host: str = "127.0.0.1"
    server_port: int = 21890
    # Closed tabs older than this are evicted on startup and by the sweeper.
    retention_days: int = 7
    cleanup_interval_s: int = 3600
    ai_timeout_s: int = 120
    command_queue_size: int = 16
    log_level: str = "INFO"
    server_logs: bool = False

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


def _parse_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    if value.lower() in {"1", "true", "yes", "on"}:
        return True
    if value.lower() in {"0", "false", "off", "no"}:
        return False
    return default


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _coerce_bool(value: object, default: bool, *, key: str) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        return _parse_bool(value, default)
    warnings.warn(f"Invalid bool for {key}: {value!r}", RuntimeWarning, stacklevel=2)
    return default


def load_config(path: Path | None = None) -> TabulaConfig:
    cfg = TabulaConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = read_config_file(config_path)
        except (OSError, ValueError) as exc:
            warnings.warn(
                f"Invalid config file {config_path}: {exc}", RuntimeWarning, stacklevel=2
            )
            data = {}
        cfg = _apply_dict(cfg, data)
    cfg = _apply_dict(cfg, get_env_overrides())
    return cfg


def _apply_dict(cfg: TabulaConfig, data: dict[str, Any]) -> TabulaConfig:
    for key, value in data.items():
        if not hasattr(cfg, key) or key == "data_path":
            continue
        if key in _INT_KEYS:
            setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
            continue
        if key in _BOOL_KEYS:
            setattr(cfg, key, _coerce_bool(value, getattr(cfg, key), key=key))
            continue
        if value is None:
            continue
        setattr(cfg, key, str(value))
    return cfg
