from __future__ import annotations

import json
import os
import warnings
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

DEFAULT_CONFIG_PATH = Path("~/.config/meshfeed/config.json").expanduser()

CONFIG_ENV_OVERRIDES = {
    "api_host": "MESHFEED_API_HOST",
    "api_port": "MESHFEED_API_PORT",
    "api_username": "MESHFEED_API_USERNAME",
    "api_password": "MESHFEED_API_PASSWORD",
    "request_timeout_s": "MESHFEED_REQUEST_TIMEOUT_S",
    "worker_threads": "MESHFEED_WORKER_THREADS",
    "work_queue_size": "MESHFEED_WORK_QUEUE_SIZE",
    "work_queue_policy": "MESHFEED_WORK_QUEUE_POLICY",
    "poll_interval_s": "MESHFEED_POLL_INTERVAL_S",
    "token_db_path": "MESHFEED_TOKEN_DB",
    "log_level": "MESHFEED_LOG_LEVEL",
}

_INT_KEYS = {"api_port", "worker_threads", "work_queue_size"}
_FLOAT_KEYS = {"request_timeout_s", "poll_interval_s"}
_QUEUE_POLICIES = {"block", "reject"}


def get_config_path(path: Path | None = None) -> Path:
    candidate = path or Path(os.getenv("MESHFEED_CONFIG", DEFAULT_CONFIG_PATH))
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
class MeshfeedConfig:
    api_host: str = "127.0.0.1"
    api_port: int = 4110
    api_username: str = "ServalDClient"
    api_password: str = ""
    request_timeout_s: float = 10.0
    worker_threads: int = 3
    # Pending fetches allowed before the policy below kicks in.
    work_queue_size: int = 16
    work_queue_policy: str = "reject"
    poll_interval_s: float = 30.0
    # Empty disables the continuation token cache.
    token_db_path: str | None = "~/.meshfeed/tokens.sqlite"
    log_level: str = "WARNING"

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if data.get("api_password"):
            data["api_password"] = "***"
        return data


def _parse_int(value: object, default: int, *, key: str) -> int:
    if value is None:
        return default
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid int for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_float(value: object, default: float, *, key: str) -> float:
    if value is None:
        return default
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        warnings.warn(f"Invalid number for {key}: {value!r}", RuntimeWarning, stacklevel=2)
        return default


def _parse_policy(value: object, default: str) -> str:
    if value is None:
        return default
    policy = str(value).strip().lower()
    if policy not in _QUEUE_POLICIES:
        warnings.warn(
            f"Invalid work_queue_policy: {value!r}", RuntimeWarning, stacklevel=2
        )
        return default
    return policy


def _apply_value(cfg: MeshfeedConfig, key: str, value: object) -> None:
    if key in _INT_KEYS:
        setattr(cfg, key, _parse_int(value, getattr(cfg, key), key=key))
    elif key in _FLOAT_KEYS:
        setattr(cfg, key, _parse_float(value, getattr(cfg, key), key=key))
    elif key == "work_queue_policy":
        cfg.work_queue_policy = _parse_policy(value, cfg.work_queue_policy)
    elif key == "token_db_path":
        cfg.token_db_path = str(value) if value else None
    elif key == "log_level":
        cfg.log_level = str(value).upper()
    else:
        setattr(cfg, key, value)


def load_config(path: Path | None = None) -> MeshfeedConfig:
    cfg = MeshfeedConfig()
    config_path = get_config_path(path)
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
        except json.JSONDecodeError:
            warnings.warn(f"Ignoring invalid config json in {config_path}", RuntimeWarning)
            data = {}
        if isinstance(data, dict):
            for key, value in data.items():
                if hasattr(cfg, key):
                    _apply_value(cfg, key, value)
    for key, value in get_env_overrides().items():
        _apply_value(cfg, key, value)
    return cfg
