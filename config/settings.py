"""
Configuration loader for the message dispatch service.
Reads settings from YAML file with environment variable substitution.
"""
from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


@dataclass
class DatabaseConfig:
    url: str = "sqlite:///./messages.db"         # postgresql:// | mysql:// | sqlite://
    store_backend: str = "memory"                # "sql" | "memory" | "file"
    store_file_dir: str = "./data"               # directory for file backend
    echo: bool = False                           # SQL statement logging


@dataclass
class QueueConfig:
    backend: str = "memory"             # "memory" for dev, "redis" for production
    redis_url: str = "redis://localhost:6379"
    consumer_group: str = "message-workers"
    consumer_concurrency: int = 1       # consumer tasks per queue per worker
    delayed_promote_interval: int = 5   # seconds between delayed-queue scans


@dataclass
class DispatchConfig:
    attempts: int = 3                   # job attempts before dead-lettering
    backoff: str = "exponential"        # "exponential" | "fixed"
    backoff_delay: int = 60             # base seconds for retry backoff
    queues: list[str] = field(default_factory=lambda: ["email", "sms", "push"])


@dataclass
class LoggingConfig:
    level: str = "INFO"
    json: bool = False


@dataclass
class TransportConfig:
    enabled: bool = True
    type: str = ""                      # echo | log | webhook; defaults to the entry name
    options: dict[str, Any] = field(default_factory=dict)


@dataclass
class Settings:
    app_name: str = "message-dispatch"
    debug: bool = False
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    dispatch: DispatchConfig = field(default_factory=DispatchConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    transports: dict[str, TransportConfig] = field(default_factory=dict)


_settings: Optional[Settings] = None


def _substitute_env_vars(value: str) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""
    pattern = re.compile(r'\$\{(\w+)\}')
    def replacer(match):
        var_name = match.group(1)
        return os.environ.get(var_name, match.group(0))
    return pattern.sub(replacer, value)


def _process_values(obj: Any) -> Any:
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_values(v) for v in obj]
    return obj


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def load_settings(config_path: str = None) -> Settings:
    """Load settings from YAML file."""
    global _settings

    if config_path is None:
        config_path = os.environ.get(
            "MESSAGES_CONFIG",
            str(Path(__file__).parent / "settings.yaml"),
        )

    settings = Settings()

    if Path(config_path).exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f) or {}
        raw = _process_values(raw)

        settings.app_name = raw.get("app_name", settings.app_name)
        settings.debug = _as_bool(raw.get("debug", settings.debug))

        if "database" in raw:
            db = raw["database"] or {}
            settings.database = DatabaseConfig(
                url=db.get("url", settings.database.url),
                store_backend=db.get("store_backend", settings.database.store_backend),
                store_file_dir=db.get("store_file_dir", settings.database.store_file_dir),
                echo=_as_bool(db.get("echo", False)),
            )

        if "queue" in raw:
            q = raw["queue"] or {}
            settings.queue = QueueConfig(
                backend=q.get("backend", "memory"),
                redis_url=q.get("redis_url", "redis://localhost:6379"),
                consumer_group=q.get("consumer_group", "message-workers"),
                consumer_concurrency=int(q.get("consumer_concurrency", 1)),
                delayed_promote_interval=int(q.get("delayed_promote_interval", 5)),
            )

        if "dispatch" in raw:
            d = raw["dispatch"] or {}
            settings.dispatch = DispatchConfig(
                attempts=int(d.get("attempts", 3)),
                backoff=d.get("backoff", "exponential"),
                backoff_delay=int(d.get("backoff_delay", 60)),
                queues=list(d.get("queues") or DispatchConfig().queues),
            )

        if "logging" in raw:
            lg = raw["logging"] or {}
            settings.logging = LoggingConfig(
                level=str(lg.get("level", "INFO")).upper(),
                json=_as_bool(lg.get("json", False)),
            )

        for name, t in (raw.get("transports") or {}).items():
            t = t or {}
            settings.transports[name] = TransportConfig(
                enabled=_as_bool(t.get("enabled", True)),
                type=t.get("type", name),
                options=t.get("options") or {},
            )

    _settings = settings
    return settings


def get_settings() -> Settings:
    """Return cached settings or load from default path."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (for testing)."""
    global _settings
    _settings = None
