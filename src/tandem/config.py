"""Configuration management utilities for Tandem."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import dotenv_values

from .exceptions import ValidationError
from .runtime import (
    AVAILABLE_EXECUTORS,
    DEFAULT_RUNTIME,
    ExecutorFactory,
    RuntimeConfig,
    RuntimeRegistry,
    RuntimeState,
)

__all__ = [
    "configure_registry",
    "deep_merge",
    "executor_factory_from",
    "get_default_config",
    "load_config",
    "load_dotenv_config",
    "load_env_config",
    "load_yaml_config",
    "merge_config",
    "runtime_config_from",
]

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "tandem.yaml"

# environment key -> (section, key, parser)
_ENV_TO_CONFIG_KEY = {
    "TANDEM_WORKER_THREADS": ("runtime", "worker_threads", int),
    "TANDEM_BLOCKING_THREADS": ("runtime", "blocking_threads", int),
    "TANDEM_IO_DRIVER": ("runtime", "io_driver", str),
    "TANDEM_GRACE_PERIOD": ("runtime", "grace_period", float),
    "TANDEM_STRICT_INIT": ("registry", "strict", None),
    "TANDEM_LOG_LEVEL": ("logging", "level", str),
}
_TRUTHY = {"1", "true", "yes", "on"}


def merge_config(
    cli_args: Dict[str, Any],
    env_config: Dict[str, Any],
    dotenv_config: Dict[str, Any],
    file_config: Dict[str, Any],
    defaults: Dict[str, Any],
) -> Dict[str, Any]:
    """Merge configuration dictionaries honoring precedence order."""
    merged = defaults.copy()
    deep_merge(merged, file_config)
    deep_merge(merged, dotenv_config)
    deep_merge(merged, env_config)
    cli_filtered = {key: value for key, value in cli_args.items() if value is not None}
    deep_merge(merged, cli_filtered)
    return merged


def deep_merge(base: Dict[str, Any], overlay: Dict[str, Any]) -> None:
    """Recursively merge ``overlay`` into ``base`` in place."""
    for key, value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            base[key] = dict(base[key])
            deep_merge(base[key], value)
        else:
            base[key] = value


def load_yaml_config(yaml_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from ``tandem.yaml`` or return an empty dict."""
    path = yaml_path or Path(CONFIG_FILENAME)
    if not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
    except (yaml.YAMLError, OSError) as exc:
        logger.warning("Failed to load %s: %s", path, exc)
        return {}

    return data if isinstance(data, dict) else {}


def load_dotenv_config(dotenv_path: Optional[Path] = None) -> Dict[str, Any]:
    """Load ``TANDEM_*`` settings from a ``.env`` file."""
    path = dotenv_path or Path(".env")
    if not path.exists():
        return {}
    return _from_mapping(dotenv_values(path))


def load_env_config() -> Dict[str, Any]:
    """Load ``TANDEM_*`` settings from the current environment."""
    return _from_mapping(os.environ)


def get_default_config() -> Dict[str, Any]:
    """Return a fresh copy of Tandem's default configuration."""
    return {
        "runtime": {
            "executor": "thread_pool",
            "worker_threads": None,
            "blocking_threads": 16,
            "io_driver": "none",
            "grace_period": 5.0,
        },
        "registry": {
            "strict": False,
        },
        "coordinator": {
            "require_main_thread": True,
            "handle_signals": True,
        },
        "logging": {
            "level": "INFO",
            "logs_dir": "./logs",
        },
    }


def load_config(
    cli_args: Optional[Dict[str, Any]] = None,
    *,
    yaml_path: Optional[Path] = None,
    dotenv_path: Optional[Path] = None,
) -> Dict[str, Any]:
    """Load and merge every configuration layer."""
    return merge_config(
        cli_args or {},
        load_env_config(),
        load_dotenv_config(dotenv_path),
        load_yaml_config(yaml_path),
        get_default_config(),
    )


def runtime_config_from(config: Dict[str, Any]) -> RuntimeConfig:
    """Build a validated ``RuntimeConfig`` from a merged config dict."""
    section = config.get("runtime") or {}
    if not isinstance(section, dict):
        raise ValidationError("runtime configuration must be a mapping")
    try:
        runtime = RuntimeConfig(
            worker_threads=_optional_int(section.get("worker_threads")),
            blocking_threads=int(section.get("blocking_threads", 16)),
            io_driver=str(section.get("io_driver", "none")),
            thread_name_prefix=section.get("thread_name_prefix"),
            grace_period=float(section.get("grace_period", 5.0)),
        )
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"invalid runtime configuration: {exc}") from exc
    return runtime.validate()


def _optional_int(value: Any) -> Optional[int]:
    if value in (None, "", "auto"):
        return None
    return int(value)


def _from_mapping(values: Any) -> Dict[str, Any]:
    config: Dict[str, Any] = {}
    for env_key, (section, key, parser) in _ENV_TO_CONFIG_KEY.items():
        raw = values.get(env_key)
        if raw is None:
            continue
        if parser is None:
            value: Any = str(raw).strip().lower() in _TRUTHY
        else:
            try:
                value = parser(raw)
            except ValueError:
                logger.warning("Ignoring invalid %s=%r", env_key, raw)
                continue
        config.setdefault(section, {})[key] = value
    return config


def executor_factory_from(config: Dict[str, Any]) -> ExecutorFactory:
    """Return the executor factory named in the ``runtime`` section."""
    name = (config.get("runtime") or {}).get("executor", "thread_pool")
    if name not in AVAILABLE_EXECUTORS:
        raise ValidationError(
            f"Unknown executor: {name}. Available: {list(AVAILABLE_EXECUTORS.keys())}"
        )
    return AVAILABLE_EXECUTORS[name]


def configure_registry(registry: RuntimeRegistry, config: Dict[str, Any]) -> RuntimeConfig:
    """Apply registry policy and the default runtime's executor from ``config``."""
    registry.strict = bool((config.get("registry") or {}).get("strict", False))
    if DEFAULT_RUNTIME not in registry.names() or registry.state(
        DEFAULT_RUNTIME
    ) in (RuntimeState.UNINITIALIZED, RuntimeState.SHUT_DOWN):
        registry.register(DEFAULT_RUNTIME, executor_factory_from(config))
    return runtime_config_from(config)
