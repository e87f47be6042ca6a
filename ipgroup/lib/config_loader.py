"""Configuration loading for ip_classify.

Settings come from a YAML file (top-level ``ip_classify`` node) merged onto
built-in defaults, with environment overrides applied last so CI runs can
point the lookups at a stub service without touching files.
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = REPO_ROOT / "config" / "ip_classify.yml"

DEFAULT_CONFIG: Dict[str, Any] = {
    "ipv4_url": "http://ipip-service.internal/ipv4?ip={ip}",
    "ipv6_url": "http://ipip-service.internal/ipv6?ip={ip}",
    "unknown": "unknown",
    "timeout": None,
    "workers": 0,
    "output": None,
    "format": "nested",
}

_ENV_OVERRIDES = {
    "IPGROUP_IPV4_URL": ("ipv4_url", str),
    "IPGROUP_IPV6_URL": ("ipv6_url", str),
    "IPGROUP_TIMEOUT": ("timeout", float),
    "IPGROUP_WORKERS": ("workers", int),
}

FORMATS = ("nested", "flat")


class ConfigError(RuntimeError):
    pass


def deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def config_path(explicit: Optional[Path] = None) -> Path:
    if explicit is not None:
        return explicit
    env_hint = os.environ.get("IPGROUP_CONFIG")
    if env_hint:
        return Path(env_hint)
    return DEFAULT_CONFIG_PATH


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"cannot read {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping at top level")
    node = data.get("ip_classify", {}) or {}
    if not isinstance(node, dict):
        raise ConfigError(f"{path}: 'ip_classify' must be a mapping")
    return node


def apply_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(cfg)
    for env_name, (key, cast) in _ENV_OVERRIDES.items():
        raw = os.environ.get(env_name)
        if raw is None or raw.strip() == "":
            continue
        try:
            result[key] = cast(raw.strip())
        except ValueError as exc:
            raise ConfigError(f"{env_name}={raw!r} is not a valid {cast.__name__}") from exc
    return result


def validate(cfg: Dict[str, Any]) -> Dict[str, Any]:
    for key in ("ipv4_url", "ipv6_url"):
        value = cfg.get(key)
        if not isinstance(value, str) or "{ip}" not in value:
            raise ConfigError(f"{key} must be a URL template containing '{{ip}}'")
    if not isinstance(cfg.get("unknown"), str) or not cfg["unknown"]:
        raise ConfigError("unknown must be a non-empty string")
    timeout = cfg.get("timeout")
    if timeout is not None and (isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0):
        raise ConfigError("timeout must be a positive number or null")
    workers = cfg.get("workers")
    if isinstance(workers, bool) or not isinstance(workers, int) or workers < 0:
        raise ConfigError("workers must be a non-negative integer")
    if cfg.get("format") not in FORMATS:
        raise ConfigError(f"format must be one of {', '.join(FORMATS)}")
    output = cfg.get("output")
    if output is not None and (not isinstance(output, str) or not output.strip()):
        raise ConfigError("output must be a file path or null")
    return cfg


def load_config(path: Optional[Path] = None) -> Dict[str, Any]:
    node = _load_yaml(config_path(path))
    return validate(apply_env(deep_merge(DEFAULT_CONFIG, node)))
