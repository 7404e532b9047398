"""
Configuration loading.

Defaults come from ``dashboard_config.yaml`` next to this module (or the file
named by ``CRYPTODASH_CONFIG``); environment variables override individual
values, credentials in particular.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).resolve().parent / "dashboard_config.yaml"

# env var -> (section, provider or None, key)
ENV_OVERRIDES = {
    "COINGECKO_API_KEY": ("providers", "coingecko", "api_key"),
    "COINGECKO_API_URL": ("providers", "coingecko", "base_url"),
    "CRYPTOPANIC_API_KEY": ("providers", "cryptopanic", "api_key"),
    "CRYPTOPANIC_API_URL": ("providers", "cryptopanic", "base_url"),
    "OPENROUTER_API_KEY": ("providers", "openrouter", "api_key"),
    "OPENROUTER_API_URL": ("providers", "openrouter", "base_url"),
    "OPENROUTER_MODEL": ("providers", "openrouter", "model"),
    "REDDIT_CLIENT_ID": ("providers", "reddit", "client_id"),
    "REDDIT_CLIENT_SECRET": ("providers", "reddit", "client_secret"),
    "REDDIT_USER_AGENT": ("providers", "reddit", "user_agent"),
    "CORS_ORIGIN": ("server", None, "cors_origin"),
    "LOG_LEVEL": ("logging", None, "level"),
    "LOG_FORMAT": ("logging", None, "format"),
    "LOG_DIR": ("logging", None, "dir"),
}

_PROVIDER_FIELDS = {"base_url", "max_calls", "window_seconds", "timeout_seconds", "cache_ttl", "api_key", "client_id", "client_secret"}


@dataclass
class ProviderSettings:
    name: str
    base_url: str
    max_calls: int = 30
    window_seconds: float = 60.0
    timeout_seconds: float = 10.0
    cache_ttl: Dict[str, float] = field(default_factory=dict)
    api_key: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    options: Dict[str, Any] = field(default_factory=dict)

    def ttl(self, category: str, default: float = 60.0) -> float:
        return float(self.cache_ttl.get(category, default))

    def validate(self) -> None:
        if not self.base_url:
            raise ConfigError(f"providers.{self.name}.base_url is required")
        if self.max_calls < 1:
            raise ConfigError(f"providers.{self.name}.max_calls must be >= 1 (got {self.max_calls})")
        if self.window_seconds <= 0:
            raise ConfigError(f"providers.{self.name}.window_seconds must be > 0")
        if self.timeout_seconds <= 0:
            raise ConfigError(f"providers.{self.name}.timeout_seconds must be > 0")
        for category, ttl in self.cache_ttl.items():
            if ttl < 0:
                raise ConfigError(f"providers.{self.name}.cache_ttl.{category} must be >= 0")


@dataclass
class Settings:
    providers: Dict[str, ProviderSettings]
    cors_origin: str = "http://localhost:3000"
    log_level: str = "INFO"
    log_format: str = "text"
    log_dir: str = "logs"
    aggregator: Dict[str, Any] = field(default_factory=dict)

    def provider(self, name: str) -> ProviderSettings:
        try:
            return self.providers[name]
        except KeyError:
            raise ConfigError(f"No configuration for provider '{name}'") from None


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except FileNotFoundError as exc:
        raise ConfigError(f"Config file not found at {path}") from exc
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping at the top of {path}, got {type(data).__name__}")
    return data


def _apply_env(raw: Dict[str, Any], env: Mapping[str, str]) -> None:
    for var, (section, provider, key) in ENV_OVERRIDES.items():
        value = env.get(var)
        if value is None or value.strip() == "":
            continue
        node = raw.setdefault(section, {})
        if provider is not None:
            node = node.setdefault(provider, {})
        node[key] = value.strip()


def _build_provider(name: str, raw: Dict[str, Any]) -> ProviderSettings:
    if not isinstance(raw, dict):
        raise ConfigError(f"providers.{name} must be a mapping")
    try:
        settings = ProviderSettings(
            name=name,
            base_url=str(raw.get("base_url") or "").rstrip("/"),
            max_calls=int(raw.get("max_calls", 30)),
            window_seconds=float(raw.get("window_seconds", 60)),
            timeout_seconds=float(raw.get("timeout_seconds", 10)),
            cache_ttl={str(k): float(v) for k, v in (raw.get("cache_ttl") or {}).items()},
            api_key=raw.get("api_key") or None,
            client_id=raw.get("client_id") or None,
            client_secret=raw.get("client_secret") or None,
            options={k: v for k, v in raw.items() if k not in _PROVIDER_FIELDS},
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Invalid value in providers.{name}: {exc}") from exc
    settings.validate()
    return settings


def load_settings(path: Optional[str | Path] = None, env: Optional[Mapping[str, str]] = None) -> Settings:
    """Build ``Settings`` from YAML defaults plus environment overrides."""
    env = os.environ if env is None else env
    config_path = Path(path or env.get("CRYPTODASH_CONFIG") or DEFAULT_CONFIG_PATH)
    raw = _read_yaml(config_path)
    _apply_env(raw, env)

    providers = {
        name: _build_provider(name, body or {})
        for name, body in (raw.get("providers") or {}).items()
    }
    server = raw.get("server") or {}
    log_cfg = raw.get("logging") or {}
    return Settings(
        providers=providers,
        cors_origin=str(server.get("cors_origin", "http://localhost:3000")),
        log_level=str(log_cfg.get("level", "INFO")).upper(),
        log_format=str(log_cfg.get("format", "text")).lower(),
        log_dir=str(log_cfg.get("dir", "logs")),
        aggregator=dict(raw.get("aggregator") or {}),
    )


def log_config(settings: Settings) -> None:
    """Log the effective configuration without credentials."""
    logger.info("=== CryptoDash Configuration ===")
    for name, p in settings.providers.items():
        has_creds = bool(p.api_key or (p.client_id and p.client_secret))
        logger.info(
            "%s: base_url=%s max_calls=%s/%ss timeout=%ss credentials=%s",
            name, p.base_url, p.max_calls, p.window_seconds, p.timeout_seconds,
            "set" if has_creds else "missing",
        )
    logger.info("================================")


__all__ = ["ProviderSettings", "Settings", "load_settings", "log_config", "ENV_OVERRIDES"]
