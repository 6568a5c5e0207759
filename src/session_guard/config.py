# src/session_guard/config.py
"""
Centralized configuration for the session layer.

Values resolve in three layers, each overriding the previous one:
    1. Dataclass defaults below
    2. An optional YAML file with a top-level ``session:`` mapping
    3. Environment variables prefixed with ``SESSION_`` (e.g. SESSION_BASE_URL,
       SESSION_HEARTBEAT_INTERVAL_SECONDS, SESSION_ALLOWED_ROLES=ADMIN,POS_USER)
"""

import os
import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml

from .config_exceptions import ConfigLoadError, ConfigValidationError

lib_logger = logging.getLogger("session_guard")

ENV_PREFIX = "SESSION_"
MAX_CREDENTIAL_LIFETIME_SECONDS = 7 * 24 * 3600
SAME_SITE_POLICIES = ("strict", "lax", "none")
ENVIRONMENTS = ("development", "production", "test")


@dataclass
class SessionConfig:
    """All tunables of the authenticated request layer."""

    base_url: str = "http://localhost:3001"
    verify_path: str = "/api/auth/verify"
    request_timeout: float = 30.0

    # Credential lifecycle
    expiry_buffer_seconds: float = 5 * 60
    refresh_interval_seconds: float = 45 * 60
    heartbeat_interval_seconds: float = 10 * 60
    renewal_max_attempts: int = 3
    renewal_backoff_base: float = 1.0
    renewal_backoff_factor: float = 2.0

    # Dispatcher retry policy
    auth_max_retries: int = 2
    timeout_max_retries: int = 3
    timeout_backoff_base: float = 1.0
    timeout_backoff_cap: float = 4.0
    server_max_retries: int = 2
    server_backoff_step: float = 2.0

    # Offline handling
    queue_max_size: int = 100
    probe_enabled: bool = True
    probe_interval_seconds: float = 15.0

    # Persisted credential slot
    credential_file: Optional[str] = None
    credential_max_age_seconds: float = MAX_CREDENTIAL_LIFETIME_SECONDS
    environment: str = "development"
    same_site: str = "strict"

    allowed_roles: List[str] = field(default_factory=list)
    notify_dedupe_seconds: float = 5.0

    @property
    def secure_only(self) -> bool:
        """Credentials may only travel over HTTPS in production."""
        return self.environment == "production"

    def validate(self) -> "SessionConfig":
        positive = (
            "request_timeout",
            "refresh_interval_seconds",
            "heartbeat_interval_seconds",
            "probe_interval_seconds",
            "credential_max_age_seconds",
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ConfigValidationError(f"{name} must be positive, got {getattr(self, name)}")

        non_negative = (
            "expiry_buffer_seconds",
            "renewal_backoff_base",
            "timeout_backoff_base",
            "timeout_backoff_cap",
            "server_backoff_step",
            "notify_dedupe_seconds",
            "auth_max_retries",
            "timeout_max_retries",
            "server_max_retries",
        )
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ConfigValidationError(f"{name} must not be negative, got {getattr(self, name)}")

        if self.renewal_max_attempts < 1:
            raise ConfigValidationError("renewal_max_attempts must be at least 1")
        if self.renewal_backoff_factor < 1:
            raise ConfigValidationError("renewal_backoff_factor must be >= 1")
        if self.queue_max_size < 1:
            raise ConfigValidationError("queue_max_size must be at least 1")
        if self.credential_max_age_seconds > MAX_CREDENTIAL_LIFETIME_SECONDS:
            raise ConfigValidationError(
                f"credential_max_age_seconds may not exceed 7 days ({MAX_CREDENTIAL_LIFETIME_SECONDS}s)"
            )
        if self.same_site not in SAME_SITE_POLICIES:
            raise ConfigValidationError(
                f"same_site must be one of {SAME_SITE_POLICIES}, got '{self.same_site}'"
            )
        if self.environment not in ENVIRONMENTS:
            raise ConfigValidationError(
                f"environment must be one of {ENVIRONMENTS}, got '{self.environment}'"
            )
        if not self.base_url.startswith(("http://", "https://")):
            raise ConfigValidationError(f"base_url must be an http(s) URL, got '{self.base_url}'")
        return self

    @classmethod
    def load(
        cls,
        yaml_path: Optional[Union[str, Path]] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> "SessionConfig":
        """Build a validated config from defaults, an optional YAML file and the environment."""
        config = cls()
        if yaml_path is not None:
            config = config.merged(_read_yaml_section(Path(yaml_path)))
        config = config.merged(_read_env_overrides(os.environ if env is None else env))
        return config.validate()

    def merged(self, overrides: Dict[str, Any]) -> "SessionConfig":
        known = {f.name for f in fields(self)}
        unknown = set(overrides) - known
        if unknown:
            raise ConfigValidationError(f"Unknown configuration keys: {sorted(unknown)}")
        coerced = {name: _coerce(self, name, value) for name, value in overrides.items()}
        return replace(self, **coerced)


def _coerce(config: SessionConfig, name: str, value: Any) -> Any:
    current = getattr(config, name)
    if name == "credential_file":
        return None if value in (None, "") else str(value)
    if name == "allowed_roles":
        if isinstance(value, str):
            return [role.strip() for role in value.split(",") if role.strip()]
        if isinstance(value, (list, tuple)):
            return [str(role) for role in value]
        raise ConfigValidationError("allowed_roles must be a list or comma-separated string")
    try:
        if isinstance(current, bool):
            if isinstance(value, str):
                return value.strip().lower() in ("1", "true", "yes", "on")
            return bool(value)
        if isinstance(current, int):
            return int(value)
        if isinstance(current, float):
            return float(value)
    except (TypeError, ValueError):
        raise ConfigValidationError(f"Invalid value for {name}: {value!r}")
    return str(value)


def _read_yaml_section(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigLoadError(f"Failed to load configuration from '{path}': {e}")

    if not isinstance(data, dict):
        raise ConfigLoadError(f"Configuration file '{path}' must contain a mapping")
    section = data.get("session", {})
    if not isinstance(section, dict):
        raise ConfigLoadError(f"'session' section in '{path}' must be a mapping")
    lib_logger.debug(f"Loaded {len(section)} configuration value(s) from {path.name}")
    return section


def _read_env_overrides(env: Mapping[str, str]) -> Dict[str, Any]:
    """Collect SESSION_* variables, dropping values that do not parse."""
    defaults = SessionConfig()
    overrides: Dict[str, Any] = {}
    for f in fields(SessionConfig):
        key = f"{ENV_PREFIX}{f.name.upper()}"
        value = env.get(key)
        if value is None:
            continue
        try:
            _coerce(defaults, f.name, value)
        except ConfigValidationError:
            lib_logger.warning(
                f"Invalid value for {key}: {value}. Using default: {getattr(defaults, f.name)}"
            )
            continue
        overrides[f.name] = value
    return overrides
