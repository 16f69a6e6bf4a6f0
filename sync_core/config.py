# =============================================================================
# sync_core/config.py
# Timing and Backend Configuration for the Sync Layer
# =============================================================================
"""
Configuration for connection monitoring, fetch coordination and caching.

All durations are seconds. Values come from, in increasing priority:
dataclass defaults, the ``[sync]`` / ``[supabase]`` tables of
``.streamlit/secrets.toml``, then ``SYNC_<FIELD>`` / ``SUPABASE_*`` environment
variables.

Example secrets.toml:

    [supabase]
    url = "https://your-project.supabase.co"
    key = "your-anon-key"

    [sync]
    ping_interval = 30
    max_reconnect_attempts = 5
"""

from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import toml

from sync_core.errors import ConfigurationError

DEFAULT_SECRETS_PATH = Path(".streamlit") / "secrets.toml"
ENV_PREFIX = "SYNC_"


@dataclass(frozen=True)
class SyncConfig:
    """Named timings for the sync layer."""

    # ==================== CONNECTION MONITOR ====================
    # Passive probe period while visible and connected
    ping_interval: float = 30.0
    # First probe after start()
    initial_probe_delay: float = 5.0
    # Bounded wait for a single probe
    probe_timeout: float = 5.0
    # Backoff: delay = base * 2 ** (attempt - 1)
    reconnect_base_delay: float = 2.0
    max_reconnect_attempts: int = 5
    # Delay between losing the connection and the first reconnect attempt
    reconnect_kickoff_delay: float = 1.0
    # Table used for the cheap reachability read
    probe_table: str = "clients"

    # ==================== FETCH COORDINATOR ====================
    throttle_window: float = 1.0
    fetch_timeout: float = 6.0

    # ==================== CACHE POLICY ====================
    dashboard_ttl: float = 30.0
    list_ttl: float = 60.0

    def validate(self) -> SyncConfig:
        """Raise ConfigurationError on out-of-range values."""
        for f in fields(self):
            value = getattr(self, f.name)
            if f.name == "probe_table":
                if not value:
                    raise ConfigurationError("probe_table must not be empty", config_key=f.name)
            elif f.name == "max_reconnect_attempts":
                if not isinstance(value, int) or value < 1:
                    raise ConfigurationError(
                        "max_reconnect_attempts must be a positive integer",
                        config_key=f.name,
                        expected_type="int",
                    )
            elif f.name == "reconnect_kickoff_delay":
                if value < 0:
                    raise ConfigurationError(f"{f.name} must be >= 0", config_key=f.name)
            elif value <= 0:
                raise ConfigurationError(f"{f.name} must be > 0", config_key=f.name)
        return self

    def backoff_delay(self, attempt: int) -> float:
        """Delay scheduled after reconnect attempt ``attempt`` (1-based) fails."""
        return self.reconnect_base_delay * (2 ** (attempt - 1))


@dataclass(frozen=True)
class SupabaseSettings:
    """Backend credentials."""
    url: str = ""
    key: str = ""

    @property
    def is_configured(self) -> bool:
        return bool(self.url and self.key)


def _coerce(name: str, raw: Any) -> Any:
    """Convert a raw toml/env value to the field's type."""
    target = {f.name: f.type for f in fields(SyncConfig)}[name]
    try:
        if target in (int, "int"):
            return int(raw)
        if target in (float, "float"):
            return float(raw)
        return str(raw)
    except (TypeError, ValueError):
        raise ConfigurationError(
            f"Invalid value for {name}: {raw!r}",
            config_key=name,
            expected_type=str(target),
        )


def config_from_mapping(values: Mapping[str, Any], base: Optional[SyncConfig] = None) -> SyncConfig:
    """
    Build a SyncConfig from a plain mapping (e.g. the ``[sync]`` table).

    Unknown keys are rejected so typos do not silently fall back to defaults.
    """
    known = {f.name for f in fields(SyncConfig)}
    unknown = sorted(set(values) - known)
    if unknown:
        raise ConfigurationError(f"Unknown sync settings: {', '.join(unknown)}", config_key=unknown[0])

    overrides = {name: _coerce(name, raw) for name, raw in values.items()}
    return replace(base or SyncConfig(), **overrides).validate()


def _env_overrides(environ: Mapping[str, str]) -> Dict[str, str]:
    known = {f.name for f in fields(SyncConfig)}
    overrides = {}
    for name in known:
        env_name = f"{ENV_PREFIX}{name.upper()}"
        if env_name in environ:
            overrides[name] = environ[env_name]
    return overrides


def load_config(
    secrets_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Tuple[SyncConfig, SupabaseSettings]:
    """
    Load sync timings and backend credentials.

    Args:
        secrets_path: Path to a secrets.toml file (default: .streamlit/secrets.toml)
        environ: Environment mapping (default: os.environ)

    Returns:
        (SyncConfig, SupabaseSettings)
    """
    environ = os.environ if environ is None else environ
    path = Path(secrets_path) if secrets_path else DEFAULT_SECRETS_PATH

    secrets: Dict[str, Any] = {}
    if path.exists():
        try:
            secrets = toml.load(path)
        except (toml.TomlDecodeError, OSError) as e:
            raise ConfigurationError(f"Could not read {path}: {e}", config_key=str(path))

    config = config_from_mapping(secrets.get("sync", {}))
    env = _env_overrides(environ)
    if env:
        config = config_from_mapping(env, base=config)

    supabase_secrets = secrets.get("supabase", {})
    settings = SupabaseSettings(
        url=environ.get("SUPABASE_URL", supabase_secrets.get("url", "")),
        key=environ.get("SUPABASE_KEY", supabase_secrets.get("key", "")),
    )

    return config, settings
