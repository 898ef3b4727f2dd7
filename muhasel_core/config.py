# =============================================================================
# muhasel_core/config.py
# Process-wide configuration for the offline core
# =============================================================================
"""
Settings are read once at startup.

Sources, lowest priority first:
1. Built-in defaults
2. ``[muhasel]`` table of an optional TOML file
3. Environment variables (a ``.env`` file is loaded first)

Example ``muhasel.toml``:

    [muhasel]
    api_url = "https://school.example.com/api"
    backend = "http"
    sync_interval = 300
"""

from __future__ import annotations
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

import toml
from dotenv import load_dotenv

from muhasel_core.errors import ConfigurationError
from muhasel_core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_API_URL = "http://localhost:5000/api"
DEFAULT_DB_PATH = Path.home() / ".muhasel" / "offline-database.sqlite"
BACKENDS = ("http", "supabase")

# Environment variable -> Settings field
ENV_MAPPING = {
    "MUHASEL_API_URL": "api_url",
    "MUHASEL_DB_PATH": "db_path",
    "MUHASEL_BACKEND": "backend",
    "SUPABASE_URL": "supabase_url",
    "SUPABASE_KEY": "supabase_key",
    "MUHASEL_SYNC_INTERVAL": "sync_interval",
    "MUHASEL_CHECK_INTERVAL": "check_interval",
    "MUHASEL_REQUEST_TIMEOUT": "request_timeout",
    "MUHASEL_BCRYPT_ROUNDS": "bcrypt_rounds",
    "MUHASEL_LOG_LEVEL": "log_level",
}


@dataclass
class Settings:
    """Configuration for the offline core."""
    api_url: str = DEFAULT_API_URL
    db_path: Union[str, Path] = field(default_factory=lambda: DEFAULT_DB_PATH)
    backend: str = "http"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    sync_interval: int = 300        # seconds between automatic syncs
    check_interval: int = 30        # seconds between connectivity checks
    request_timeout: int = 30       # seconds per remote call
    bcrypt_rounds: int = 10
    log_level: str = "INFO"

    def validate(self) -> Settings:
        """Raise ConfigurationError if the settings cannot work."""
        if not self.api_url and self.backend == "http":
            raise ConfigurationError("API base URL is required", config_key="api_url")
        if self.backend not in BACKENDS:
            raise ConfigurationError(
                f"Unknown backend '{self.backend}'",
                config_key="backend",
                expected_type=" | ".join(BACKENDS),
            )
        if self.backend == "supabase" and not (self.supabase_url and self.supabase_key):
            raise ConfigurationError(
                "Supabase backend needs SUPABASE_URL and SUPABASE_KEY",
                config_key="supabase_url",
            )
        for name in ("sync_interval", "check_interval", "request_timeout"):
            if getattr(self, name) <= 0:
                raise ConfigurationError(f"{name} must be positive", config_key=name)
        if not 4 <= self.bcrypt_rounds <= 31:
            raise ConfigurationError("bcrypt_rounds must be between 4 and 31", config_key="bcrypt_rounds")
        return self

    @property
    def database_path(self) -> Union[str, Path]:
        """Database location; ':memory:' is passed through untouched."""
        if str(self.db_path) == ":memory:":
            return ":memory:"
        return Path(self.db_path).expanduser()


def _coerce(name: str, value: Any) -> Any:
    """Convert raw TOML/env values to the Settings field type."""
    if name in ("sync_interval", "check_interval", "request_timeout", "bcrypt_rounds"):
        try:
            return int(value)
        except (TypeError, ValueError) as e:
            raise ConfigurationError(
                f"{name} must be an integer, got {value!r}",
                config_key=name,
                expected_type="int",
            ) from e
    if name == "api_url" and isinstance(value, str):
        return value.rstrip("/")
    return value


def _load_toml(config_file: Union[str, Path]) -> Dict[str, Any]:
    path = Path(config_file)
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}", config_key="config_file")
    try:
        data = toml.load(path)
    except toml.TomlDecodeError as e:
        raise ConfigurationError(f"Invalid TOML in {path}: {e}", config_key="config_file") from e
    return dict(data.get("muhasel", {}))


def load_settings(config_file: Optional[Union[str, Path]] = None) -> Settings:
    """
    Build validated Settings from defaults, an optional TOML file and the
    environment.

    Args:
        config_file: Optional path to a TOML file with a [muhasel] table

    Returns:
        Validated Settings
    """
    load_dotenv()

    known = {f.name for f in fields(Settings)}
    values: Dict[str, Any] = {}

    if config_file:
        for key, value in _load_toml(config_file).items():
            if key in known:
                values[key] = _coerce(key, value)
            else:
                logger.warning(f"Ignoring unknown config key: {key}")

    for env_name, attr in ENV_MAPPING.items():
        raw = os.getenv(env_name)
        if raw:
            values[attr] = _coerce(attr, raw)

    settings = Settings(**values).validate()
    logger.debug(f"Settings loaded: backend={settings.backend}, api_url={settings.api_url}")
    return settings
