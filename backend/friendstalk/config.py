"""FriendsTalk relay configuration.

Loads settings from two YAML files:
  * friendstalk.settings.yaml: non-secret configuration
  * friendstalk.secrets.yaml: secrets (never committed)

Both files are optional; anything missing falls back to the model defaults.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("friendstalk.settings.yaml")
SECRETS_FILE  = Path("friendstalk.secrets.yaml")


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"
    algorithm:  str = "HS256"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str = "0.0.0.0"
    port:            int = 5000
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"


class StoreSettings(BaseModel):
    """Message store selection and query bounds."""
    backend:           Literal["memory", "duckdb"] = "duckdb"
    db_path:           str = "messages.duckdb"
    history_limit:     int = Field(default=300, ge=1)
    max_history_limit: int = Field(default=300, ge=1)
    read_batch_limit:  int = Field(default=500, ge=1)


class IdentitySettings(BaseModel):
    user_id_pattern: str = r"^[A-Za-z0-9_-]{1,64}$"


class AuthSettings(BaseModel):
    token_expire_days: int = 30


class AppSettings(BaseModel):
    server:   ServerSettings   = Field(default_factory=ServerSettings)
    logging:  LoggingSettings  = Field(default_factory=LoggingSettings)
    store:    StoreSettings    = Field(default_factory=StoreSettings)
    identity: IdentitySettings = Field(default_factory=IdentitySettings)
    auth:     AuthSettings     = Field(default_factory=AuthSettings)
    secrets:  Secrets          = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_settings(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> AppSettings:
    """Load and merge settings + secrets into a single *AppSettings* object."""
    settings_data = _load_yaml(settings_path or SETTINGS_FILE)
    secrets_data  = _load_yaml(secrets_path or SECRETS_FILE)

    # Merge: secrets live under the "secrets" key in AppSettings
    settings_data["secrets"] = secrets_data

    app_settings = AppSettings(**settings_data)
    logger.info(
        "Settings loaded (server=%s:%s, store=%s)",
        app_settings.server.host,
        app_settings.server.port,
        app_settings.store.backend,
    )
    return app_settings


_config: Optional[AppSettings] = None


def get_config() -> AppSettings:
    """Return the process-wide settings, loading them on first use."""
    global _config
    if _config is None:
        _config = load_settings()
    return _config


def reset_config() -> None:
    """Drop the cached settings so the next get_config() reloads them."""
    global _config
    _config = None
