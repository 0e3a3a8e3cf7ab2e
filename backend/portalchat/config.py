"""PortalChat application configuration.

Loads settings from two YAML files:
  * portalchat.settings.yaml  — non-secret configuration
  * portalchat.secrets.yaml   — secrets (never committed)

Relative storage paths are resolved against the project root when the
settings file lives in a ``config/`` directory, otherwise against the
directory that holds the settings file.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

SETTINGS_FILE = Path("portalchat.settings.yaml")
SECRETS_FILE  = Path("portalchat.secrets.yaml")

IN_MEMORY_DB = ":memory:"


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        logger.warning("Config file not found: %s", path)
        return {}
    with path.open(encoding="utf-8") as fh:
        return yaml.safe_load(fh) or {}


def _base_dir_for(settings_path: Path) -> Path:
    settings_dir = settings_path.resolve().parent
    if settings_dir.name == "config":
        return settings_dir.parent
    return settings_dir


def _resolve_path(value: Optional[str], base_dir: Path) -> Optional[str]:
    if not value or value == IN_MEMORY_DB:
        return value
    path = Path(value)
    if path.is_absolute():
        return str(path)
    return str(base_dir / path)


# ---------------------------------------------------------------------------
# Secrets models
# ---------------------------------------------------------------------------


class JWTSecrets(BaseModel):
    secret_key: str = "change-me-in-production"


class Secrets(BaseModel):
    jwt: JWTSecrets = Field(default_factory=JWTSecrets)


# ---------------------------------------------------------------------------
# Settings models
# ---------------------------------------------------------------------------


class ServerSettings(BaseModel):
    host:            str  = "0.0.0.0"
    port:            int  = 8000
    reload:          bool = False
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])


class LoggingSettings(BaseModel):
    level: str = "info"

    @field_validator("level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        if value.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level: {value}")
        return value.lower()


class AuthSettings(BaseModel):
    algorithm:              str = "HS256"
    issuer:                 Optional[str] = None
    token_expire_minutes:   int = 60 * 24 * 7
    subject_claims:         list[str] = Field(
        default_factory=lambda: ["sub", "userId", "id"]
    )


class StorageSettings(BaseModel):
    messages_db: str = "messages.duckdb"
    users_db:    str = "users.duckdb"


class DirectorySettings(BaseModel):
    """User directory bootstrap (the directory itself is owned elsewhere)."""
    seed_file: Optional[str] = None


class MessagingSettings(BaseModel):
    max_body_length:          int = 5000
    max_connections_per_user: int = 0  # 0 = no limit


class PortalChatConfig(BaseModel):
    server:    ServerSettings    = Field(default_factory=ServerSettings)
    logging:   LoggingSettings   = Field(default_factory=LoggingSettings)
    auth:      AuthSettings      = Field(default_factory=AuthSettings)
    storage:   StorageSettings   = Field(default_factory=StorageSettings)
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    messaging: MessagingSettings = Field(default_factory=MessagingSettings)
    secrets:   Secrets           = Field(default_factory=Secrets)


# ---------------------------------------------------------------------------
# Public loader
# ---------------------------------------------------------------------------


def load_config(
    settings_path: Optional[Path] = None,
    secrets_path: Optional[Path] = None,
) -> PortalChatConfig:
    """Load and merge settings + secrets into a single *PortalChatConfig*."""
    settings_path = Path(settings_path or SETTINGS_FILE)
    if secrets_path is None:
        secrets_path = settings_path.with_name(SECRETS_FILE.name)

    settings_data = _load_yaml(settings_path)
    secrets_data  = _load_yaml(Path(secrets_path))

    # Merge: secrets live under the "secrets" key
    settings_data["secrets"] = secrets_data

    config = PortalChatConfig(**settings_data)

    base_dir = _base_dir_for(settings_path)
    config.storage.messages_db = _resolve_path(config.storage.messages_db, base_dir)
    config.storage.users_db = _resolve_path(config.storage.users_db, base_dir)
    config.directory.seed_file = _resolve_path(config.directory.seed_file, base_dir)

    logger.info(
        "Settings loaded (server=%s:%s, messages_db=%s, users_db=%s)",
        config.server.host,
        config.server.port,
        config.storage.messages_db,
        config.storage.users_db,
    )
    return config


_config: Optional[PortalChatConfig] = None


def get_config() -> PortalChatConfig:
    """Return the process-wide config, loading it on first use."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(config: Optional[PortalChatConfig]) -> None:
    """Replace the process-wide config (``None`` forces a reload)."""
    global _config
    _config = config
