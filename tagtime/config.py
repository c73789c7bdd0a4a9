"""
Configuration module for tagtime.

Uses pydantic-settings for runtime settings with environment variable support.
Environment variables use the TAGTIME_ prefix (e.g., TAGTIME_CACHE_DIR).

Also holds the JSON configuration store (config.json): the vault registry,
the default vault, and the last search results used for
`@N` references.
"""

import json
from pathlib import Path
from typing import Any

import structlog
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import VaultConfig, VaultType
from .utils import VaultNotFoundError

logger = structlog.get_logger(__name__)


def _get_default_config_dir() -> Path:
    """Get the default configuration directory."""
    return Path.home() / ".config" / "tagtime"


class Settings(BaseSettings):
    """Application settings with environment variable support.

    Environment variables:
    - TAGTIME_CONFIG_DIR: Directory holding config.json
    - TAGTIME_CACHE_DIR: Directory for search index snapshots
    - TAGTIME_MAX_CONTENT_LENGTH: Characters of body text kept per note
    - TAGTIME_DEFAULT_LIMIT: Default number of search results
    - TAGTIME_DEFAULT_FUZZY: Default fuzzy factor
    - TAGTIME_LOG_LEVEL: Minimum log level
    """

    config_dir: Path = Field(default_factory=_get_default_config_dir)
    cache_dir: Path | None = None
    max_content_length: int = 10_000
    default_limit: int = 10
    default_fuzzy: float = 0.2
    snippet_before: int = 50
    snippet_after: int = 100
    snippet_length: int = 150
    log_level: str = "WARNING"

    model_config = SettingsConfigDict(env_prefix="TAGTIME_")

    @property
    def config_path(self) -> Path:
        return self.config_dir / "config.json"

    @property
    def search_cache_dir(self) -> Path:
        return self.cache_dir or self.config_dir / "cache" / "search"


# Global settings instance
settings = Settings()


# ============== Configuration Store ==============

def _default_config() -> dict[str, Any]:
    return {"vaults": {}}


def load_config(path: Path | None = None) -> dict[str, Any]:
    """Load config.json, falling back to defaults when missing or unreadable."""
    path = path or settings.config_path
    config = _default_config()
    if not path.exists():
        return config

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("config_read_failed", path=str(path), error=str(e))
        return config

    if isinstance(data, dict):
        config.update(data)
    return config


def save_config(config: dict[str, Any], path: Path | None = None) -> None:
    """Write config.json."""
    path = path or settings.config_path
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(config, f, indent=2, ensure_ascii=False)


def get_vaults(path: Path | None = None) -> dict[str, VaultConfig]:
    """Return all registered vaults, skipping malformed entries."""
    vaults = {}
    for name, raw in load_config(path).get("vaults", {}).items():
        try:
            vaults[name] = VaultConfig.model_validate(raw)
        except ValidationError as e:
            logger.warning("vault_config_invalid", vault=name, error=str(e))
    return vaults


def get_vault(name: str, path: Path | None = None) -> VaultConfig:
    """Look up a vault by name.

    Raises:
        VaultNotFoundError: If no vault is registered under that name
    """
    vault = get_vaults(path).get(name)
    if vault is None:
        raise VaultNotFoundError(f"Vault not found: {name}")
    return vault


def add_vault(name: str, vault: VaultConfig, path: Path | None = None) -> None:
    """Register a vault. The first vault becomes the default."""
    config = load_config(path)
    config["vaults"][name] = vault.model_dump(by_alias=True, exclude_none=True)
    if not config.get("defaultVault"):
        config["defaultVault"] = name
    save_config(config, path)


def remove_vault(name: str, path: Path | None = None) -> None:
    """Unregister a vault.

    Raises:
        VaultNotFoundError: If no vault is registered under that name
    """
    config = load_config(path)
    if name not in config["vaults"]:
        raise VaultNotFoundError(f"Vault not found: {name}")
    del config["vaults"][name]
    if config.get("defaultVault") == name:
        remaining = list(config["vaults"])
        config["defaultVault"] = remaining[0] if remaining else None
    save_config(config, path)


def get_default_vault_name(path: Path | None = None) -> str | None:
    return load_config(path).get("defaultVault")


def set_default_vault(name: str, path: Path | None = None) -> None:
    """Make a registered vault the default.

    Raises:
        VaultNotFoundError: If no vault is registered under that name
    """
    config = load_config(path)
    if name not in config["vaults"]:
        raise VaultNotFoundError(f"Vault not found: {name}")
    config["defaultVault"] = name
    save_config(config, path)


def save_last_search_results(results: list[dict[str, Any]], path: Path | None = None) -> None:
    """Remember results so they can be referenced as @1, @2, ..."""
    config = load_config(path)
    config["lastSearchResults"] = results
    save_config(config, path)


def get_path_by_index(index: int, path: Path | None = None) -> str | None:
    """Resolve a 1-based `@N` reference to a vault-relative note path."""
    results = load_config(path).get("lastSearchResults") or []
    if 1 <= index <= len(results):
        return results[index - 1].get("path")
    return None


def default_vault_config(path: str, vault_type: VaultType) -> VaultConfig:
    """Build a VaultConfig with the usual folder conventions for its type."""
    if vault_type == "obsidian":
        return VaultConfig(
            type=vault_type,
            path=path,
            notes_folder="",
            daily_notes_folder="Daily",
            templates_folder="Templates",
            attachments_folder="Attachments",
        )
    if vault_type == "logseq":
        return VaultConfig(type=vault_type, path=path, pages_folder="pages", journals_folder="journals")
    return VaultConfig(type=vault_type, path=path)
