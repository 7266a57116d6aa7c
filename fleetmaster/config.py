"""Configuration system for Fleet Master using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.fleetmaster] section (project-level)
3. ./fleetmaster.toml (project-level, explicit)
4. ~/.config/fleetmaster/config.toml (user-level, overrides project)
5. Environment variables (highest priority)

Environment variables use FLEETMASTER_ prefix with nested delimiter __.
Example: FLEETMASTER_PROVIDER__URL, FLEETMASTER_AUTH__RESEND_COOLDOWN_SECONDS
"""

from __future__ import annotations

import os
import sys

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


if sys.version_info >= (3, 11):
    import tomllib
else:
    try:
        import tomli as tomllib  # type: ignore[import-not-found]
    except ImportError:
        tomllib = None


def _user_config_dir() -> Path:
    """Directory holding the user-level config and the default state file."""
    if sys.platform == "win32":
        return Path(os.environ.get("APPDATA", "~")).expanduser() / "fleetmaster"
    return Path("~/.config/fleetmaster").expanduser()


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    project_toml = Path("fleetmaster.toml")
    if project_toml.exists():
        files.append(project_toml)

    user_config = _user_config_dir() / "config.toml"
    if user_config.exists():
        files.append(user_config)

    env_config = os.environ.get("FLEETMASTER_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    if tomllib is None:
        return {}

    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            content = config_file.read_text(encoding="utf-8")
            data = tomllib.loads(content)

            if config_file.name == "pyproject.toml":
                data = data.get("tool", {}).get("fleetmaster", {})

            merged = _deep_merge(merged, data)
        except Exception:
            pass  # Silently ignore invalid config files

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {"anon_key"}

_REDACTED = "********"


class ProviderSettings(BaseSettings):
    """Hosted identity and data provider settings.

    Environment prefix: FLEETMASTER_PROVIDER__
    Example: FLEETMASTER_PROVIDER__URL=https://project.supabase.co
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETMASTER_PROVIDER__",
        extra="ignore",
    )

    url: str = Field(default="", description="Base URL of the hosted project")
    anon_key: str = Field(default="", description="Public (anon) API key")
    allowlist_table: str = Field(
        default="fleet_manager",
        description="Table whose rows authorize an email to sign in",
    )
    allowlist_column: str = Field(default="email", description="Email column in the allow-list")
    timeout_seconds: float = Field(default=30.0, gt=0)
    session_store_backend: Literal["memory", "keyring"] = Field(
        default="memory",
        description="Where the provider session is cached: memory or keyring",
    )
    keyring_service: str = "fleetmaster"

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class StoreSettings(BaseSettings):
    """Local persistent store settings.

    Environment prefix: FLEETMASTER_STORE__
    Example: FLEETMASTER_STORE__BACKEND=file
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETMASTER_STORE__",
        extra="ignore",
    )

    backend: Literal["memory", "file"] = "file"
    path: Path = Field(default_factory=lambda: _user_config_dir() / "state.json")


class AuthSettings(BaseSettings):
    """Authentication flow settings.

    Environment prefix: FLEETMASTER_AUTH__
    Example: FLEETMASTER_AUTH__APP_VERSION=1.4.0
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETMASTER_AUTH__",
        extra="ignore",
    )

    app_version: str = "1.0.0"
    resend_cooldown_seconds: int = Field(default=30, ge=1)
    otp_length: int = Field(default=6, ge=4, le=10)
    min_password_length: int = Field(default=8, ge=6)
    strict_email: bool = Field(
        default=True,
        description="Require a dotted domain after '@' in addition to the '@' itself",
    )


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: FLEETMASTER_LOG__
    Example: FLEETMASTER_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETMASTER_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


_SECTIONS: list[tuple[str, str, str]] = [
    ("Provider", "provider", "PROVIDER"),
    ("Local Store", "store", "STORE"),
    ("Authentication", "auth", "AUTH"),
    ("Logging", "log", "LOG"),
]


class FleetMasterSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: FLEETMASTER__

    Configuration sources (in order of precedence):
    1. Built-in defaults
    2. pyproject.toml [tool.fleetmaster] section
    3. ./fleetmaster.toml (project-level)
    4. ~/.config/fleetmaster/config.toml (user-level, overrides project)
    5. Environment variables (highest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="FLEETMASTER__",
        env_nested_delimiter="__",
        extra="ignore",
    )

    provider: ProviderSettings = Field(default_factory=ProviderSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    log: LogSettings = Field(default_factory=LogSettings)

    def __init__(self, **data: Any) -> None:
        toml_config = _load_toml_config()
        merged = _deep_merge(toml_config, data)
        super().__init__(**merged)

    def _dump_sections(self) -> dict[str, Any]:
        """Dump every section with sensitive fields excluded."""
        return self.model_dump(
            mode="json",
            exclude={attr: _SENSITIVE_FIELDS for _, attr, _ in _SECTIONS},
        )

    def to_toml(self) -> str:
        """Export settings as TOML string."""
        lines = ["# Fleet Master Configuration", "# Generated by: fleetmaster config --toml", ""]
        all_data = self._dump_sections()

        for _, section_name, _ in _SECTIONS:
            lines.append(f"[{section_name}]")
            for field_name, field_value in all_data.get(section_name, {}).items():
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                elif isinstance(field_value, str):
                    value_str = f'"{field_value}"'
                else:
                    value_str = str(field_value)
                lines.append(f"{field_name} = {value_str}")
            section_cls = type(getattr(self, section_name))
            lines.extend(
                f'{rn} = "{_REDACTED}"'
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )
            lines.append("")

        return "\n".join(lines)

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# Fleet Master Environment Variables",
            "# Generated by: fleetmaster config --env",
            "",
        ]
        all_data = self._dump_sections()

        for _, attr_name, env_prefix in _SECTIONS:
            for field_name, field_value in all_data.get(attr_name, {}).items():
                env_name = f"FLEETMASTER_{env_prefix}__{field_name.upper()}"
                if isinstance(field_value, bool):
                    value_str = "true" if field_value else "false"
                else:
                    value_str = str(field_value)
                lines.append(f'export {env_name}="{value_str}"')
            section_cls = type(getattr(self, attr_name))
            for redacted_name in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys()):
                env_name = f"FLEETMASTER_{env_prefix}__{redacted_name.upper()}"
                lines.append(f'export {env_name}="{_REDACTED}"')

        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["Fleet Master Configuration", "=" * 60, ""]
        all_data = self._dump_sections()

        for display_name, attr_name, _ in _SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr_name, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:24} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:24} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )

        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> FleetMasterSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return FleetMasterSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> FleetMasterSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
