"""
Unified configuration loader for the citation engine.

This module is the single source of truth for all configuration:
- Settings dataclasses (Settings, CitationSettings, TooltipSettings)
- Loading settings from config/settings.yaml with env var overrides
- Pydantic schema validation for production-ready error reporting

All code should import configuration from this module, not from settings.yaml directly.
"""

from __future__ import annotations

import functools
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError, field_validator
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

_CONFIG_DIR = Path(__file__).resolve().parents[2] / "config"


# ─────────────────────────────────────────────────────────────────────────────
# Core Settings Dataclasses
# ─────────────────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class CitationSettings:
    """Knobs for the citation pipeline and the evidence pool builders."""
    excerpt_max_chars: int = 1000         # kb chunk preview length
    excerpt_ellipsis: str = "..."
    unknown_document_label: str = "Documento sconosciuto"
    untitled_web_label: str = "Senza titolo"
    strip_tool_artifacts: bool = True     # remove [web_search_...] leaks
    placeholder_tag: str = "CITE"
    cache_size: int = 256


@dataclass(frozen=True)
class TooltipSettings:
    """Hover-intent timing for citation popovers (milliseconds / pixels)."""
    show_delay_ms: int = 150
    hide_delay_ms: int = 200
    anchor_offset_px: int = 10


@dataclass(frozen=True)
class Settings:
    """Application settings - all values loaded from config/settings.yaml.

    This is a frozen dataclass to ensure immutability after loading.
    All values are set at load time from the YAML config with env var overrides.
    """
    citations: CitationSettings = CitationSettings()
    tooltip: TooltipSettings = TooltipSettings()
    config_path: Path | None = None


# ─────────────────────────────────────────────────────────────────────────────
# Pydantic Schema for settings.yaml
# ─────────────────────────────────────────────────────────────────────────────


class CitationConfigSchema(BaseModel):
    """Schema for the ``citations`` section."""

    excerpt_max_chars: int = 1000
    excerpt_ellipsis: str = "..."
    unknown_document_label: str = "Documento sconosciuto"
    untitled_web_label: str = "Senza titolo"
    strip_tool_artifacts: bool = True
    placeholder_tag: str = "CITE"
    cache_size: int = 256

    @field_validator("placeholder_tag")
    @classmethod
    def ensure_alphanumeric_tag(cls, v: str) -> str:
        # Markdown formatters must not be able to split or escape the tag.
        if not v or not v.isalnum():
            raise ValueError("placeholder_tag must be a non-empty alphanumeric string")
        return v


class TooltipConfigSchema(BaseModel):
    """Schema for the ``tooltip`` section."""

    show_delay_ms: int = 150
    hide_delay_ms: int = 200
    anchor_offset_px: int = 10


class SettingsSchema(BaseModel):
    """Schema for the whole settings file."""

    citations: CitationConfigSchema = CitationConfigSchema()
    tooltip: TooltipConfigSchema = TooltipConfigSchema()

    @field_validator("citations", "tooltip", mode="before")
    @classmethod
    def ensure_section_dict(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v


def validate_settings_config(config: dict[str, Any]) -> SettingsSchema | None:
    """Validate raw settings against the schema.

    Returns the validated config or None if validation fails.
    Logs detailed error messages for malformed configs.
    """
    try:
        return SettingsSchema.model_validate(config)
    except ValidationError as e:
        logger.warning("Invalid citation settings: %s", e.errors())
        return None


# ─────────────────────────────────────────────────────────────────────────────
# Settings Loading Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _settings_path() -> Path:
    """Settings file path. Can be overridden via CITATIONS_CONFIG_PATH for testing."""
    override = os.getenv("CITATIONS_CONFIG_PATH")
    if override and override.strip():
        return Path(override)
    return _CONFIG_DIR / "settings.yaml"


def _load_settings_yaml(path: Path | None = None) -> dict[str, Any]:
    """Load raw settings from config/settings.yaml."""
    settings_path = path or _settings_path()
    if not settings_path.exists():
        return {}
    with open(settings_path, encoding="utf-8") as f:
        loaded = yaml.safe_load(f) or {}
    if not isinstance(loaded, dict):
        logger.warning("Ignoring %s: top level must be a mapping", settings_path)
        return {}
    return loaded


def _validate_settings(settings: Settings) -> None:
    """Validate settings values."""
    c = settings.citations
    if c.excerpt_max_chars < 1:
        raise ValueError(f"citations.excerpt_max_chars must be >= 1 (got {c.excerpt_max_chars})")
    if c.cache_size < 0:
        raise ValueError(f"citations.cache_size must be >= 0 (got {c.cache_size})")

    t = settings.tooltip
    if t.show_delay_ms < 0 or t.hide_delay_ms < 0:
        raise ValueError(
            f"tooltip delays must be >= 0 (got show={t.show_delay_ms}, hide={t.hide_delay_ms})"
        )


def _env_int(key: str, default: int) -> int:
    val = os.getenv(key)
    return int(val) if val and val.strip() else default


def _parse_bool_env(env_key: str, default: bool) -> bool:
    """Parse a boolean from environment variable, falling back to default."""
    val = os.getenv(env_key)
    if val is None or val.strip() == "":
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


@functools.lru_cache(maxsize=1)
def load_settings() -> Settings:
    """Load and validate settings from config/settings.yaml.

    Environment variables override YAML values:
    - CITATIONS_CONFIG_PATH (alternative settings file)
    - CITATIONS_EXCERPT_MAX_CHARS, CITATIONS_STRIP_TOOL_ARTIFACTS, CITATIONS_CACHE_SIZE
    - CITATIONS_TOOLTIP_SHOW_DELAY_MS, CITATIONS_TOOLTIP_HIDE_DELAY_MS

    Returns:
        Settings: Validated, frozen settings object
    """
    load_dotenv()

    path = _settings_path()
    raw = _load_settings_yaml(path)

    schema = validate_settings_config(raw)
    if schema is None:
        logger.error(
            "Settings validation failed for '%s'. Using defaults.",
            path,
        )
        schema = SettingsSchema()

    c = schema.citations
    t = schema.tooltip

    citations = CitationSettings(
        excerpt_max_chars=_env_int("CITATIONS_EXCERPT_MAX_CHARS", c.excerpt_max_chars),
        excerpt_ellipsis=c.excerpt_ellipsis,
        unknown_document_label=c.unknown_document_label,
        untitled_web_label=c.untitled_web_label,
        strip_tool_artifacts=_parse_bool_env("CITATIONS_STRIP_TOOL_ARTIFACTS", c.strip_tool_artifacts),
        placeholder_tag=c.placeholder_tag,
        cache_size=_env_int("CITATIONS_CACHE_SIZE", c.cache_size),
    )
    tooltip = TooltipSettings(
        show_delay_ms=_env_int("CITATIONS_TOOLTIP_SHOW_DELAY_MS", t.show_delay_ms),
        hide_delay_ms=_env_int("CITATIONS_TOOLTIP_HIDE_DELAY_MS", t.hide_delay_ms),
        anchor_offset_px=t.anchor_offset_px,
    )

    settings = Settings(
        citations=citations,
        tooltip=tooltip,
        config_path=path if path.exists() else None,
    )

    _validate_settings(settings)
    return settings


def get_settings_yaml() -> dict[str, Any]:
    """Get raw settings dict from YAML."""
    return _load_settings_yaml()


def clear_config_cache() -> None:
    """Clear all cached configurations (useful for testing)."""
    load_settings.cache_clear()
