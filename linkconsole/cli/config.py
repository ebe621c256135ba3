"""YAML configuration loader with env var resolution and Pydantic validation.

Loads config from (priority order):
1. --config <path> CLI flag
2. ./linkconsole.yaml (working directory)
3. ~/.linkconsole/config.yaml (user home)

Environment variables override YAML: LINKCONSOLE_<SECTION>_<KEY>.
${VAR} references in YAML values resolve from environment at load time.
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from linkconsole.services.link_client import DEFAULT_PATHS

logger = logging.getLogger(__name__)

ENV_PREFIX = "LINKCONSOLE_"
CONFIG_PATH_ENV = "LINKCONSOLE_CONFIG_PATH"

_ENV_VAR_PATTERN = re.compile(r"\$\{([^}]+)\}")


def resolve_env_vars(value: str) -> str:
    """Resolve ${VAR} references; missing variables become empty strings."""
    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _resolve_env_vars_recursive(data: Any) -> Any:
    if isinstance(data, str):
        return resolve_env_vars(data)
    elif isinstance(data, dict):
        return {k: _resolve_env_vars_recursive(v) for k, v in data.items()}
    elif isinstance(data, list):
        return [_resolve_env_vars_recursive(item) for item in data]
    return data


class ServerConfig(BaseModel):
    """Bind address and log level for `linkconsole serve`."""

    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "info"


class LinkServicePaths(BaseModel):
    """Webhook path per provider operation."""

    create: str = DEFAULT_PATHS["create"]
    profile: str = DEFAULT_PATHS["profile"]
    qr: str = DEFAULT_PATHS["qr"]
    status: str = DEFAULT_PATHS["status"]
    disconnect: str = DEFAULT_PATHS["disconnect"]
    delete: str = DEFAULT_PATHS["delete"]


class LinkServiceConfig(BaseModel):
    """Remote link provider endpoint."""

    base_url: str = "http://localhost:5678"
    api_key: str | None = None
    timeout_seconds: float = 15.0
    paths: LinkServicePaths = LinkServicePaths()

    @field_validator("api_key")
    @classmethod
    def blank_key_is_none(cls, value: str | None) -> str | None:
        return value or None


class ScanConfig(BaseModel):
    """QR scan flow timings."""

    qr_ttl_seconds: int = Field(60, ge=1)
    poll_interval_seconds: float = Field(3.0, gt=0)
    auto_close_delay_seconds: float = Field(2.0, ge=0)


class SchedulerConfig(BaseModel):
    """Status reconciliation timings and limits."""

    enabled: bool = True
    interval_seconds: float = Field(30.0, gt=0)
    initial_delay_seconds: float = Field(5.0, ge=0)
    visibility_debounce_seconds: float = Field(2.0, ge=0)
    batch_size: int = Field(3, ge=1)
    probe_timeout_seconds: float = Field(10.0, gt=0)


class ConsoleConfig(BaseModel):
    """Top-level configuration for the link console."""

    server: ServerConfig = ServerConfig()
    link_service: LinkServiceConfig = LinkServiceConfig()
    scan: ScanConfig = ScanConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


def _find_config_file() -> Path | None:
    candidates = [
        Path.cwd() / "linkconsole.yaml",
        Path.cwd() / "linkconsole.yml",
        Path.home() / ".linkconsole" / "config.yaml",
        Path.home() / ".linkconsole" / "config.yml",
    ]
    for candidate in candidates:
        if candidate.exists():
            return candidate
    return None


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Apply LINKCONSOLE_<SECTION>_<KEY> env var overrides to config data.

    Sections are matched by longest prefix so ``link_service`` wins over
    a hypothetical ``link`` section. ``LINKCONSOLE_LINK_SERVICE_PATHS_STATUS``
    sets ``link_service.paths.status``.
    """
    known_sections = sorted(ConsoleConfig.model_fields.keys(), key=len, reverse=True)
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX):].lower()
        matched_section = None
        matched_field = None
        for section in known_sections:
            section_prefix = section + "_"
            if suffix.startswith(section_prefix):
                matched_section = section
                matched_field = suffix[len(section_prefix):]
                break
        if matched_section is None or not matched_field:
            continue
        section_data = data.setdefault(matched_section, {})
        if not isinstance(section_data, dict):
            continue
        if matched_section == "link_service" and matched_field.startswith("paths_"):
            paths = section_data.setdefault("paths", {})
            if isinstance(paths, dict):
                paths[matched_field[len("paths_"):]] = value
            continue
        # Pydantic coerces numeric and boolean strings per field type.
        section_data[matched_field] = value
    return data


def load_config(config_path: str | None = None) -> ConsoleConfig:
    """Load configuration, falling back to defaults when no file exists.

    Args:
        config_path: Explicit path. If None, LINKCONSOLE_CONFIG_PATH and
            then the standard locations are searched.

    Raises:
        FileNotFoundError: An explicit path does not exist.
        pydantic.ValidationError: The merged data is invalid.
    """
    config_path = config_path or os.environ.get(CONFIG_PATH_ENV)
    if config_path:
        path: Path | None = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
    else:
        path = _find_config_file()

    raw_data: dict[str, Any] = {}
    if path is not None:
        logger.info("Loading config from %s", path)
        with open(path) as f:
            raw_data = yaml.safe_load(f) or {}

    data = _resolve_env_vars_recursive(raw_data)
    data = _apply_env_overrides(data)
    return ConsoleConfig(**data)
