"""Configuration loader for marginalia.toml."""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

try:
    import tomllib
except ImportError:
    import tomli as tomllib  # type: ignore

from .core.errors import ConfigError

CONFIG_NAME = "marginalia.toml"


@dataclass
class VaultConfig:
    """Vault-specific configuration."""
    root: Path


@dataclass
class IdConfig:
    """ID generation configuration."""
    bytes: int = 6


@dataclass
class GraphConfig:
    """Link graph maintenance."""
    debounce_ms: int = 300


@dataclass
class DailyConfig:
    """Daily note creation."""
    template: str = ""
    agenda: bool = False


@dataclass
class TemplatesConfig:
    """User template directory; None means <vault>/.templates."""
    dir: Path | None = None


@dataclass
class CalendarConfig:
    """Calendar bridge."""
    events_file: Path | None = None


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class MarginaliaConfig:
    """Complete marginalia configuration."""
    vault: VaultConfig
    id: IdConfig
    graph: GraphConfig
    daily: DailyConfig
    calendar: CalendarConfig
    templates: TemplatesConfig
    logging: LoggingConfig


def _int(section: dict[str, Any], key: str, default: int, minimum: int) -> int:
    value = section.get(key, default)
    if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
        raise ConfigError(f"{key} must be an integer >= {minimum}, got {value!r}")
    return value


def load_config(config_path: Path | None = None, vault_path: Path | None = None) -> MarginaliaConfig:
    """
    Load configuration from marginalia.toml.

    Search order:
    1. config_path (if provided)
    2. cwd/marginalia.toml
    3. vault_path/marginalia.toml

    Args:
        config_path: Explicit path to config file
        vault_path: Vault root path for fallback search

    Returns:
        MarginaliaConfig with resolved settings

    Raises:
        ConfigError: the file is not valid TOML or holds invalid values
    """
    toml_data: dict[str, Any] = {}

    search_paths = []
    if config_path:
        search_paths.append(config_path)
    search_paths.append(Path.cwd() / CONFIG_NAME)
    if vault_path:
        search_paths.append(vault_path / CONFIG_NAME)

    for path in search_paths:
        if path.exists():
            try:
                with open(path, "rb") as f:
                    toml_data = tomllib.load(f)
            except tomllib.TOMLDecodeError as e:
                raise ConfigError(f"{path}: {e}") from e
            break

    vault_data = toml_data.get("vault", {})
    vault_config = VaultConfig(
        root=Path(vault_data.get("root", vault_path or Path("./vault"))),
    )

    id_data = toml_data.get("id", {})
    id_config = IdConfig(bytes=_int(id_data, "bytes", 6, 4))

    graph_data = toml_data.get("graph", {})
    graph_config = GraphConfig(debounce_ms=_int(graph_data, "debounce_ms", 300, 0))

    daily_data = toml_data.get("daily", {})
    daily_config = DailyConfig(
        template=str(daily_data.get("template", "")),
        agenda=bool(daily_data.get("agenda", False)),
    )

    calendar_data = toml_data.get("calendar", {})
    events_file = calendar_data.get("events_file")
    calendar_config = CalendarConfig(
        events_file=Path(events_file) if events_file else None,
    )

    templates_data = toml_data.get("templates", {})
    templates_dir = templates_data.get("dir")
    templates_config = TemplatesConfig(dir=Path(templates_dir) if templates_dir else None)

    logging_data = toml_data.get("logging", {})
    level = str(logging_data.get("level", "WARNING")).upper()
    if not isinstance(logging.getLevelName(level), int):
        raise ConfigError(f"unknown log level {level!r}")

    return MarginaliaConfig(
        vault=vault_config,
        id=id_config,
        graph=graph_config,
        daily=daily_config,
        calendar=calendar_config,
        templates=templates_config,
        logging=LoggingConfig(level=level),
    )
