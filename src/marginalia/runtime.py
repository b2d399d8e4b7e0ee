"""Runtime wiring helper for CLI applications."""

from dataclasses import dataclass
from pathlib import Path

from .adapters.calendar import JsonCalendar, NullCalendar
from .adapters.fs_storage import FsStorage
from .adapters.idgen import HexId
from .adapters.link_parser import MarkdownLinkParser
from .adapters.template_store import TemplateStore
from .adapters.yaml_codec import MarkdownNoteCodec, YamlFrontmatter
from .config import MarginaliaConfig, load_config
from .core.coordinator import ChangeCoordinator
from .core.daily import DailyNoteScheduler
from .core.vault import Vault


@dataclass
class Runtime:
    """Container for all wired components."""
    vault: Vault
    coordinator: ChangeCoordinator
    daily: DailyNoteScheduler
    templates: TemplateStore
    config: MarginaliaConfig


def build_runtime(
    vault_path: Path | None = None,
    config_path: Path | None = None,
    bootstrap: bool = True,
) -> Runtime:
    """Build and wire all components for a vault, then index it."""
    config = load_config(config_path=config_path, vault_path=vault_path)

    if vault_path is None:
        vault_path = config.vault.root

    storage = FsStorage(vault_path)
    codec = MarkdownNoteCodec(YamlFrontmatter())
    vault = Vault(storage, codec)
    templates = TemplateStore(config.templates.dir or vault_path / ".templates")

    coordinator = ChangeCoordinator(
        vault,
        MarkdownLinkParser(),
        HexId(nbytes=config.id.bytes, taken=storage.exists),
        debounce_ms=config.graph.debounce_ms,
        templates=templates,
    )

    if config.calendar.events_file is not None:
        calendar = JsonCalendar(config.calendar.events_file)
    else:
        calendar = NullCalendar()
    daily = DailyNoteScheduler(
        coordinator,
        calendar=calendar,
        template=config.daily.template,
        agenda=config.daily.agenda,
    )

    if bootstrap:
        coordinator.bootstrap()

    return Runtime(
        vault=vault, coordinator=coordinator, daily=daily, templates=templates, config=config
    )
