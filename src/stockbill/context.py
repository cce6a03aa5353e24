"""Runtime context passed explicitly into every Stockbill operation.

The context bundles the parsed configuration with the store that holds the
shop's data. Nothing in the package reaches for module-level state, so tests
and embedding applications can build as many isolated contexts as they need.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Optional

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .errors import InvalidInputError
from .storage import Store, WorkbookStore


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and the store used by the business modules."""

    settings: data_manager.ConfigSettings
    store: Store


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a workbook-backed store.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer performs its upward search from
            the current working directory.

    Returns:
        RuntimeContext: Context whose store mirrors the configured workbook.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing or the
            workbook lacks an expected sheet.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    store = WorkbookStore.open(settings.data_file, auto_save=settings.auto_save)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, store=store)


def in_memory_context(settings: Optional[data_manager.ConfigSettings] = None) -> RuntimeContext:
    """Build a context backed by a fresh, empty in-memory :class:`Store`."""

    if settings is None:
        settings = data_manager.ConfigSettings(
            data_file=Path("stockbill_master.xlsx"),
            shop_name="Stockbill",
            schema_version=EXPECTED_SCHEMA_VERSION,
        )
    return RuntimeContext(settings=settings, store=Store())


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Save a workbook-backed store; a no-op for purely in-memory stores."""

    store = context.store
    if isinstance(store, WorkbookStore):
        store.save()


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Return a new context whose store is reopened from disk.

    This is a "revert" operation that drops unsaved edits.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    store = WorkbookStore.open(context.settings.data_file, auto_save=context.settings.auto_save)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, store=store)


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` normalized to UTC, or the current UTC time.

    Raises:
        InvalidInputError: If ``candidate`` is a naive datetime.
    """

    if candidate is None:
        return datetime.now(UTC)
    if candidate.tzinfo is None or candidate.utcoffset() is None:
        raise InvalidInputError("timestamp", "Timestamp must carry a timezone")
    return candidate.astimezone(UTC)
