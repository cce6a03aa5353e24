"""Shared pytest fixtures and utilities for Stockbill tests."""

from __future__ import annotations

import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stockbill import catalog, constants, context as runtime, data_manager  # noqa: E402
from stockbill.setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
FIXED_MOMENT = datetime(2024, 3, 15, 10, 30, tzinfo=UTC)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "ReorderLevel = {reorder_level}\n"
    "AutoSave = {auto_save}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    shop_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "stockbill_master.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        reorder_level: int = 10,
        auto_save: bool = True,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                shop_name=shop_name,
                schema_version=schema_version,
                reorder_level=reorder_level,
                auto_save="yes" if auto_save else "no",
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> runtime.RuntimeContext:
    """Load a workbook-backed runtime context through the public API."""

    context = runtime.load_runtime_context(config_file)
    runtime.ensure_schema_version(context)
    return context


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for in-memory contexts."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "stockbill_master.xlsx",
        shop_name="Test Shop",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
    )


@pytest.fixture
def context(settings: data_manager.ConfigSettings) -> runtime.RuntimeContext:
    """Assemble an in-memory runtime context."""

    return runtime.in_memory_context(settings)


@pytest.fixture
def admin() -> data_manager.Actor:
    return data_manager.Actor(user_id=1, role=constants.Role.ADMIN)


@pytest.fixture
def cashier() -> data_manager.Actor:
    return data_manager.Actor(user_id=2, role=constants.Role.SALES)


@pytest.fixture
def make_product(context: runtime.RuntimeContext, admin: data_manager.Actor) -> Callable[..., data_manager.ProductRow]:
    """Create catalog products with sensible defaults through the public API."""

    counter = {"value": 0}

    def _make(
        *,
        name: str | None = None,
        sku: str | None = None,
        selling_price: str = "10.00",
        tax_pct: str = "0",
        stock_qty: int = 0,
        reorder_level: int | None = None,
        category_id: int | None = None,
        status: constants.RecordStatus = constants.RecordStatus.ACTIVE,
        target: runtime.RuntimeContext | None = None,
    ) -> data_manager.ProductRow:
        counter["value"] += 1
        number = counter["value"]
        spec = catalog.ProductSpec(
            name=name or f"Product {number}",
            sku=sku or f"SKU-{number:03d}",
            selling_price=Decimal(selling_price),
            purchase_price=Decimal("1.00"),
            tax_pct=Decimal(tax_pct),
            stock_qty=stock_qty,
            reorder_level=reorder_level,
            category_id=category_id,
            status=status,
        )
        return catalog.create_product(target or context, spec, admin, timestamp=FIXED_MOMENT)

    return _make


@pytest.fixture
def seeded_users(context: runtime.RuntimeContext) -> None:
    """Register an admin (id 1) and a cashier (id 2) for name lookups."""

    catalog.add_user(context, "Ada Admin", "ada@example.com", constants.Role.ADMIN, timestamp=FIXED_MOMENT)
    catalog.add_user(context, "Sam Sales", "sam@example.com", constants.Role.SALES, timestamp=FIXED_MOMENT)
