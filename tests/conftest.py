"""Shared pytest fixtures and utilities for shop engine tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from shop_engine import catalog, cli, constants, core_logic, data_manager  # noqa: E402
from shop_engine.setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_ACCOUNT_ID = "A-TEST"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "ShopName = {shop_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Defaults]\n"
    "AccountID = {account_id}\n"
    "DefaultPaymentMethod = {default_payment_method}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    account_id: str
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
    """Factory that creates an initialized shop workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "shop_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        shop_name: str = "Test Shop",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        account_id: str = DEFAULT_ACCOUNT_ID,
        default_payment_method: str = constants.DEFAULT_IN_PERSON_PAYMENT.value,
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
                account_id=account_id,
                default_payment_method=default_payment_method,
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            account_id=account_id,
            schema_version=schema_version,
            shop_name=shop_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def add_item(runtime_context: core_logic.RuntimeContext) -> Callable[..., data_manager.InventoryRow]:
    """Factory inserting inventory items through the catalog."""

    def _add(
        name: str,
        *,
        stock: int = 10,
        price: str = "10.00",
        cost: str = "6.00",
        has_gst: bool = False,
        bundle_price: str | None = None,
        items_per_bundle: int | None = None,
    ) -> data_manager.InventoryRow:
        draft = core_logic.InventoryItemDraft(
            name=name,
            stock=stock,
            price=Decimal(price),
            cost=Decimal(cost),
            has_gst=has_gst,
            is_bundle=items_per_bundle is not None,
            bundle_price=Decimal(bundle_price) if bundle_price is not None else None,
            items_per_bundle=items_per_bundle,
        )
        return catalog.add_inventory_item(runtime_context, draft)

    return _add


@pytest.fixture
def stock_of(runtime_context: core_logic.RuntimeContext) -> Callable[[str], int]:
    """Return a helper reading an item's stock straight from the store."""

    def _stock(item_id: str) -> int:
        return catalog.get_item(runtime_context, item_id).stock

    return _stock


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="shop-cli", description="Shop CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]
