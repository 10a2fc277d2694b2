"""Shared test fixtures."""

from pathlib import Path

import pytest

from voxledger.database.repository import KeyValueStore
from voxledger.sheets.base import SheetNaming, WriteRateLimiter
from voxledger.sheets.client import SpreadsheetConnection

from tests.fakes import FakeClient

# Test fixture config directory with synthetic data
FIXTURE_CONFIG_DIR = Path(__file__).parent / "fixtures" / "config"


@pytest.fixture
def kv():
    store = KeyValueStore.open(":memory:")
    yield store
    store.close()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def spreadsheet(fake_client):
    return fake_client.create("Orbitric Expenses")


@pytest.fixture
def connection(fake_client, spreadsheet):
    return SpreadsheetConnection(fake_client, spreadsheet.id)


@pytest.fixture
def fixed_naming():
    return SheetNaming(mode="fixed", fixed_name="Расходы")


@pytest.fixture
def no_wait_limiter():
    return WriteRateLimiter(sleep=lambda seconds: None)
