"""Pytest configuration and shared fixtures.

Provides:
- Project root on sys.path (so `tests.helpers` imports)
- Environment defaults that keep tests off a real Redis
- Store, log and fake-marketplace fixtures
"""
import os
import sys
from pathlib import Path

# Set before any catalog_migration import builds its settings
os.environ.setdefault("STORE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ.setdefault("ENVIRONMENT", "development")

project_root = Path(__file__).parent.parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import pytest

from catalog_migration.services.ledger import AuditTrail, FailedItemQueue, ResultsLedger
from catalog_migration.services.store import InMemoryStore
from tests.helpers import FakeDestinationCatalog, FakeSourceCatalog, make_source_items


@pytest.fixture
def store():
    """Fresh in-memory store per test."""
    return InMemoryStore()


@pytest.fixture
def results(store):
    return ResultsLedger(store)


@pytest.fixture
def audit(store):
    return AuditTrail(store, session_id="test-session")


@pytest.fixture
def failed_items(store):
    return FailedItemQueue(store)


@pytest.fixture
def source_items():
    """25 named source items."""
    return make_source_items(25)


@pytest.fixture
def fake_source(source_items):
    return FakeSourceCatalog(source_items)


@pytest.fixture
def fake_destination():
    return FakeDestinationCatalog()
