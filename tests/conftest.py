"""
Pytest configuration and shared fixtures for client dedupe tests.

Test Categories:
- unit: Fast tests with no database (normalizer, ordering, models)
- requires_db: Tests that create a temporary SQLite client store
- integration: Tests that go through the FastAPI app

Run categories:
- pytest -m unit              # Fast unit tests only
- pytest -m "not integration" # Skip API tests
- pytest                      # All tests
"""
import pytest

from api.services.client_store import ClientStore
from tests.fixtures.client_data import add_client


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Fast unit tests")
    config.addinivalue_line("markers", "integration: Tests through the FastAPI app")
    config.addinivalue_line("markers", "requires_db: Creates a temporary SQLite database")


def pytest_collection_modifyitems(config, items):
    """Auto-mark API tests as integration tests."""
    for item in items:
        if "api" in item.fspath.basename:
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def client_store(tmp_path):
    """
    Empty client store in a temporary database.

    Function-scoped so every test starts from a clean schema.
    """
    return ClientStore(tmp_path / "clients.db", lock_timeout=1.0)


@pytest.fixture
def vienna_store(client_store):
    """
    Two clients sharing an email, with linked records on the newer one.

    Client 1 is older and has no city; client 2 is newer and lives in Vienna.
    Client 3 is unrelated.
    """
    add_client(client_store, "1", "2023-01-01", email="a@x.com")
    add_client(client_store, "2", "2023-06-01", email="A@X.com ", city="Vienna")
    add_client(client_store, "3", "2023-03-01", email="other@x.com", city="Graz")

    client_store.add_dependent("crm_invoices", "2", "INV-001", row_id="inv-1")
    client_store.add_dependent("crm_invoices", "2", "INV-002", row_id="inv-2")
    client_store.add_dependent("crm_messages", "2", "Booking request", row_id="msg-1")
    client_store.add_dependent("galleries", "2", "Wedding", row_id="gal-1")
    client_store.add_dependent("digital_files", "2", "portrait.jpg", row_id="file-1")
    client_store.add_dependent("crm_invoices", "1", "INV-000", row_id="inv-0")
    client_store.add_dependent("crm_messages", "3", "Hello", row_id="msg-3")
    return client_store
