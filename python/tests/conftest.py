"""Pytest configuration and fixtures for ops console tests.

Test isolation strategy:
- Settings are rebuilt per test from a clean environment (no Azure variables)
- Every app gets its own in-memory FakeDocumentStore / FakeMessageStore,
  injected through create_app(gateway=...), so no test reaches Azure
- The client fixture enters TestClient as a context manager so the
  lifespan runs and app.state.sessions exists
"""

import sys
from collections.abc import Generator
from pathlib import Path

# Add repo root to sys.path for importing top-level packages (e.g., apps)
_repo_root = Path(__file__).parent.parent.parent
if str(_repo_root) not in sys.path:
    sys.path.insert(0, str(_repo_root))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from opsconsole.app import add_request_id_middleware, create_app
from opsconsole.config import clear_settings_cache
from opsconsole.gateway import FakeDocumentStore, FakeMessageStore, RemoteGateway

AZURE_ENV_VARS = (
    "SERVICE_BUS_FQDN",
    "SERVICE-BUS-FQDN",
    "AZURE_SERVICE_BUS_CONNECTION_STRING",
    "AZURE-SERVICE-BUS-CONNECTION-STRING",
    "AZURE_CLIENT_ID",
    "AZURE-CLIENT-ID",
    "COSMOS_DB_CONNECTION_STRING",
    "COSMOS-DB-CONNECTION-STRING",
    "USE_FAKE_BACKENDS",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    """Run every test against test settings with no Azure credentials."""
    monkeypatch.setenv("OPSCONSOLE_ENV", "test")
    monkeypatch.setenv("LOG_FORMAT", "console")
    for name in AZURE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def fake_documents() -> FakeDocumentStore:
    return FakeDocumentStore()


@pytest.fixture
def fake_messages() -> FakeMessageStore:
    return FakeMessageStore()


@pytest.fixture
def gateway(fake_documents: FakeDocumentStore, fake_messages: FakeMessageStore) -> RemoteGateway:
    return RemoteGateway(fake_documents, fake_messages)


@pytest.fixture
def app(gateway: RemoteGateway) -> FastAPI:
    """App wired to the fake gateway, with request-id middleware outermost."""
    app = create_app(gateway=gateway)
    add_request_id_middleware(app, log_requests=False)
    return app


@pytest.fixture
def client(app: FastAPI) -> Generator[TestClient, None, None]:
    """Create a test client with the lifespan running."""
    with TestClient(app) as client:
        yield client
