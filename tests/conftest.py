"""
Pytest configuration and fixtures for the certification registry tests.
"""

import pytest

from registry_app.app import create_app
from registry_app.auditors import AllowListAuditorVerifier
from registry_app.blockchain import Chain
from registry_app.config import Config
from registry_app.crypto_utils import sign_principal
from registry_app.database import db
from registry_app.registry import CertificationRegistry

AUTHORITY = "ST2TEST"
AUDITOR = "ST1TEST"
OUTSIDER = "ST3FAKE"
PRINCIPAL_SECRET = "test-principal-secret"
MASTER_KEY = "test-master-key"


@pytest.fixture
def chain():
    """Fresh block clock / event log."""
    return Chain()


@pytest.fixture
def registry(chain):
    """In-memory registry with a single known auditor; events go to the chain."""
    return CertificationRegistry(
        verifier=AllowListAuditorVerifier([AUDITOR]),
        event_sink=chain.publish,
    )


@pytest.fixture
def bound_registry(registry):
    """Registry with the authority already bound."""
    registry.set_authority(AUTHORITY)
    return registry


@pytest.fixture
def issued(bound_registry):
    """Bound registry holding one pending certification (id 1)."""
    bound_registry.issue(1, 1, 1, "GMO-free corn batch", caller=AUTHORITY, current_time=10)
    return bound_registry


def make_config(**overrides):
    settings = {
        "MASTER_KEY": MASTER_KEY,
        "PRINCIPAL_SECRET": PRINCIPAL_SECRET,
        "SQLALCHEMY_DATABASE_URI": "sqlite://",
        "AUDITORS": [AUDITOR],
        "AUTHORITY_PRINCIPAL": "",
        "LOG_LEVEL": "WARNING",
    }
    settings.update(overrides)
    return Config(**settings)


@pytest.fixture
def app_factory(monkeypatch):
    """Build apps against a given config; tears their tables down afterwards."""
    for name in ("AUTHORITY_PRINCIPAL", "AUDITORS", "DATABASE_URL"):
        monkeypatch.delenv(name, raising=False)
    apps = []

    def _build(**overrides):
        app = create_app(make_config(**overrides))
        app.config["TESTING"] = True
        apps.append(app)
        return app

    yield _build

    for app in apps:
        with app.app_context():
            db.session.remove()
            db.drop_all()


@pytest.fixture
def app(app_factory):
    return app_factory()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def signed():
    """Header factory: principal plus a valid gateway signature."""
    def _headers(principal):
        return {
            "X-Principal": principal,
            "X-Principal-Signature": sign_principal(principal, PRINCIPAL_SECRET.encode()),
        }
    return _headers
