"""
Pytest fixtures for the card engine tests.

Provides the Flask app on in-memory SQLite, a repository fixture that runs
engine tests against both the SQL and the in-memory repository, and
factories for clinics and cards.
"""

from datetime import datetime

import pytest

from mocards import create_app
from mocards.extensions import db
from mocards.records import CustomerInfo
from mocards.services import activation_service, batch_service, location_service
from mocards.services.card_repository import SqlCardRepository
from mocards.services.memory_repository import InMemoryCardRepository


# Fixed business time so expiry and quota windows are deterministic
NOW = datetime(2026, 3, 15, 12, 0, 0)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'REPOSITORY_RETRY_BACKOFF': 0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function', params=['memory', 'sql'])
def repo(request, app):
    """Each engine test runs once per repository implementation."""
    if request.param == 'memory':
        yield InMemoryCardRepository()
        return
    session = request.getfixturevalue('db_session')
    yield SqlCardRepository(session)


@pytest.fixture(scope='function')
def make_clinic(repo):
    """Clinic with an explicit limit/rate (plans fix these, tests need small limits)."""
    counter = {'n': 0}

    def _make(*, monthly_card_limit=100, commission_rate_bps=1000, is_active=True, name=None):
        counter['n'] += 1
        with repo.transaction():
            clinic = repo.create_clinic(
                clinic_code=f"TST{100 + counter['n']}",
                clinic_name=name or f"Test Clinic {counter['n']}",
                password_hash="x",
                subscription_plan='basic',
                monthly_card_limit=monthly_card_limit,
                commission_rate_bps=commission_rate_bps,
                created_at=NOW,
            )
            if not is_active:
                clinic = repo.set_clinic_active(clinic.id, False)
        return clinic

    return _make


@pytest.fixture(scope='function')
def mint_cards(repo):
    def _mint(count=1, prefix='MOC'):
        _batch, cards = batch_service.generate_batch('admin', count, prefix=prefix, repo=repo, now=NOW)
        return cards

    return _mint


@pytest.fixture(scope='function')
def ready_card(repo, mint_cards):
    """Card with a location code attached by `clinic`; returns (card, passcode)."""
    def _ready(clinic, location_code='CAV'):
        card = mint_cards(1)[0]
        return location_service.assign_location(clinic.id, card.id, location_code, repo=repo, now=NOW)

    return _ready


@pytest.fixture(scope='function')
def activated_card(repo, ready_card):
    def _activated(clinic, *, now=NOW, sale_amount_cents=None):
        card, passcode = ready_card(clinic)
        activated, _sale = activation_service.activate_card(
            clinic.id,
            card.control_number,
            passcode,
            customer=CustomerInfo(name='Juan Dela Cruz', phone='09171234567'),
            sale_amount_cents=sale_amount_cents,
            repo=repo,
            now=now,
        )
        return activated

    return _activated
