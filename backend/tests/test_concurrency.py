"""
Concurrency tests: racing clinics against one card, one perk and one quota.

The SQL variant runs on a temporary SQLite file so every thread gets its own
connection and the write lock is real.
"""

import threading
from contextlib import contextmanager

import pytest

from conftest import NOW
from mocards import create_app
from mocards.extensions import db
from mocards.perk_catalog import PERK_CATALOG
from mocards.services import activation_service, batch_service, location_service, perk_service
from mocards.services.card_repository import SqlCardRepository
from mocards.services.errors import (
    AlreadyActivatedError,
    AlreadyAssignedError,
    PerkAlreadyClaimedError,
    QuotaExceededError,
)
from mocards.services.memory_repository import InMemoryCardRepository

THREADS = 8


class MemoryEnv:
    def __init__(self):
        self.repo = InMemoryCardRepository()

    @contextmanager
    def session(self):
        yield self.repo


class SqliteFileEnv:
    def __init__(self, app):
        self.app = app

    @contextmanager
    def session(self):
        with self.app.app_context():
            try:
                yield SqlCardRepository()
            finally:
                db.session.remove()


@pytest.fixture(params=['memory', 'sqlite-file'])
def env(request, tmp_path):
    if request.param == 'memory':
        yield MemoryEnv()
        return

    file_app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
        'BCRYPT_ROUNDS': 4,
        'REPOSITORY_RETRY_ATTEMPTS': 10,
        'REPOSITORY_RETRY_BACKOFF': 0.01,
    })
    with file_app.app_context():
        db.create_all()

    yield SqliteFileEnv(file_app)

    with file_app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _race(env, worker, count=THREADS):
    """Run worker(repo, index) on `count` threads released together."""
    results = []
    errors = []
    lock = threading.Lock()
    barrier = threading.Barrier(count)

    def run(index):
        with env.session() as repo:
            barrier.wait()
            try:
                outcome = worker(repo, index)
                with lock:
                    results.append(outcome)
            except Exception as exc:
                with lock:
                    errors.append(exc)

    threads = [threading.Thread(target=run, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results, errors


def _clinic(repo, code, *, monthly_card_limit=100):
    with repo.transaction():
        return repo.create_clinic(
            clinic_code=code,
            clinic_name=f"Clinic {code}",
            password_hash="x",
            subscription_plan='basic',
            monthly_card_limit=monthly_card_limit,
            commission_rate_bps=1000,
            created_at=NOW,
        )


def test_concurrent_activation_single_winner(env):
    with env.session() as repo:
        clinic = _clinic(repo, 'RCE101')
        _batch, (card,) = batch_service.generate_batch('admin', 1, repo=repo, now=NOW)
        card, passcode = location_service.assign_location(clinic.id, card.id, 'CAV', repo=repo, now=NOW)

    def worker(repo, _index):
        return activation_service.activate_card(
            clinic.id, card.control_number, passcode, sale_amount_cents=1000, repo=repo, now=NOW,
        )

    results, errors = _race(env, worker)

    assert len(results) == 1
    assert len(errors) == THREADS - 1
    assert all(isinstance(e, AlreadyActivatedError) for e in errors)

    with env.session() as repo:
        refreshed = repo.get_clinic(clinic.id)
        assert refreshed.activations_this_period == 1
        assert refreshed.total_revenue_cents == 1000
        assert len(repo.list_sales(clinic.id)) == 1


def test_concurrent_redemption_single_winner(env):
    with env.session() as repo:
        clinic = _clinic(repo, 'RCR101')
        _batch, (card,) = batch_service.generate_batch('admin', 1, repo=repo, now=NOW)
        card, passcode = location_service.assign_location(clinic.id, card.id, 'CAV', repo=repo, now=NOW)
        activation_service.activate_card(clinic.id, card.control_number, passcode, repo=repo, now=NOW)
        cleaning = perk_service.resolve_perk(card.id, 'cleaning', repo=repo)

    def worker(repo, _index):
        return perk_service.redeem_perk(clinic.id, card.id, cleaning.id, repo=repo, now=NOW)

    results, errors = _race(env, worker)

    assert len(results) == 1
    assert all(isinstance(e, PerkAlreadyClaimedError) for e in errors)
    with env.session() as repo:
        assert len(repo.list_redemptions(clinic.id)) == 1
        claimed = [p for p in repo.list_perks(card.id) if p.claimed]
        assert [p.perk_type for p in claimed] == ['cleaning']


def test_quota_burst_never_oversells(env):
    limit = 3
    with env.session() as repo:
        clinic = _clinic(repo, 'RCQ101', monthly_card_limit=limit)
        _batch, cards = batch_service.generate_batch('admin', THREADS, repo=repo, now=NOW)
        ready = [
            location_service.assign_location(clinic.id, c.id, 'CAV', repo=repo, now=NOW)
            for c in cards
        ]

    def worker(repo, index):
        card, passcode = ready[index]
        return activation_service.activate_card(clinic.id, card.control_number, passcode, repo=repo, now=NOW)

    results, errors = _race(env, worker)

    assert len(results) == limit
    assert len(errors) == THREADS - limit
    assert all(isinstance(e, QuotaExceededError) for e in errors)
    with env.session() as repo:
        assert repo.get_clinic(clinic.id).activations_this_period == limit
        assert repo.count_activations_this_month(clinic.id, now=NOW) == limit


def test_concurrent_location_assignment_single_winner(env):
    with env.session() as repo:
        clinics = [_clinic(repo, f'RCL{100 + i}') for i in range(THREADS)]
        _batch, (card,) = batch_service.generate_batch('admin', 1, repo=repo, now=NOW)

    def worker(repo, index):
        return location_service.assign_location(clinics[index].id, card.id, 'CAV', repo=repo, now=NOW)

    results, errors = _race(env, worker)

    assert len(results) == 1
    assert all(isinstance(e, AlreadyAssignedError) for e in errors)
    winner, _passcode = results[0]
    with env.session() as repo:
        assert repo.get_card(card.id).assigned_clinic_id == winner.assigned_clinic_id


def test_concurrent_batches_have_unique_control_numbers(env):
    def worker(repo, _index):
        _batch, cards = batch_service.generate_batch('admin', 5, repo=repo, now=NOW)
        return [c.control_number for c in cards]

    results, errors = _race(env, worker, count=4)

    assert not errors
    numbers = [n for batch in results for n in batch]
    assert len(numbers) == 20
    assert len(set(numbers)) == 20
    with env.session() as repo:
        for card in repo.list_cards():
            assert len(repo.list_perks(card.id)) == len(PERK_CATALOG)
