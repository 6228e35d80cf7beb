"""
Pytest fixtures for lottery back-office tests.

Provides an in-memory database, a two-tenant layout (org A with two stores,
org B with one), staff, bins and games, plus helpers that build serialized
barcodes and walk packs through reception and activation.
"""

import pytest

from backoffice import create_app
from backoffice.extensions import db
from backoffice.models import LotteryBin, LotteryGame, Organization, Store, User
from backoffice.services import lifecycle_service, pack_service
from backoffice.services.serial_service import encode_serialized_number


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def store_a(db_session, org_a):
    """Create Store A in Organization A."""
    store = Store(org_id=org_a.id, name="Store A1", code="A1")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_a2(db_session, org_a):
    """Second store of Organization A (same tenant, different store)."""
    store = Store(org_id=org_a.id, name="Store A2", code="A2")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def store_b(db_session, org_b):
    """Create Store B in Organization B."""
    store = Store(org_id=org_b.id, name="Store B1", code="B1")
    db_session.add(store)
    db_session.commit()
    return store


def _user(db_session, org, store, username):
    user = User(org_id=org.id, store_id=store.id if store else None, username=username, display_name=username)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def cashier(db_session, org_a, store_a):
    return _user(db_session, org_a, store_a, "cashier_a")


@pytest.fixture(scope='function')
def cashier_2(db_session, org_a, store_a):
    return _user(db_session, org_a, store_a, "cashier_a_2")


@pytest.fixture(scope='function')
def manager(db_session, org_a, store_a):
    return _user(db_session, org_a, store_a, "manager_a")


@pytest.fixture(scope='function')
def owner(db_session, org_a):
    """Org-level user without a home store."""
    return _user(db_session, org_a, None, "owner_a")


@pytest.fixture(scope='function')
def user_b(db_session, org_b, store_b):
    return _user(db_session, org_b, store_b, "cashier_b")


def _bin(db_session, store, name, display_order):
    lottery_bin = LotteryBin(store_id=store.id, name=name, display_order=display_order, is_active=True)
    db_session.add(lottery_bin)
    db_session.commit()
    return lottery_bin


@pytest.fixture(scope='function')
def bin_1(db_session, store_a):
    return _bin(db_session, store_a, "Bin 1", 0)


@pytest.fixture(scope='function')
def bin_2(db_session, store_a):
    return _bin(db_session, store_a, "Bin 2", 1)


@pytest.fixture(scope='function')
def bin_a2(db_session, store_a2):
    return _bin(db_session, store_a2, "Other Store Bin", 0)


@pytest.fixture(scope='function')
def bin_b(db_session, store_b):
    return _bin(db_session, store_b, "Foreign Bin", 0)


@pytest.fixture(scope='function')
def game(db_session):
    """Global $5 game, 150 tickets per pack (serials 000-149)."""
    lottery_game = LotteryGame(store_id=None, game_code="0042", name="Lucky 7s", price_cents=500, tickets_per_pack=150)
    db_session.add(lottery_game)
    db_session.commit()
    return lottery_game


@pytest.fixture(scope='function')
def small_game(db_session):
    """Global $2 game, 10 tickets per pack (serials 000-009)."""
    lottery_game = LotteryGame(store_id=None, game_code="0007", name="Quick Ten", price_cents=200, tickets_per_pack=10)
    db_session.add(lottery_game)
    db_session.commit()
    return lottery_game


def serial_for(game_code: str, pack_number: int, serial_start: str = "000") -> str:
    """24-digit barcode for a pack."""
    return encode_serialized_number(game_code, str(pack_number).zfill(7), serial_start, "1234567890")


def receive(store, user, game_code: str, pack_number: int):
    return pack_service.receive_pack(store.id, serial_for(game_code, pack_number), received_by=user.id)


def activate(pack, store, lottery_bin, user, shift=None, serial_start=None):
    return lifecycle_service.activate_pack(
        pack.id,
        store_id=store.id,
        bin_id=lottery_bin.id,
        activated_by=user.id,
        shift_id=shift.id if shift is not None else None,
        serial_start=serial_start,
    )


@pytest.fixture(scope='function')
def received_pack(store_a, cashier, game):
    return receive(store_a, cashier, game.game_code, 1)


@pytest.fixture(scope='function')
def active_pack(store_a, cashier, game, bin_1):
    pack = receive(store_a, cashier, game.game_code, 2)
    activate(pack, store_a, bin_1, cashier)
    db.session.refresh(pack)
    return pack
