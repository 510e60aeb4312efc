"""
Shared fixtures: SQLite engine, per-test session with rollback, factories.

Set DATABASE_URL to run the suite against another database.
"""

import os
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from marketplace.database.session import build_engine, configure_sqlite_engine
from marketplace.db_base import Base
from marketplace.entitlements.catalog import Tier
from marketplace.entitlements.loader import set_catalog
from marketplace.models.account import Account
from marketplace.models.listing import Listing
from marketplace.services.event_publisher import RecordingEventPublisher
from marketplace.services.reservation_service import ReservationService


# =============================================================================
# Test Database Fixtures
# =============================================================================

def _get_test_database_url():
    """Get database URL for testing."""
    database_url = os.getenv("DATABASE_URL")
    if not database_url or database_url.startswith("sqlite"):
        return "sqlite:///:memory:"
    return database_url


@pytest.fixture(scope="module")
def db_engine():
    """Create database engine for tests."""
    database_url = _get_test_database_url()

    if database_url.startswith("sqlite"):
        engine = create_engine(
            database_url,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        configure_sqlite_engine(engine)
    else:
        engine = create_engine(database_url, pool_pre_ping=True)

    import marketplace.models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine):
    """Create a new database session for each test with transaction rollback."""
    connection = db_engine.connect()
    transaction = connection.begin()

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=connection)
    session = SessionLocal()

    yield session

    session.close()
    transaction.rollback()
    connection.close()


@pytest.fixture
def file_engine(tmp_path):
    """
    File-backed SQLite engine for tests that need independent sessions
    committing against the same database.
    """
    engine = build_engine(f"sqlite:///{tmp_path / 'marketplace.db'}")

    import marketplace.models  # noqa: F401

    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(file_engine):
    return sessionmaker(bind=file_engine, autoflush=False, expire_on_commit=False)


# =============================================================================
# Catalog
# =============================================================================

@pytest.fixture(autouse=True)
def default_catalog():
    """Every test starts from the built-in catalog."""
    set_catalog(None)
    yield
    set_catalog(None)


# =============================================================================
# Factories
# =============================================================================

@pytest.fixture
def make_account(db_session):
    def _make(tier=Tier.FREE, phone=None, **counters):
        account = Account(
            id=str(uuid.uuid4()),
            display_name="Test account",
            phone=phone,
            tier=tier.value if isinstance(tier, Tier) else tier,
            **counters,
        )
        db_session.add(account)
        db_session.flush()
        return account
    return _make


@pytest.fixture
def make_listing(db_session):
    def _make(owner, quantity=1, **fields):
        listing = Listing(
            id=str(uuid.uuid4()),
            owner_id=owner.id,
            title=fields.pop("title", "Used bicycle"),
            price=fields.pop("price", 150),
            quantity=quantity,
            **fields,
        )
        db_session.add(listing)
        db_session.flush()
        return listing
    return _make


@pytest.fixture
def seller(make_account):
    return make_account(phone="+261340000001")


@pytest.fixture
def buyer(make_account):
    return make_account()


@pytest.fixture
def listing(make_listing, seller):
    return make_listing(seller)


@pytest.fixture
def publisher():
    return RecordingEventPublisher()


@pytest.fixture
def reservation_service(db_session, publisher):
    return ReservationService(db_session, publisher=publisher)
