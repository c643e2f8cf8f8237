import os

# Settings are read once at import time, so these must be set before app.*
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite://")
os.environ.setdefault("ROUTER_SYNC_KEY", "test-router-key")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("VOUCHER_RATE_LIMIT", "1000/minute")

import itertools
from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session
from sqlalchemy.pool import StaticPool

from app.config import settings
from app.db import Base
from app.metrics import AccessMetrics
from app.models import DurationUnit, Plan, Subscriber, SubscriberStatus
from app.services.common import utcnow


@pytest.fixture(scope="session")
def engine():
    database_url = os.getenv("TEST_DATABASE_URL")
    if database_url:
        engine = create_engine(database_url)
    else:
        engine = create_engine(
            "sqlite+pysqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

        # pysqlite manages transactions itself and breaks SAVEPOINT; take over.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def db_session(engine):
    connection = engine.connect()
    transaction = connection.begin()
    # Service commits and rollbacks act on a savepoint inside the test transaction.
    session = Session(
        bind=connection,
        autoflush=False,
        join_transaction_mode="create_savepoint",
    )
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


class RecordingMetrics(AccessMetrics):
    """Captures observability calls instead of touching Prometheus."""

    def __init__(self):
        self.events: list[tuple] = []

    def activation(self, origin, outcome):
        self.events.append(("activation", origin, outcome))

    def expiration(self, outcome):
        self.events.append(("expiration", outcome))

    def provisioning(self, operation, outcome):
        self.events.append(("provisioning", operation, outcome))

    def identity(self, rule):
        self.events.append(("identity", rule))

    def voucher(self, outcome):
        self.events.append(("voucher", outcome))

    def sweep(self, result, count=1):
        self.events.append(("sweep", result, count))

    def job(self, task_name, status, duration):
        self.events.append(("job", task_name, status))


@pytest.fixture()
def metrics():
    return RecordingMetrics()


@pytest.fixture()
def hour_plan(db_session):
    plan = Plan(
        name="1 Hour",
        duration_unit=DurationUnit.hour,
        duration_value=1,
        price=Decimal("10.00"),
        rate_limit="5M/5M",
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


@pytest.fixture()
def day_plan(db_session):
    plan = Plan(
        name="Daily Pass",
        duration_unit=DurationUnit.day,
        duration_value=1,
        price=Decimal("50.00"),
    )
    db_session.add(plan)
    db_session.commit()
    db_session.refresh(plan)
    return plan


_counter = itertools.count(1)


@pytest.fixture()
def make_subscriber(db_session):
    def _make(
        username: str | None = None,
        mac_address: str | None = None,
        mac_is_temporary: bool = True,
        phone: str | None = None,
        created_at=None,
        blocked: bool = False,
    ) -> Subscriber:
        n = next(_counter)
        if mac_address is None and mac_is_temporary:
            mac_address = f"{settings.placeholder_mac_prefix}:00:{n // 256 % 256:02X}:{n % 256:02X}"
        subscriber = Subscriber(
            username=username or f"user_test{n:04d}",
            secret=f"secret{n}",
            mac_address=mac_address,
            mac_is_temporary=mac_is_temporary,
            phone=phone,
            created_at=created_at or utcnow(),
            status=SubscriberStatus.blocked if blocked else SubscriberStatus.active,
        )
        db_session.add(subscriber)
        db_session.commit()
        db_session.refresh(subscriber)
        return subscriber

    return _make


@pytest.fixture()
def subscriber(make_subscriber):
    return make_subscriber()


@pytest.fixture()
def lapsed_start():
    """Start time that puts a one-hour subscription two minutes past its end."""
    return utcnow() - timedelta(hours=1, minutes=2)


@pytest.fixture()
def router_headers():
    return {"X-API-Key": settings.router_sync_key}


@pytest.fixture()
def admin_headers():
    return {"X-Admin-Key": settings.admin_api_key}


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient

    from app.db import get_db
    from app.main import app

    app.dependency_overrides[get_db] = lambda: db_session
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
