"""Shared test fixtures for the PayOps settlement engine tests.

Uses a SQLite file database so tests run without PostgreSQL.
"""

from __future__ import annotations

import os

# Override DATABASE_URL before importing anything from app. The Settings
# model reads .env eagerly via pydantic-settings, and the module-level
# ``engine`` in app.core.database would try to connect to PostgreSQL.
os.environ["DATABASE_URL"] = "sqlite:///./test_payops.db"

from datetime import datetime
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from app.core.database import Base, get_db
from app.main import app
from app.models.pricing import PricingConfig
from app.models.transaction import Transaction, TransactionKind

TEST_DATABASE_URL = "sqlite:///./test_payops.db"

engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
)


@event.listens_for(engine, "connect")
def _set_sqlite_pragma(dbapi_conn, connection_record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session):
    """FastAPI test client with overridden DB dependency."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()



# ── Data factories ───────────────────────────────────────────────────


@pytest.fixture
def add_pricing(db_session):
    """Factory that stores a site's fee schedule.

    Money arguments are strings so the Decimals stay exact.
    """

    def _add(
        site_id: str = "MOHWK-STORE",
        percentage_fee: str = "2.9",
        per_transaction_fee: str = "0.30",
        refund_fee: str = "0",
        chargeback_fee: str = "0",
        reserve_amount: str = "0",
        reserve_collected: str = "0",
        is_active: bool = True,
    ) -> PricingConfig:
        pricing = PricingConfig(
            site_id=site_id,
            site_name=site_id.title(),
            is_active=is_active,
            percentage_fee=Decimal(percentage_fee),
            per_transaction_fee=Decimal(per_transaction_fee),
            refund_fee=Decimal(refund_fee),
            chargeback_fee=Decimal(chargeback_fee),
            reserve_amount=Decimal(reserve_amount),
            reserve_collected=Decimal(reserve_collected),
        )
        db_session.add(pricing)
        db_session.commit()
        return pricing

    return _add


@pytest.fixture
def add_transaction(db_session):
    """Factory that stores one settled transaction."""

    def _add(
        session_id: str,
        amount: str,
        occurred_at: datetime,
        kind: TransactionKind = TransactionKind.SALE,
        site_id: str = "MOHWK-STORE",
        status: str = "complete",
    ) -> Transaction:
        txn = Transaction(
            session_id=session_id,
            amount=Decimal(amount),
            occurred_at=occurred_at,
            kind=kind,
            site_id=site_id,
            status=status,
            processor="cpt",
            currency="CAD",
        )
        db_session.add(txn)
        db_session.commit()
        return txn

    return _add
