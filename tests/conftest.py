"""Shared test fixtures."""
from datetime import datetime
from decimal import Decimal
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from invoice_mirror.models.invoice import Employee, Invoice  # noqa: F401
from invoice_mirror.models.sync import SyncLog  # noqa: F401


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="seeded_invoice")
def seeded_invoice_fixture(test_session: Session) -> Invoice:
    """A persisted Invoice first seen long before any test sync."""
    invoice = Invoice(
        id=1,
        invoice_number="INV-0001",
        customer_name="Acme Corp",
        currency="USD",
        total=Decimal("5.00"),
        invoice_date=datetime(2023, 5, 1),
        created_at=datetime(2023, 5, 1, 12, 0),
        synced_at=datetime(2023, 5, 1, 12, 0),
        updated_at=datetime(2023, 5, 1, 12, 0),
    )
    test_session.add(invoice)
    test_session.commit()
    test_session.refresh(invoice)
    return invoice
