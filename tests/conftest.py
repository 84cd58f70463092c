"""Shared fixtures: a fresh temp-file SQLite database and a loyalty service on top."""
import os
import shutil
import tempfile
from datetime import datetime, date

import pytest

from business.loyalty_service import LoyaltyService
from business.models import VisitStatus
from database import DatabaseManager


@pytest.fixture
def temp_db():
    """Yield a fresh DatabaseManager bound to a temp SQLite database."""
    temp_dir = tempfile.mkdtemp(prefix="db-tests-")
    db_path = os.path.join(temp_dir, "test.db")
    manager = DatabaseManager(database_url=f"sqlite:///{db_path}")
    manager.create_tables()

    try:
        yield manager
    finally:
        manager.close()
        shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def service(temp_db):
    """Yield a LoyaltyService backed by temp_db."""
    return LoyaltyService(temp_db)


@pytest.fixture
def customer(temp_db):
    """A registered active customer."""
    return temp_db.customers.register("王先生", "0501234567")


@pytest.fixture
def sample_datetime():
    """Stable datetime value for deterministic tests."""
    return datetime(2026, 1, 15, 10, 0, 0)


@pytest.fixture
def sample_date():
    """Stable date value for deterministic tests."""
    return date(2026, 1, 15)


def make_approved_visit(db, customer_id, visit_date, **kwargs):
    """Helper: add a visit and approve it, return the visit."""
    visit = db.visits.add(customer_id, visit_date, **kwargs)
    return db.visits.transition(visit.id, VisitStatus.APPROVED)
