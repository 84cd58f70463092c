"""Fixtures for isolated database module tests.

temp_db and the sample values come from tests/conftest.py; these add
direct access to the connection layer.
"""
import pytest

from database.base_crud import BaseCRUD


@pytest.fixture
def db_conn(temp_db):
    """Yield a DatabaseConnection from the temp_db manager."""
    return temp_db.conn


@pytest.fixture
def base_crud(db_conn):
    """Yield a BaseCRUD instance."""
    return BaseCRUD(db_conn)
