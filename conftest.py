import os
import pytest

from library_app import database
from library_app.ledger import LoanLedger
from library_app.services.catalog import CatalogStore
from library_app.services.identity import IdentityStore


@pytest.fixture
def db_file(tmp_path, request, monkeypatch):
    # Each test gets its own database file
    path = str(tmp_path / f"test_{request.node.name}.db")
    monkeypatch.setattr(database, "DATABASE_FILE", path)
    database.initialize_database(path)
    yield path
    if os.path.exists(path):
        os.remove(path)


@pytest.fixture
def identity(db_file):
    return IdentityStore(db_file)


@pytest.fixture
def catalog(db_file):
    return CatalogStore(db_file)


@pytest.fixture
def ledger(db_file, catalog, identity):
    return LoanLedger(db_file, catalog=catalog, identity=identity)


@pytest.fixture
def admin(identity):
    return identity.create_user(
        {"name": "Admin Perpus", "email": "admin@perpus.id", "password": "admin123", "role": "admin"}
    )


@pytest.fixture
def member(identity):
    return identity.create_user({"name": "Budi Santoso", "email": "budi@perpus.id", "password": "rahasia1"})


@pytest.fixture
def other_member(identity):
    return identity.create_user({"name": "Siti Aminah", "email": "siti@perpus.id", "password": "rahasia2"})


@pytest.fixture
def book(catalog):
    return catalog.add_book({"title": "Laskar Pelangi", "author": "Andrea Hirata", "quantity": 2, "category": "Novel"})


@pytest.fixture
def single_copy(catalog):
    return catalog.add_book({"title": "Bumi Manusia", "author": "Pramoedya Ananta Toer", "quantity": 1})
