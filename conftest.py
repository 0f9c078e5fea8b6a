import os

import pytest
from fastapi.testclient import TestClient

from library_api.api import app, get_library
from library_api.config import settings
from library_api.library import Library
from library_api.models import Book, Member, User, UserRole


@pytest.fixture(autouse=True)
def _cheap_password_hashing(monkeypatch):
    # Lower scrypt cost so user fixtures stay fast
    monkeypatch.setattr(settings, "password_hash_n", 2 ** 10)
    monkeypatch.delenv("LIB_CLI_OUTPUT", raising=False)


@pytest.fixture
def db_file(tmp_path, request):
    # Create a unique database file for each test
    return str(tmp_path / f"test_{request.node.name}.db")


@pytest.fixture
def lib(db_file):
    lib = Library(db_file=db_file)
    yield lib
    lib.close()
    if os.path.exists(db_file):
        os.remove(db_file)


@pytest.fixture
def client(lib):
    app.dependency_overrides[get_library] = lambda: lib
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def api_headers():
    return {"X-API-Key": settings.api_key}


@pytest.fixture
def make_user(lib):
    counter = {"n": 0}

    def _make(username=None, email=None, password="secret-pass", role=UserRole.MEMBER):
        counter["n"] += 1
        username = username or f"user{counter['n']}"
        email = email or f"{username}@example.com"
        return lib.users.create_user(User(username=username, email=email, role=role), password)

    return _make


@pytest.fixture
def make_member(lib, make_user):
    def _make(first_name="Ada", last_name="Lovelace", phone=None, **kwargs):
        user = make_user()
        return lib.members.create_member(
            Member(user_id=user.id, first_name=first_name, last_name=last_name, phone=phone, **kwargs)
        )

    return _make


@pytest.fixture
def make_book(lib):
    counter = {"n": 0}

    def _make(isbn=None, title="Dune", author="Frank Herbert", total_copies=1, **kwargs):
        counter["n"] += 1
        isbn = isbn or f"97800000000{counter['n']:02d}"
        return lib.books.create_book(
            Book(isbn=isbn, title=title, author=author, total_copies=total_copies, **kwargs)
        )

    return _make
