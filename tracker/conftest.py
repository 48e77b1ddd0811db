"""Shared pytest fixtures: a fresh SQLite store per test and small factories."""

import itertools

import pytest

from tracker.db import SQLiteStore
from tracker.migrate import init_store
from tracker.models import Role
from tracker.projects import create_project
from tracker.users import create_user


@pytest.fixture
def store(tmp_path):
    s = init_store(SQLiteStore(str(tmp_path / "tracker_test.db")).connect())
    yield s
    s.close()


@pytest.fixture
def make_user(store):
    counter = itertools.count(1)

    def _make(system_role=Role.member, email=None, password="password123"):
        n = next(counter)
        return create_user(
            store,
            email or f"user{n}@example.com",
            password,
            f"User {n}",
            system_role=system_role,
        )

    return _make


@pytest.fixture
def acme(store, make_user):
    """Project ACME owned by a system Member."""
    owner = make_user()
    project = create_project(store, owner.as_principal(), name="Acme", key="ACME")
    return {"owner": owner, "project": project}
