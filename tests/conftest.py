"""
Shared fixtures: an application on in-memory SQLite, a fresh schema per
test, and small factories for users and groups.
"""

import pytest

from config import TestConfig
from splitledger import create_app
from splitledger.extensions import db as _db
from splitledger.services.membership_service import add_member, create_group, create_user


@pytest.fixture
def app():
    app = create_app(TestConfig)
    with app.app_context():
        yield app
        _db.session.remove()
        _db.drop_all()


@pytest.fixture
def db(app):
    return _db


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_user(app):
    counter = {'n': 0}

    def _make_user(name):
        counter['n'] += 1
        return create_user(email=f"{name.lower()}{counter['n']}@example.com", name=name)

    return _make_user


@pytest.fixture
def make_group(make_user):
    """Group whose first member is admin; returns (group, {name: user})."""

    def _make_group(*names, group_name='Trip'):
        users = {name: make_user(name) for name in names}
        first, *rest = names
        group = create_group(group_name, created_by=users[first].id)
        for name in rest:
            add_member(group.id, users[name].id)
        return group, users

    return _make_group
