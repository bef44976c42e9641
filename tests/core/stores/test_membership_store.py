"""Tests for PostgresMembershipDirectory."""

from unittest.mock import Mock
from uuid import uuid4

import pytest

from clients.postgres_client import PostgresClient
from core.stores.membership_store import PostgresMembershipDirectory


@pytest.fixture
def db():
    return Mock(spec=PostgresClient)


@pytest.fixture
def directory(db):
    return PostgresMembershipDirectory(db)


class TestMembershipDirectory:

    def test_count_members(self, directory, db):
        db.execute_scalar.return_value = 4
        assert directory.count_members(uuid4()) == 4

    def test_count_members_none_is_zero(self, directory, db):
        db.execute_scalar.return_value = None
        assert directory.count_members(uuid4()) == 0

    def test_get_role(self, directory, db):
        business_id, user_id = uuid4(), uuid4()
        db.execute_scalar.return_value = "Admin"

        assert directory.get_role(business_id, user_id) == "Admin"
        assert db.execute_scalar.call_args.args[1] == (business_id, user_id)

    def test_get_role_non_member(self, directory, db):
        db.execute_scalar.return_value = None
        assert directory.get_role(uuid4(), uuid4()) is None

    @pytest.mark.parametrize("value,expected", [(True, True), (False, False), (None, False)])
    def test_is_platform_admin(self, directory, db, value, expected):
        db.execute_scalar.return_value = value
        assert directory.is_platform_admin(uuid4()) is expected
