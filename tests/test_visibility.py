"""
Tests for account visibility and shared-account permissions.
"""

import pytest

from household_ledger.models.finance import AccountPermission, PermissionType
from household_ledger.visibility import (
    owned_account_ids,
    permission_for,
    visible_account_ids,
)


@pytest.fixture
def accounts(make_account):
    return [
        make_account("A1"),
        make_account("A2"),
        make_account("B1", owner="u2"),
        make_account("B2", owner="u2"),
        make_account("C1", owner="u3"),
    ]


@pytest.fixture
def permissions():
    return [
        AccountPermission(account_id="B1", user_id="u1", permission_type="view"),
        AccountPermission(account_id="B2", user_id="u1", permission_type="edit"),
        AccountPermission(account_id="C1", user_id="u2", permission_type="edit"),
    ]


class TestVisibleAccounts:
    """Tests for owned / visible account sets."""

    def test_owned_accounts(self, accounts):
        """Test only the user's own accounts are personal."""
        assert owned_account_ids(accounts, "u1") == {"A1", "A2"}

    def test_granted_accounts_are_visible(self, accounts, permissions):
        """Test grants to the user add to the owned accounts."""
        assert visible_account_ids(accounts, permissions, "u1") == {"A1", "A2", "B1", "B2"}
        assert visible_account_ids(accounts, permissions, "u2") == {"B1", "B2", "C1"}

    def test_blank_user_sees_nothing(self, accounts, permissions):
        """Test a session without a user sees no accounts."""
        assert visible_account_ids(accounts, permissions, "") == set()


class TestPermissionFor:
    """Tests for the access level on a transaction."""

    @pytest.mark.parametrize("account_in,account_out,expected", [
        ("A1", "A2", None),
        ("A1", "B1", PermissionType.VIEW),
        ("B1", "B2", PermissionType.EDIT),
        ("", "B2", PermissionType.EDIT),
        ("C1", "", None),
    ])
    def test_permission_for(self, make_transaction, accounts, permissions, account_in, account_out, expected):
        """Test shared accounts decide the access level, edit winning over view."""
        tx = make_transaction(
            transaction_type="transfer",
            account_id_in=account_in,
            account_id_out=account_out,
        )
        assert permission_for(tx, accounts, permissions, "u1") == expected
