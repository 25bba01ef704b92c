"""
Account visibility.

A user sees the accounts they own plus the accounts another user has
shared with them through ACCOUNT_PERMISSION.
"""

from typing import Iterable, Optional

from household_ledger.models.finance import (
    Account,
    AccountPermission,
    PermissionType,
    Transaction,
)


def owned_account_ids(accounts: Iterable[Account], user_id: str) -> set[str]:
    """IDs of the personal accounts of `user_id`."""
    if not user_id:
        return set()
    return {a.id for a in accounts if a.owner_user_id == user_id and a.id}


def visible_account_ids(
    accounts: Iterable[Account],
    permissions: Iterable[AccountPermission],
    user_id: str,
) -> set[str]:
    """Owned accounts plus accounts granted to `user_id`."""
    if not user_id:
        return set()
    ids = owned_account_ids(accounts, user_id)
    ids.update(p.account_id for p in permissions if p.user_id == user_id and p.account_id)
    return ids


def permission_for(
    transaction: Transaction,
    accounts: Iterable[Account],
    permissions: Iterable[AccountPermission],
    user_id: str,
) -> Optional[PermissionType]:
    """
    Access `user_id` has to a transaction through a shared account.

    None when every account the transaction touches is owned by the user
    (or the user has no grant at all). Edit wins over view.
    """
    owned = owned_account_ids(accounts, user_id)
    grants = {
        p.account_id: p.permission_type
        for p in permissions
        if p.user_id == user_id
    }
    found = set()
    for account_id in (transaction.account_id_in, transaction.account_id_out):
        if not account_id or account_id in owned:
            continue
        if account_id in grants:
            found.add(grants[account_id])
    if PermissionType.EDIT in found:
        return PermissionType.EDIT
    if PermissionType.VIEW in found:
        return PermissionType.VIEW
    return None
