"""
Balance Ledger

Applies realized (actual) transactions to account balances and appends
one ACCOUNT_HISTORY snapshot per touched account. Plan transactions
never move a balance.

Delta rules:
- income:   +amount to ACCOUNT_ID_IN
- expense:  -amount from ACCOUNT_ID_OUT
- transfer: -amount from ACCOUNT_ID_OUT, +amount to ACCOUNT_ID_IN

`recalculate_all` rebuilds personal balances from zero by replaying every
non-deleted actual in (effective date, ID) order, which gives the same
result as registering them one by one.
"""

from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

import structlog
from pydantic import BaseModel, Field

from household_ledger.models.finance import (
    Account,
    AccountHistory,
    HistoryStatus,
    TableName,
    Transaction,
    TransactionType,
)
from household_ledger.session import SessionContext
from household_ledger.visibility import owned_account_ids


logger = structlog.get_logger(__name__)


def balance_deltas(transaction: Transaction, amount: Optional[Decimal] = None) -> dict[str, Decimal]:
    """
    Signed balance change per account caused by one actual transaction.

    Args:
        transaction: The transaction (plans and deleted rows yield nothing)
        amount: Amount to apply instead of the transaction's own

    Returns:
        Account ID -> delta
    """
    if not transaction.is_actual or transaction.deleted:
        return {}
    value = transaction.amount if amount is None else amount
    deltas: dict[str, Decimal] = defaultdict(Decimal)
    kind = transaction.transaction_type
    if kind in (TransactionType.INCOME, TransactionType.TRANSFER) and transaction.account_id_in:
        deltas[transaction.account_id_in] += value
    if kind in (TransactionType.EXPENSE, TransactionType.TRANSFER) and transaction.account_id_out:
        deltas[transaction.account_id_out] -= value
    return dict(deltas)


def _replay_key(transaction: Transaction) -> tuple[date, str]:
    return (transaction.effective_date or date.min, transaction.id)


def replay_balances(
    transactions: Iterable[Transaction],
    account_ids: Iterable[str],
) -> tuple[dict[str, Decimal], int]:
    """
    Balances of `account_ids` rebuilt from zero.

    Returns:
        (account ID -> balance, number of transactions replayed)
    """
    balances = {account_id: Decimal("0") for account_id in account_ids}
    ids = set(balances)
    replayed = sorted(
        (t for t in transactions if t.is_actual and not t.deleted and t.touches(ids)),
        key=_replay_key,
    )
    for transaction in replayed:
        for account_id, delta in balance_deltas(transaction).items():
            if account_id in balances:
                balances[account_id] += delta
    return balances, len(replayed)


class RecalculationResult(BaseModel):
    """Outcome of a from-scratch balance rebuild."""
    transaction_count: int = Field(..., ge=0, description="Actual transactions replayed")
    account_count: int = Field(..., ge=0, description="Personal accounts rewritten")
    balances: dict[str, Decimal] = Field(default_factory=dict)


class BalanceLedger:
    """Writes balance changes to ACCOUNT and ACCOUNT_HISTORY."""

    def __init__(self, session: SessionContext):
        self.session = session

    async def register(self, actual: Transaction) -> dict[str, Decimal]:
        """Apply a newly registered actual. Returns the new balances."""
        return await self._apply(actual.id, balance_deltas(actual), HistoryStatus.REGIST)

    async def update(self, actual: Transaction, previous: Transaction) -> dict[str, Decimal]:
        """
        Move balances from the effect of `previous` to the effect of `actual`.

        The old and new effects are netted per account, so an account on
        both sides gets one bump and one `update` history row, and an
        account whose net change is zero is left alone. Either side may be
        a plan, which contributes nothing.
        """
        net: dict[str, Decimal] = defaultdict(Decimal)
        for account_id, delta in balance_deltas(actual).items():
            net[account_id] += delta
        old = balance_deltas(previous.model_copy(update={"deleted": False}))
        for account_id, delta in old.items():
            net[account_id] -= delta
        deltas = {account_id: delta for account_id, delta in net.items() if delta != 0}
        return await self._apply(actual.id, deltas, HistoryStatus.UPDATE)

    async def delete(self, actual: Transaction) -> dict[str, Decimal]:
        """Reverse the effect `register` had."""
        deltas = {
            account_id: -delta
            for account_id, delta in balance_deltas(actual.model_copy(update={"deleted": False})).items()
        }
        return await self._apply(actual.id, deltas, HistoryStatus.DELETE)

    async def recalculate_all(self) -> RecalculationResult:
        """Rebuild the balances of the session user's personal accounts."""
        accounts_table = await self.session.load(TableName.ACCOUNT.value, fresh=True)
        accounts = accounts_table.records(Account)
        personal = owned_account_ids(accounts, self.session.user_id)
        if not personal:
            return RecalculationResult(transaction_count=0, account_count=0)

        transactions = await self.session.load_records(
            TableName.TRANSACTION.value, Transaction, fresh=True
        )
        balances, replayed = replay_balances(transactions, personal)

        user_id = self.session.user_id
        now = self.session.now()
        for account in accounts:
            if account.id in balances:
                accounts_table.upsert(
                    account.model_copy(update={"balance": balances[account.id]}).bumped(user_id, now)
                )
        await self.session.write(TableName.ACCOUNT.value, accounts_table)

        logger.info(
            "balances_recalculated",
            transaction_count=replayed,
            account_count=len(balances),
        )
        return RecalculationResult(
            transaction_count=replayed,
            account_count=len(balances),
            balances=balances,
        )

    async def _apply(
        self,
        transaction_id: str,
        deltas: dict[str, Decimal],
        status: HistoryStatus,
    ) -> dict[str, Decimal]:
        if not deltas:
            return {}

        accounts_table = await self.session.load(TableName.ACCOUNT.value, fresh=True)
        user_id = self.session.user_id
        now = self.session.now()

        touched: dict[str, Decimal] = {}
        for account in accounts_table.records(Account):
            if account.id not in deltas:
                continue
            updated = account.model_copy(
                update={"balance": account.balance + deltas[account.id]}
            ).bumped(user_id, now)
            accounts_table.upsert(updated)
            touched[account.id] = updated.balance

        missing = set(deltas) - set(touched)
        if missing:
            logger.warning(
                "balance_accounts_missing",
                transaction_id=transaction_id,
                account_ids=sorted(missing),
            )
        if not touched:
            return {}

        await self.session.write(TableName.ACCOUNT.value, accounts_table)

        history = await self.session.load(TableName.ACCOUNT_HISTORY.value, fresh=True)
        history.ensure_columns(AccountHistory.COLUMNS)
        for account_id in sorted(touched):
            history.append(AccountHistory(
                account_id=account_id,
                transaction_id=transaction_id,
                balance=touched[account_id],
                transaction_status=status,
            ).stamped_new(history.next_id(), user_id, now))
        await self.session.write(TableName.ACCOUNT_HISTORY.value, history)

        logger.info(
            "balances_applied",
            transaction_id=transaction_id,
            operation=status.value,
            account_count=len(touched),
        )
        return touched
