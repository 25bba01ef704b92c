"""
Core Data Models for Household Ledger

These models are the validated form of the rows held in the tabular
storage. Every table row passes through exactly one parse step
(`from_row`) on its way in and one formatting step (`to_row`) on its
way out, so the algorithms never handle raw cell strings.

Parsing rules at the boundary:
- Unparsable amounts and balances become zero
- Unparsable dates become None (the occurrence is skipped later)
- A missing or blank VERSION becomes "0"
- Unknown columns are carried through untouched

DESIGN DECISION: We use Pydantic v2 with column aliases so that the
table headers (ID, TRANDATE_FROM, ...) stay the storage contract while
the Python side reads naturally.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)


# =============================================================================
# ENUMS - Finite set of valid values
# =============================================================================

class TableName(str, Enum):
    """Tables served by the storage collaborator."""
    TRANSACTION = "TRANSACTION"
    ACCOUNT = "ACCOUNT"
    ACCOUNT_HISTORY = "ACCOUNT_HISTORY"
    ACCOUNT_PERMISSION = "ACCOUNT_PERMISSION"
    TRANSACTION_MANAGEMENT = "TRANSACTION_MANAGEMENT"
    TRANSACTION_MONTHLY = "TRANSACTION_MONTHLY"


class ProjectType(str, Enum):
    """Whether a transaction is a template or a realized movement."""
    PLAN = "plan"
    ACTUAL = "actual"


class TransactionType(str, Enum):
    """Direction of a money movement."""
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class Frequency(str, Enum):
    """
    Repetition rule of a plan.

    Rows may carry values outside this set; the occurrence calculator
    treats any unknown value like DAY.
    """
    DAY = "day"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"


class PlanStatus(str, Enum):
    """Lifecycle of a plan transaction."""
    PLANNING = "planning"
    COMPLETE = "complete"
    CANCELED = "canceled"


class HistoryStatus(str, Enum):
    """Operation recorded by an account history snapshot."""
    REGIST = "regist"
    UPDATE = "update"
    DELETE = "delete"


class PermissionType(str, Enum):
    """Access another user has been granted to an account."""
    VIEW = "view"
    EDIT = "edit"


# =============================================================================
# CELL PARSING / FORMATTING
# =============================================================================

def parse_decimal(value: Any) -> Decimal:
    """Parse a numeric cell, substituting zero for anything unparsable."""
    if isinstance(value, Decimal):
        return value if value.is_finite() else Decimal("0")
    if value is None or isinstance(value, bool):
        return Decimal("0")
    try:
        parsed = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        return Decimal("0")
    return parsed if parsed.is_finite() else Decimal("0")


def parse_date(value: Any) -> Optional[date]:
    """Parse a YYYY-MM-DD cell (time part ignored). Returns None on failure."""
    if isinstance(value, date):
        return value
    if not value:
        return None
    text = str(value).strip()[:10]
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None


def format_decimal(value: Decimal) -> str:
    """Format an amount without exponent or trailing zeros ("1500", "12.5")."""
    if value == value.to_integral_value():
        return str(int(value))
    return format(value.normalize(), "f")


def format_cell(value: Any) -> str:
    """Convert a model value back to its cell text."""
    if value is None:
        return ""
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, Decimal):
        return format_decimal(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, (set, frozenset, list, tuple)):
        return ",".join(format_cell(v) for v in sorted(value))
    return str(value)


# =============================================================================
# BASE RECORD
# =============================================================================

AUDIT_COLUMNS = (
    "ID",
    "VERSION",
    "REGIST_DATETIME",
    "REGIST_USER",
    "UPDATE_DATETIME",
    "UPDATE_USER",
)


class TableRecord(BaseModel):
    """
    One row of a table.

    Carries the identity, version and audit columns shared by every
    table. Subclasses declare COLUMNS, the header order used when a
    table is created from scratch.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        extra="allow",
        str_strip_whitespace=True,
    )

    COLUMNS: ClassVar[tuple[str, ...]] = AUDIT_COLUMNS

    id: str = Field(default="", alias="ID")
    version: str = Field(default="0", alias="VERSION")
    regist_datetime: str = Field(default="", alias="REGIST_DATETIME")
    regist_user: str = Field(default="", alias="REGIST_USER")
    update_datetime: str = Field(default="", alias="UPDATE_DATETIME")
    update_user: str = Field(default="", alias="UPDATE_USER")

    @field_validator('version', mode='before')
    @classmethod
    def default_version(cls, v: Any) -> str:
        """A missing or blank version is version "0"."""
        if v is None:
            return "0"
        text = str(v).strip()
        return text or "0"

    @property
    def version_number(self) -> int:
        try:
            return int(self.version)
        except ValueError:
            return 0

    @classmethod
    def from_row(cls, row: dict[str, str]):
        """Parse a raw table row. Raises pydantic.ValidationError if unusable."""
        return cls.model_validate(row)

    def to_row(self) -> dict[str, str]:
        """Format this record as a raw table row keyed by column name."""
        return {
            key: format_cell(value)
            for key, value in self.model_dump(by_alias=True).items()
        }

    def stamped_new(self, record_id: str, user_id: str, now: str):
        """Copy with identity and audit columns set for a first insert."""
        return self.model_copy(update={
            "id": record_id,
            "version": "0",
            "regist_datetime": now,
            "regist_user": user_id,
            "update_datetime": now,
            "update_user": user_id,
        })

    def bumped(self, user_id: str, now: str):
        """Copy with the version incremented by exactly one and the updater stamped."""
        return self.model_copy(update={
            "version": str(self.version_number + 1),
            "update_datetime": now,
            "update_user": user_id,
        })


# =============================================================================
# TRANSACTIONS
# =============================================================================

class Transaction(TableRecord):
    """
    A plan (template) or actual (realized) money movement.

    For a plan, [date_from, date_to] is the occurrence window.
    For an actual, date_to is the realized date (date_from as fallback).
    """

    COLUMNS: ClassVar[tuple[str, ...]] = AUDIT_COLUMNS + (
        "TRANSACTION_TYPE",
        "PROJECT_TYPE",
        "CATEGORY_ID",
        "NAME",
        "TRANDATE_FROM",
        "TRANDATE_TO",
        "FREQUENCY",
        "INTERVAL",
        "CYCLE_UNIT",
        "AMOUNT",
        "MEMO",
        "ACCOUNT_ID_IN",
        "ACCOUNT_ID_OUT",
        "COMPLETED_PLANDATE",
        "PLAN_STATUS",
        "DLT_FLG",
    )

    transaction_type: TransactionType = Field(..., alias="TRANSACTION_TYPE")
    project_type: ProjectType = Field(..., alias="PROJECT_TYPE")
    category_id: str = Field(default="", alias="CATEGORY_ID")
    name: str = Field(default="", alias="NAME")
    date_from: Optional[date] = Field(default=None, alias="TRANDATE_FROM")
    date_to: Optional[date] = Field(default=None, alias="TRANDATE_TO")
    frequency: str = Field(default=Frequency.DAY.value, alias="FREQUENCY")
    interval: int = Field(default=1, ge=0, alias="INTERVAL")
    cycle_unit: str = Field(default="", alias="CYCLE_UNIT")
    amount: Decimal = Field(default=Decimal("0"), alias="AMOUNT")
    memo: str = Field(default="", alias="MEMO")
    account_id_in: str = Field(default="", alias="ACCOUNT_ID_IN")
    account_id_out: str = Field(default="", alias="ACCOUNT_ID_OUT")
    completed_plan_dates: frozenset[date] = Field(
        default_factory=frozenset,
        alias="COMPLETED_PLANDATE",
        description="Occurrences reconciled without a linked actual"
    )
    plan_status: PlanStatus = Field(default=PlanStatus.PLANNING, alias="PLAN_STATUS")
    deleted: bool = Field(default=False, alias="DLT_FLG")

    @field_validator('transaction_type', 'project_type', mode='before')
    @classmethod
    def normalize_enum_text(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('plan_status', mode='before')
    @classmethod
    def default_plan_status(cls, v: Any) -> Any:
        if v is None:
            return PlanStatus.PLANNING
        if isinstance(v, str):
            return v.strip().lower() or PlanStatus.PLANNING
        return v

    @field_validator('frequency', mode='before')
    @classmethod
    def normalize_frequency(cls, v: Any) -> str:
        if isinstance(v, Enum):
            return v.value
        text = str(v or "").strip().lower()
        return text or Frequency.DAY.value

    @field_validator('interval', mode='before')
    @classmethod
    def parse_interval(cls, v: Any) -> int:
        """Blank or unparsable means 1; negative steps are treated as 0."""
        if isinstance(v, int) and not isinstance(v, bool):
            return max(0, v)
        try:
            return max(0, int(str(v).strip()))
        except (TypeError, ValueError):
            return 1

    @field_validator('amount', mode='before')
    @classmethod
    def parse_amount(cls, v: Any) -> Decimal:
        return parse_decimal(v)

    @field_validator('date_from', 'date_to', mode='before')
    @classmethod
    def parse_dates(cls, v: Any) -> Optional[date]:
        return parse_date(v)

    @field_validator('completed_plan_dates', mode='before')
    @classmethod
    def parse_completed_dates(cls, v: Any) -> frozenset[date]:
        """Comma-separated dates; malformed entries are dropped."""
        if isinstance(v, (set, frozenset, list, tuple)):
            parts = list(v)
        else:
            parts = str(v or "").split(",")
        dates = (parse_date(p) for p in parts)
        return frozenset(d for d in dates if d is not None)

    @field_validator('deleted', mode='before')
    @classmethod
    def parse_deleted_flag(cls, v: Any) -> bool:
        if isinstance(v, bool):
            return v
        return str(v or "0").strip().lower() in ("1", "true")

    @property
    def is_plan(self) -> bool:
        return self.project_type == ProjectType.PLAN

    @property
    def is_actual(self) -> bool:
        return self.project_type == ProjectType.ACTUAL

    @property
    def effective_date(self) -> Optional[date]:
        """Date an actual is booked on: date_to, else date_from."""
        return self.date_to or self.date_from

    def touches(self, account_ids: set[str]) -> bool:
        """True if either side of the movement is one of the given accounts."""
        return bool(
            (self.account_id_in and self.account_id_in in account_ids)
            or (self.account_id_out and self.account_id_out in account_ids)
        )


# =============================================================================
# ACCOUNTS
# =============================================================================

class Account(TableRecord):
    """An account with its signed running balance."""

    COLUMNS: ClassVar[tuple[str, ...]] = AUDIT_COLUMNS + (
        "USER_ID",
        "ACCOUNT_NAME",
        "COLOR",
        "ICON_PATH",
        "BALANCE",
        "SORT_ORDER",
    )

    owner_user_id: str = Field(default="", alias="USER_ID")
    account_name: str = Field(default="", alias="ACCOUNT_NAME")
    balance: Decimal = Field(default=Decimal("0"), alias="BALANCE")
    sort_order: str = Field(default="", alias="SORT_ORDER")

    @field_validator('balance', mode='before')
    @classmethod
    def parse_balance(cls, v: Any) -> Decimal:
        return parse_decimal(v)


class AccountHistory(TableRecord):
    """
    Balance snapshot taken after a realized transaction touched an account.

    Append-only: rows are never updated or removed.
    """

    COLUMNS: ClassVar[tuple[str, ...]] = AUDIT_COLUMNS + (
        "ACCOUNT_ID",
        "TRANSACTION_ID",
        "BALANCE",
        "TRANSACTION_STATUS",
    )

    account_id: str = Field(..., alias="ACCOUNT_ID")
    transaction_id: str = Field(default="", alias="TRANSACTION_ID")
    balance: Decimal = Field(default=Decimal("0"), alias="BALANCE")
    transaction_status: HistoryStatus = Field(..., alias="TRANSACTION_STATUS")

    @field_validator('balance', mode='before')
    @classmethod
    def parse_balance(cls, v: Any) -> Decimal:
        return parse_decimal(v)


class AccountPermission(TableRecord):
    """Grants another user view or edit access to an account."""

    COLUMNS: ClassVar[tuple[str, ...]] = AUDIT_COLUMNS + (
        "ACCOUNT_ID",
        "USER_ID",
        "PERMISSION_TYPE",
    )

    account_id: str = Field(..., alias="ACCOUNT_ID")
    user_id: str = Field(..., alias="USER_ID")
    permission_type: PermissionType = Field(default=PermissionType.VIEW, alias="PERMISSION_TYPE")

    @field_validator('permission_type', mode='before')
    @classmethod
    def normalize_permission(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip().lower() or PermissionType.VIEW
        return v


# =============================================================================
# PLAN-ACTUAL LINKS
# =============================================================================

class PlanActualLink(TableRecord):
    """Says that an actual transaction satisfies one occurrence of a plan."""

    COLUMNS: ClassVar[tuple[str, ...]] = AUDIT_COLUMNS + (
        "TRAN_PLAN_ID",
        "TRAN_ACTUAL_ID",
    )

    plan_transaction_id: str = Field(..., alias="TRAN_PLAN_ID")
    actual_transaction_id: str = Field(..., alias="TRAN_ACTUAL_ID")


# =============================================================================
# MONTHLY AGGREGATES
# =============================================================================

class MonthlyAggregate(TableRecord):
    """
    Income/expense totals of one account for one month.

    Rows are rebuilt wholesale per account; they are never patched.
    carryover is the running balance of the (account, project type)
    group: 0 for its first month, cumulative from then on.
    """

    COLUMNS: ClassVar[tuple[str, ...]] = AUDIT_COLUMNS + (
        "ACCOUNT_ID",
        "PROJECT_TYPE",
        "YEAR",
        "MONTH",
        "INCOME_TOTAL",
        "EXPENSE_TOTAL",
        "BALANCE_TOTAL",
        "CARRYOVER",
    )

    account_id: str = Field(..., alias="ACCOUNT_ID")
    project_type: ProjectType = Field(..., alias="PROJECT_TYPE")
    year: int = Field(..., ge=1, le=9999, alias="YEAR")
    month: int = Field(..., ge=1, le=12, alias="MONTH")
    income_total: Decimal = Field(default=Decimal("0"), alias="INCOME_TOTAL")
    expense_total: Decimal = Field(default=Decimal("0"), alias="EXPENSE_TOTAL")
    balance_total: Decimal = Field(default=Decimal("0"), alias="BALANCE_TOTAL")
    carryover: Decimal = Field(default=Decimal("0"), alias="CARRYOVER")

    @field_validator('project_type', mode='before')
    @classmethod
    def normalize_project_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator('income_total', 'expense_total', 'balance_total', 'carryover', mode='before')
    @classmethod
    def parse_totals(cls, v: Any) -> Decimal:
        return parse_decimal(v)

    @property
    def bucket(self) -> tuple[str, str, int, int]:
        return (self.account_id, self.project_type.value, self.year, self.month)

    def to_row(self) -> dict[str, str]:
        row = super().to_row()
        row["MONTH"] = f"{self.month:02d}"
        return row
