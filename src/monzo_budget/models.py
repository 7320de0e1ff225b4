import uuid
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# --- Transactions and accounts -------------------------------------------------

class Merchant(BaseModel):
    id: str | None = None
    name: str | None = None
    category: str | None = None


class Counterparty(BaseModel):
    name: str | None = None
    preferred_name: str | None = None
    account_number: str | None = None
    sort_code: str | None = None


class Transaction(BaseModel):
    id: str
    account_id: str
    amount: int  # minor units, negative for money out
    created: datetime
    category: str = ""
    description: str = ""
    merchant: Merchant | None = None
    counterparty: Counterparty | None = None
    include_in_spending: bool = True
    settled: str | None = None
    currency: str = "GBP"
    notes: str = ""

    @field_validator("merchant", mode="before")
    @classmethod
    def _expand_merchant_id(cls, value: Any) -> Any:
        # Unexpanded merchants arrive as a bare id
        if isinstance(value, str):
            return {"id": value} if value else None
        return value

    @field_validator("counterparty", mode="before")
    @classmethod
    def _empty_counterparty(cls, value: Any) -> Any:
        if isinstance(value, dict) and not value:
            return None
        return value

    @field_validator("created")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @property
    def is_settled(self) -> bool:
        return bool(self.settled)


class AccountType(str, Enum):
    RETAIL = "retail"
    JOINT = "joint"
    BUSINESS = "business"
    LOAN = "loan"
    FLEX = "flex"
    OTHER = "other"


_REMOTE_ACCOUNT_TYPES = {
    "uk_retail": AccountType.RETAIL,
    "uk_retail_joint": AccountType.JOINT,
    "uk_business": AccountType.BUSINESS,
    "uk_loan": AccountType.LOAN,
    "uk_monzo_flex": AccountType.FLEX,
}


class Owner(BaseModel):
    user_id: str
    preferred_name: str = ""


class Account(BaseModel):
    id: str
    type: AccountType = AccountType.OTHER
    description: str = ""
    owners: list[Owner] = Field(default_factory=list)
    closed: bool = False
    account_number: str | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _map_remote_type(cls, value: Any) -> Any:
        if isinstance(value, AccountType):
            return value
        if isinstance(value, str):
            if value in _REMOTE_ACCOUNT_TYPES:
                return _REMOTE_ACCOUNT_TYPES[value]
            try:
                return AccountType(value)
            except ValueError:
                return AccountType.OTHER
        return AccountType.OTHER


# --- Monthly cycle and periods -------------------------------------------------

class CycleType(str, Enum):
    SPECIFIC_DATE = "specific_date"
    LAST_WORKING_DAY = "last_working_day"
    CLOSEST_WORKDAY = "closest_workday"


class MonthlyCycleConfig(BaseModel):
    type: CycleType
    date: int | None = None


DEFAULT_MONTHLY_CYCLE = MonthlyCycleConfig(type=CycleType.SPECIFIC_DATE, date=1)


class UserPreferences(BaseModel):
    id: str = Field(default_factory=new_id)
    user_id: str = "default"
    monthly_cycle_type: CycleType = DEFAULT_MONTHLY_CYCLE.type
    monthly_cycle_date: int | None = DEFAULT_MONTHLY_CYCLE.date
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class DatePeriod(BaseModel):
    start_date: date
    end_date: date


class MonthlyPeriod(DatePeriod):
    display_name: str


# --- Budgets -------------------------------------------------------------------

class Budget(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    year: int
    description: str | None = None
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class BudgetCategory(BaseModel):
    id: str = Field(default_factory=new_id)
    budget_id: str
    name: str
    category: str
    allocated_amount: int = 0
    spent_amount: int = 0
    color: str = "#3B82F6"
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class CategoryMappingRule(BaseModel):
    budget_category: str
    source_categories: list[str] = Field(default_factory=list)
    merchant_patterns: list[str] = Field(default_factory=list)
    description_patterns: list[str] = Field(default_factory=list)


class SuggestedBudget(BaseModel):
    average: float = 0.0
    suggested: int = 0
    min: int = 0
    max: int = 0


class CategorySpend(BaseModel):
    amount: int = 0
    count: int = 0


class ChartNode(BaseModel):
    id: str
    name: str
    kind: Literal["account", "category"]


class ChartLink(BaseModel):
    source: str
    target: str
    value: int


class ChartData(BaseModel):
    nodes: list[ChartNode] = Field(default_factory=list)
    links: list[ChartLink] = Field(default_factory=list)


# --- Debts ---------------------------------------------------------------------

DebtStatus = Literal["active", "paid_off", "deferred"]
RuleType = Literal["exact", "fuzzy", "pattern", "account"]
RuleField = Literal["merchant_name", "counterparty_name", "description", "account_number"]
MatchStatus = Literal["pending", "confirmed", "rejected"]
MatchType = Literal["automatic", "manual"]
PaymentType = Literal["regular", "extra", "minimum", "final"]


class Debt(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    creditor: str
    original_amount: int
    current_balance: int
    status: DebtStatus = "active"
    priority: Literal["high", "medium", "low"] = "medium"
    interest_rate: float | None = None
    minimum_payment: int | None = None
    description: str | None = None
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class CreditorMatchingRule(BaseModel):
    id: str = Field(default_factory=new_id)
    debt_id: str
    type: RuleType
    field: RuleField
    value: str
    pattern: str | None = None
    confidence_threshold: float = Field(default=80, ge=0, le=100)
    enabled: bool = True
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class DebtTransactionMatch(BaseModel):
    id: str = Field(default_factory=new_id)
    transaction_id: str
    debt_id: str
    rule_id: str | None = None
    match_confidence: float
    match_status: MatchStatus = "pending"
    match_type: MatchType = "automatic"
    matched_field: str | None = None
    matched_value: str | None = None
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class DebtPaymentHistory(BaseModel):
    id: str = Field(default_factory=new_id)
    debt_id: str
    transaction_id: str | None = None
    amount: int
    payment_date: datetime
    principal_amount: int
    interest_amount: int
    balance_after: int
    payment_type: PaymentType = "regular"
    is_automatic: bool = False
    notes: str | None = None
    created: datetime = Field(default_factory=utc_now)


class DebtMatchResult(BaseModel):
    debt_id: str
    rule_id: str
    confidence: float
    matched_field: str
    matched_value: str
    transaction: Transaction


class DebtBalanceInfo(BaseModel):
    original_amount: int
    current_balance: int
    total_paid: int
    progress_percentage: float
    automatic_payments: int
    manual_payments: int
    last_payment_date: datetime | None = None
    is_fully_paid: bool


# --- Bills ---------------------------------------------------------------------

BillFrequency = Literal["weekly", "monthly", "quarterly", "yearly", "one_time"]
BillStatus = Literal["active", "paused", "cancelled"]
BillPaymentStatus = Literal["paid", "overdue", "scheduled"]


class Bill(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    payee: str
    amount: int  # minor units, positive
    frequency: BillFrequency = "monthly"
    due_day: int | None = Field(default=None, ge=1, le=31)
    next_due_date: date
    category: str = "bills"
    status: BillStatus = "active"
    autopay: bool = False
    remind_days: int | None = None
    description: str | None = None
    created: datetime = Field(default_factory=utc_now)
    updated: datetime = Field(default_factory=utc_now)


class BillPayment(BaseModel):
    id: str = Field(default_factory=new_id)
    bill_id: str
    amount: int
    payment_date: datetime
    due_date: date
    status: BillPaymentStatus = "paid"
    transaction_id: str | None = None
    late_fee: int | None = None
    notes: str | None = None
    created: datetime = Field(default_factory=utc_now)


# --- Sync ----------------------------------------------------------------------

class SyncPhase(str, Enum):
    EMPTY = "empty"
    BACKFILLING = "backfilling"
    REFRESHING = "refreshing"
    READY = "ready"
    FAILED = "failed"


class SyncProgress(BaseModel):
    is_in_progress: bool
    stage: str
    current: int = 0
    total: int = 0
    phase: SyncPhase = SyncPhase.EMPTY
    account_id: str | None = None


class APIMetrics(BaseModel):
    timestamp: datetime
    account_id: str | None = None
    operation: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_transactions: int = 0
    duration_ms: float = 0.0


class AccountSyncResult(BaseModel):
    account_id: str
    success: bool
    transactions: int = 0
    error: str | None = None
