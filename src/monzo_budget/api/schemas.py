from datetime import date, datetime
from typing import Literal

from pydantic import BaseModel, Field

from monzo_budget.models import BillFrequency, BillStatus


class TokenRequest(BaseModel):
    token: str | None = None
    issued_at: datetime | None = None


class RefreshAllRequest(BaseModel):
    account_ids: list[str] | None = None


class MatchRequest(BaseModel):
    count: int = Field(default=50, ge=1)
    transaction_ids: list[str] | None = None


class ManualPaymentRequest(BaseModel):
    amount: int = Field(gt=0)
    payment_date: datetime | None = None
    notes: str | None = None


class DebtRequest(BaseModel):
    name: str = Field(min_length=1)
    creditor: str
    original_amount: int = Field(gt=0)
    current_balance: int | None = Field(default=None, ge=0)
    priority: Literal["high", "medium", "low"] = "medium"
    interest_rate: float | None = Field(default=None, ge=0)
    minimum_payment: int | None = Field(default=None, ge=0)
    description: str | None = None


class RuleRequest(BaseModel):
    # Type, field and value are checked by validate_matching_rule for readable errors
    debt_id: str = ""
    type: str = ""
    field: str = ""
    value: str = ""
    pattern: str | None = None
    confidence_threshold: float | None = Field(default=None, ge=0, le=100, strict=True)
    enabled: bool = Field(default=True, strict=True)


class BillRequest(BaseModel):
    name: str = Field(min_length=1)
    payee: str = Field(min_length=1)
    amount: int = Field(gt=0)
    frequency: BillFrequency = "monthly"
    due_day: int | None = Field(default=None, ge=1, le=31)
    next_due_date: date | None = None
    category: str = "bills"
    autopay: bool = False
    remind_days: int | None = Field(default=None, ge=0)
    description: str | None = None


class BillPaymentRequest(BaseModel):
    amount: int | None = Field(default=None, gt=0)
    payment_date: datetime | None = None
    transaction_id: str | None = None
    late_fee: int | None = Field(default=None, ge=0)
    notes: str | None = None


class BillStatusRequest(BaseModel):
    status: BillStatus
