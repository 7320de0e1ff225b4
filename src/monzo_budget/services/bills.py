"""Recurring bills: due-date scheduling, upcoming and overdue lists, payments.

Each payment covers the bill's current due date and moves it forward by one
frequency step. Totals are expressed as a monthly equivalent so weekly and
yearly bills can be set against a monthly budget.
"""
import calendar
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Literal

from dateutil.relativedelta import relativedelta

from monzo_budget.core.errors import InvalidConfigError
from monzo_budget.logger import get_logger
from monzo_budget.models import (
    Bill,
    BillFrequency,
    BillPayment,
    BillStatus,
    DatePeriod,
    MonthlyPeriod,
    utc_now,
)
from monzo_budget.storage.store import Database

logger = get_logger(__name__)

UPCOMING_WINDOW_DAYS = 30
DUE_SOON_DAYS = 3
WEEKS_PER_MONTH = 4.33

MONTHLY_FACTORS: dict[str, float] = {
    "weekly": WEEKS_PER_MONTH,
    "monthly": 1.0,
    "quarterly": 1 / 3,
    "yearly": 1 / 12,
    "one_time": 0.0,
}

DueStatus = Literal["overdue", "due_soon", "on_time"]


@dataclass(frozen=True)
class BillSummary:
    upcoming: list[Bill]
    overdue: list[Bill]
    monthly_total: int
    active_count: int
    autopay_count: int


@dataclass(frozen=True)
class BillPeriodTotal:
    start_date: date
    end_date: date
    display_name: str
    total: int
    count: int


def _on_day(month: date, due_day: int) -> date:
    days_in_month = calendar.monthrange(month.year, month.month)[1]
    return month.replace(day=min(due_day, days_in_month))


def calculate_next_due_date(frequency: BillFrequency, from_date: date, due_day: int | None = None) -> date:
    """Step ``from_date`` forward by one ``frequency``; monthly bills land on ``due_day``."""
    if frequency == "weekly":
        return from_date + timedelta(weeks=1)
    if frequency == "monthly":
        next_month = from_date + relativedelta(months=1)
        return _on_day(next_month, due_day) if due_day else next_month
    if frequency == "quarterly":
        return from_date + relativedelta(months=3)
    if frequency == "yearly":
        return from_date + relativedelta(years=1)
    return from_date


def first_due_date(frequency: BillFrequency, today: date, due_day: int | None = None) -> date:
    # A monthly due day still ahead this month is not pushed to next month
    if frequency == "monthly" and due_day:
        this_month = _on_day(today, due_day)
        if this_month >= today:
            return this_month
    return calculate_next_due_date(frequency, today, due_day)


def days_until_due(bill: Bill, today: date) -> int:
    return (bill.next_due_date - today).days


def bill_due_status(bill: Bill, today: date) -> DueStatus:
    days = days_until_due(bill, today)
    if days < 0:
        return "overdue"
    if days <= DUE_SOON_DAYS:
        return "due_soon"
    return "on_time"


def get_upcoming_bills(bills: Iterable[Bill], today: date, days: int = UPCOMING_WINDOW_DAYS) -> list[Bill]:
    horizon = today + timedelta(days=days)
    upcoming = [
        bill for bill in bills
        if bill.status == "active" and today <= bill.next_due_date <= horizon
    ]
    return sorted(upcoming, key=lambda bill: (bill.next_due_date, bill.name))


def get_overdue_bills(bills: Iterable[Bill], today: date) -> list[Bill]:
    overdue = [bill for bill in bills if bill.status == "active" and bill.next_due_date < today]
    return sorted(overdue, key=lambda bill: (bill.next_due_date, bill.name))


def monthly_equivalent(bill: Bill) -> float:
    return bill.amount * MONTHLY_FACTORS.get(bill.frequency, 0.0)


def get_total_monthly_bills(bills: Iterable[Bill]) -> int:
    return round(sum(monthly_equivalent(bill) for bill in bills if bill.status == "active"))


def summarize_bills(bills: Iterable[Bill], today: date) -> BillSummary:
    bills = list(bills)
    active = [bill for bill in bills if bill.status == "active"]
    return BillSummary(
        upcoming=get_upcoming_bills(active, today),
        overdue=get_overdue_bills(active, today),
        monthly_total=get_total_monthly_bills(active),
        active_count=len(active),
        autopay_count=sum(1 for bill in active if bill.autopay),
    )


def get_bill_payments_in_period(payments: Iterable[BillPayment], period: DatePeriod) -> list[BillPayment]:
    return [
        payment for payment in payments
        if period.start_date <= payment.payment_date.date() <= period.end_date
    ]


def summarize_bill_payments_by_period(
    payments: Iterable[BillPayment],
    periods: Iterable[MonthlyPeriod],
) -> list[BillPeriodTotal]:
    payments = list(payments)
    totals = []
    for period in periods:
        in_period = get_bill_payments_in_period(payments, period)
        totals.append(BillPeriodTotal(
            start_date=period.start_date,
            end_date=period.end_date,
            display_name=period.display_name,
            total=sum(payment.amount + (payment.late_fee or 0) for payment in in_period),
            count=len(in_period),
        ))
    return totals


class BillService:
    """Stores bills and their payments and keeps due dates moving."""

    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now) -> None:
        self.db = db
        self.clock = clock

    def today(self) -> date:
        return self.clock().date()

    async def list_bills(self) -> list[Bill]:
        return await self.db.bills.order_by("next_due_date").to_list()

    async def create_bill(
        self,
        *,
        name: str,
        payee: str,
        amount: int,
        frequency: BillFrequency = "monthly",
        due_day: int | None = None,
        next_due_date: date | None = None,
        **details: Any,
    ) -> Bill:
        if amount <= 0:
            raise InvalidConfigError("Bill amount must be positive")
        if next_due_date is None:
            next_due_date = first_due_date(frequency, self.today(), due_day)
        if frequency == "monthly" and due_day is None:
            due_day = next_due_date.day

        bill = Bill(
            name=name,
            payee=payee,
            amount=amount,
            frequency=frequency,
            due_day=due_day,
            next_due_date=next_due_date,
            **details,
        )
        await self.db.bills.add(bill)
        logger.info("[BILL] Added %s bill '%s' due %s", frequency, name, next_due_date)
        return bill

    async def set_status(self, bill_id: str, status: BillStatus) -> Bill:
        return await self.db.bills.update(bill_id, status=status, updated=utc_now())

    async def pay_bill(
        self,
        bill_id: str,
        amount: int | None = None,
        payment_date: datetime | None = None,
        transaction_id: str | None = None,
        notes: str | None = None,
        late_fee: int | None = None,
    ) -> BillPayment:
        bill = await self.db.bills.require(bill_id)
        if bill.status != "active":
            raise InvalidConfigError(f"Bill '{bill.name}' is {bill.status} and cannot be paid")
        paid_at = payment_date or self.clock()
        payment = BillPayment(
            bill_id=bill.id,
            amount=amount or bill.amount,
            payment_date=paid_at,
            due_date=bill.next_due_date,
            transaction_id=transaction_id,
            notes=notes,
            late_fee=late_fee,
        )
        await self.db.bill_payments.add(payment)

        if paid_at.date() > bill.next_due_date:
            logger.warning("[BILL] '%s' paid late (due %s)", bill.name, bill.next_due_date)
        if bill.frequency == "one_time":
            await self.db.bills.update(bill.id, status="cancelled", updated=utc_now())
            logger.info("[BILL] One-time bill '%s' settled", bill.name)
        else:
            next_due = calculate_next_due_date(bill.frequency, bill.next_due_date, bill.due_day)
            await self.db.bills.update(bill.id, next_due_date=next_due, updated=utc_now())
            logger.info("[BILL] '%s' paid; next due %s", bill.name, next_due)
        return payment

    async def delete_bill(self, bill_id: str) -> bool:
        payments = await self.db.bill_payments.where("bill_id").equals(bill_id).delete()
        deleted = await self.db.bills.delete(bill_id)
        logger.info("[BILL] Deleted bill %s (%s payments)", bill_id, payments)
        return deleted

    async def payments_for_bill(self, bill_id: str) -> list[BillPayment]:
        await self.db.bills.require(bill_id)
        return await (
            self.db.bill_payments.where("bill_id")
            .equals(bill_id)
            .sort_by("payment_date")
            .reverse()
            .to_list()
        )

    async def summary(self) -> BillSummary:
        return summarize_bills(await self.db.bills.to_list(), self.today())

    async def payments_by_period(self, periods: Iterable[MonthlyPeriod]) -> list[BillPeriodTotal]:
        return summarize_bill_payments_by_period(await self.db.bill_payments.to_list(), periods)
