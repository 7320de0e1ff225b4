from datetime import date, datetime, timezone

import pytest

from monzo_budget.core.errors import InvalidConfigError, RecordNotFoundError
from monzo_budget.domain.periods import get_past_monthly_periods
from monzo_budget.models import Bill, BillPayment, CycleType, MonthlyCycleConfig
from monzo_budget.services import bills
from monzo_budget.services.bills import BillService
from monzo_budget.storage.store import Database

NOW = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


def _bill(name: str, due: date, amount: int = 1000, frequency: str = "monthly", status: str = "active") -> Bill:
    return Bill(name=name, payee=name, amount=amount, frequency=frequency, next_due_date=due, status=status)


@pytest.mark.parametrize(
    ("frequency", "from_date", "due_day", "expected"),
    [
        ("weekly", date(2024, 1, 10), None, date(2024, 1, 17)),
        ("monthly", date(2024, 1, 31), 31, date(2024, 2, 29)),
        ("monthly", date(2024, 2, 29), 31, date(2024, 3, 31)),
        ("monthly", date(2024, 1, 15), None, date(2024, 2, 15)),
        ("quarterly", date(2024, 1, 15), None, date(2024, 4, 15)),
        ("yearly", date(2024, 2, 29), None, date(2025, 2, 28)),
        ("one_time", date(2024, 5, 1), None, date(2024, 5, 1)),
    ],
)
def test_calculate_next_due_date(frequency: str, from_date: date, due_day: int | None, expected: date) -> None:
    assert bills.calculate_next_due_date(frequency, from_date, due_day) == expected


def test_first_due_date_keeps_due_day_still_ahead() -> None:
    assert bills.first_due_date("monthly", TODAY, 20) == date(2024, 3, 20)
    assert bills.first_due_date("monthly", TODAY, 10) == TODAY
    assert bills.first_due_date("monthly", TODAY, 5) == date(2024, 4, 5)
    assert bills.first_due_date("monthly", TODAY) == date(2024, 4, 10)
    assert bills.first_due_date("weekly", TODAY) == date(2024, 3, 17)


def test_upcoming_and_overdue_bills() -> None:
    schedule = [
        _bill("Water", date(2024, 4, 9)),
        _bill("Phone", date(2024, 3, 9)),
        _bill("Rent", TODAY),
        _bill("Insurance", date(2024, 4, 10)),
        _bill("Gym", date(2024, 3, 1), status="paused"),
    ]

    assert [bill.name for bill in bills.get_upcoming_bills(schedule, TODAY)] == ["Rent", "Water"]
    assert [bill.name for bill in bills.get_overdue_bills(schedule, TODAY)] == ["Phone"]


@pytest.mark.parametrize(
    ("due", "expected"),
    [(date(2024, 3, 9), "overdue"), (TODAY, "due_soon"), (date(2024, 3, 13), "due_soon"), (date(2024, 3, 14), "on_time")],
)
def test_bill_due_status(due: date, expected: str) -> None:
    assert bills.bill_due_status(_bill("Energy", due), TODAY) == expected


def test_total_monthly_bills_normalises_frequencies() -> None:
    schedule = [
        _bill("Cleaner", TODAY, 1000, "weekly"),
        _bill("Rent", TODAY, 2000, "monthly"),
        _bill("Water", TODAY, 3000, "quarterly"),
        _bill("TV licence", TODAY, 12000, "yearly"),
        _bill("Deposit", TODAY, 5000, "one_time"),
        _bill("Gym", TODAY, 9999, "monthly", status="paused"),
    ]

    assert bills.get_total_monthly_bills(schedule) == 4330 + 2000 + 1000 + 1000

    summary = bills.summarize_bills(schedule, TODAY)
    assert summary.active_count == 5
    assert summary.monthly_total == 8330
    assert summary.autopay_count == 0


def test_bill_payments_grouped_by_cycle_period() -> None:
    payday = MonthlyCycleConfig(type=CycleType.SPECIFIC_DATE, date=25)
    periods = get_past_monthly_periods(payday, 2, TODAY)

    def paid(day: date, amount: int, late_fee: int | None = None) -> BillPayment:
        at = datetime(day.year, day.month, day.day, 12, tzinfo=timezone.utc)
        return BillPayment(bill_id="bill_1", amount=amount, payment_date=at, due_date=day, late_fee=late_fee)

    payments = [
        paid(date(2024, 2, 24), 1000, late_fee=250),
        paid(date(2024, 2, 25), 2000),
        paid(date(2024, 3, 24), 3000),
        paid(date(2024, 3, 25), 4000),
    ]

    totals = bills.summarize_bill_payments_by_period(payments, periods)

    assert [(total.start_date, total.total, total.count) for total in totals] == [
        (date(2024, 1, 25), 1250, 1),
        (date(2024, 2, 25), 5000, 2),
    ]


@pytest.fixture
def service() -> BillService:
    return BillService(Database(), clock=lambda: NOW)


@pytest.mark.anyio
async def test_create_bill_schedules_first_due_date(service: BillService) -> None:
    monthly = await service.create_bill(name="Broadband", payee="BT", amount=3500)
    assert monthly.next_due_date == date(2024, 4, 10)
    assert monthly.due_day == 10

    on_the_20th = await service.create_bill(name="Council tax", payee="Council", amount=15000, due_day=20)
    assert on_the_20th.next_due_date == date(2024, 3, 20)

    explicit = await service.create_bill(
        name="Car tax", payee="DVLA", amount=19000, frequency="yearly", next_due_date=date(2024, 7, 1)
    )
    assert explicit.next_due_date == date(2024, 7, 1)
    assert explicit.due_day is None

    assert [bill.name for bill in await service.list_bills()] == ["Council tax", "Broadband", "Car tax"]


@pytest.mark.anyio
async def test_create_bill_rejects_non_positive_amount(service: BillService) -> None:
    with pytest.raises(InvalidConfigError):
        await service.create_bill(name="Nothing", payee="Nobody", amount=0)


@pytest.mark.anyio
async def test_paying_a_bill_advances_due_date(service: BillService) -> None:
    bill = await service.create_bill(name="Council tax", payee="Council", amount=15000, due_day=20)

    first = await service.pay_bill(bill.id, payment_date=datetime(2024, 3, 18, tzinfo=timezone.utc))
    assert first.amount == 15000
    assert first.due_date == date(2024, 3, 20)
    assert first.status == "paid"
    assert (await service.db.bills.get(bill.id)).next_due_date == date(2024, 4, 20)

    second = await service.pay_bill(
        bill.id, amount=14000, payment_date=datetime(2024, 4, 22, tzinfo=timezone.utc), late_fee=500
    )
    assert second.due_date == date(2024, 4, 20)
    assert (await service.db.bills.get(bill.id)).next_due_date == date(2024, 5, 20)

    history = await service.payments_for_bill(bill.id)
    assert [payment.id for payment in history] == [second.id, first.id]


@pytest.mark.anyio
async def test_one_time_bill_is_settled_by_payment(service: BillService) -> None:
    bill = await service.create_bill(
        name="Boiler repair", payee="Plumber", amount=25000, frequency="one_time", next_due_date=date(2024, 3, 15)
    )

    await service.pay_bill(bill.id)

    settled = await service.db.bills.get(bill.id)
    assert settled.status == "cancelled"
    assert settled.next_due_date == date(2024, 3, 15)
    with pytest.raises(InvalidConfigError):
        await service.pay_bill(bill.id)


@pytest.mark.anyio
async def test_paused_and_missing_bills_cannot_be_paid(service: BillService) -> None:
    bill = await service.create_bill(name="Gym", payee="PureGym", amount=2500)
    await service.set_status(bill.id, "paused")

    with pytest.raises(InvalidConfigError):
        await service.pay_bill(bill.id)
    with pytest.raises(RecordNotFoundError):
        await service.pay_bill("missing")
    with pytest.raises(RecordNotFoundError):
        await service.set_status("missing", "active")


@pytest.mark.anyio
async def test_delete_bill_removes_payments(service: BillService) -> None:
    bill = await service.create_bill(name="Water", payee="Thames Water", amount=4000)
    other = await service.create_bill(name="Energy", payee="Octopus", amount=9000)
    await service.pay_bill(bill.id)
    await service.pay_bill(other.id)

    assert await service.delete_bill(bill.id) is True

    assert await service.db.bills.count() == 1
    assert [payment.bill_id for payment in await service.db.bill_payments.to_list()] == [other.id]
    assert await service.delete_bill(bill.id) is False
