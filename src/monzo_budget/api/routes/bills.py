from dataclasses import asdict
from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from monzo_budget.api.dependencies import get_bill_service, get_preferences
from monzo_budget.api.schemas import BillPaymentRequest, BillRequest, BillStatusRequest
from monzo_budget.domain.periods import get_past_monthly_periods
from monzo_budget.models import Bill, BillPayment
from monzo_budget.services.bills import BillService, bill_due_status
from monzo_budget.services.preferences import PreferencesService

router = APIRouter()


@router.get("/api/bills")
async def list_bills(
    bills: Annotated[BillService, Depends(get_bill_service)],
) -> list[dict]:
    today = bills.today()
    return [
        {**bill.model_dump(mode="json"), "due_status": bill_due_status(bill, today)}
        for bill in await bills.list_bills()
    ]


@router.post("/api/bills")
async def create_bill(
    req: BillRequest,
    bills: Annotated[BillService, Depends(get_bill_service)],
) -> Bill:
    return await bills.create_bill(**req.model_dump())


@router.get("/api/bills/summary")
async def bill_summary(
    bills: Annotated[BillService, Depends(get_bill_service)],
) -> dict:
    return asdict(await bills.summary())


@router.get("/api/bills/payments-by-period")
async def bill_payments_by_period(
    bills: Annotated[BillService, Depends(get_bill_service)],
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
    count: Annotated[int, Query(ge=1, le=120)] = 12,
    reference_date: date | None = None,
) -> list[dict]:
    config = await preferences.get_monthly_cycle_config()
    periods = get_past_monthly_periods(config, count, reference_date)
    return [asdict(total) for total in await bills.payments_by_period(periods)]


@router.delete("/api/bills/{bill_id}")
async def delete_bill(
    bill_id: str,
    bills: Annotated[BillService, Depends(get_bill_service)],
) -> dict[str, bool]:
    return {"deleted": await bills.delete_bill(bill_id)}


@router.post("/api/bills/{bill_id}/status")
async def set_bill_status(
    bill_id: str,
    req: BillStatusRequest,
    bills: Annotated[BillService, Depends(get_bill_service)],
) -> Bill:
    return await bills.set_status(bill_id, req.status)


@router.post("/api/bills/{bill_id}/pay")
async def pay_bill(
    bill_id: str,
    req: BillPaymentRequest,
    bills: Annotated[BillService, Depends(get_bill_service)],
) -> BillPayment:
    return await bills.pay_bill(bill_id, **req.model_dump())


@router.get("/api/bills/{bill_id}/payments")
async def list_bill_payments(
    bill_id: str,
    bills: Annotated[BillService, Depends(get_bill_service)],
) -> list[BillPayment]:
    return await bills.payments_for_bill(bill_id)
