from dataclasses import asdict
from typing import Annotated

from fastapi import APIRouter, Depends

from monzo_budget.api.dependencies import get_db, get_debt_processor
from monzo_budget.api.schemas import DebtRequest, ManualPaymentRequest, MatchRequest, RuleRequest
from monzo_budget.models import CreditorMatchingRule, Debt, DebtPaymentHistory, DebtTransactionMatch
from monzo_budget.services.debt_balance import calculate_debt_summary, load_debt_inputs, sync_debt_balances
from monzo_budget.services.debt_processing import DebtProcessor
from monzo_budget.storage.store import Database

router = APIRouter()


@router.get("/api/debts")
async def list_debts(
    db: Annotated[Database, Depends(get_db)],
) -> list[Debt]:
    return await db.debts.order_by("created").to_list()


@router.post("/api/debts")
async def create_debt(
    req: DebtRequest,
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
) -> dict:
    debt = Debt(
        **req.model_dump(exclude={"current_balance"}),
        current_balance=req.original_amount if req.current_balance is None else req.current_balance,
    )
    rules = await processor.add_debt(debt)
    return {"debt": debt.model_dump(mode="json"), "rules": len(rules)}


@router.delete("/api/debts/{debt_id}")
async def delete_debt(
    debt_id: str,
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
) -> dict[str, bool]:
    return {"deleted": await processor.delete_debt(debt_id)}


@router.post("/api/debts/rules")
async def add_rule(
    req: RuleRequest,
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
) -> CreditorMatchingRule:
    return await processor.add_rule(req.model_dump(exclude_none=True))


@router.post("/api/debts/{debt_id}/default-rules")
async def create_default_rules(
    debt_id: str,
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
) -> list[CreditorMatchingRule]:
    return await processor.create_default_rules(debt_id)


@router.post("/api/debts/{debt_id}/payments")
async def record_payment(
    debt_id: str,
    req: ManualPaymentRequest,
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
) -> DebtPaymentHistory:
    return await processor.record_manual_payment(debt_id, req.amount, req.payment_date, req.notes)


@router.post("/api/debts/match")
async def match_transactions(
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
    db: Annotated[Database, Depends(get_db)],
    req: MatchRequest | None = None,
) -> dict[str, int]:
    req = req or MatchRequest()
    if req.transaction_ids:
        transactions = await db.transactions.where("id").any_of(req.transaction_ids).to_list()
        return await processor.process_transactions(transactions)
    return await processor.process_latest_transactions(req.count)


@router.post("/api/debts/matches/{match_id}/confirm")
async def confirm_match(
    match_id: str,
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
) -> DebtTransactionMatch:
    return await processor.confirm_match(match_id)


@router.post("/api/debts/matches/{match_id}/reject")
async def reject_match(
    match_id: str,
    processor: Annotated[DebtProcessor, Depends(get_debt_processor)],
) -> DebtTransactionMatch:
    return await processor.reject_match(match_id)


@router.post("/api/debts/sync-balances")
async def sync_balances(
    db: Annotated[Database, Depends(get_db)],
) -> dict[str, int]:
    return await sync_debt_balances(db)


@router.get("/api/debts/summary")
async def debt_summary(
    db: Annotated[Database, Depends(get_db)],
) -> dict:
    debts, confirmed, transactions, history = await load_debt_inputs(db)
    return asdict(calculate_debt_summary(debts, confirmed, transactions, history))
