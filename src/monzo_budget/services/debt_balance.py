"""Debt balance reconciliation.

A debt's balance is its original amount minus every confirmed matched payment
and every payment history entry that is not already represented by one of
those matches, so the same payment is never counted from both sources.
"""
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime

from monzo_budget.logger import get_logger
from monzo_budget.models import (
    Debt,
    DebtBalanceInfo,
    DebtPaymentHistory,
    DebtTransactionMatch,
    Transaction,
    utc_now,
)
from monzo_budget.storage.store import Database

logger = get_logger(__name__)

BALANCE_TOLERANCE = 1
DAYS_PER_MONTH = 30.44


@dataclass(frozen=True)
class DebtSummary:
    total_original_debt: int
    total_current_debt: int
    total_paid: int
    total_automatic_payments: int
    total_manual_payments: int
    active_debts: int
    paid_off_debts: int
    overall_progress_percentage: float


@dataclass(frozen=True)
class PaymentVelocity:
    average_monthly_payment: float
    payment_frequency: float
    # None when no payments have been made yet
    estimated_payoff_months: float | None


def _confirmed_for(debt: Debt, matches: Iterable[DebtTransactionMatch]) -> list[DebtTransactionMatch]:
    return [match for match in matches if match.debt_id == debt.id and match.match_status == "confirmed"]


def _index(transactions: Iterable[Transaction]) -> dict[str, Transaction]:
    return {tx.id: tx for tx in transactions}


def _unmatched_history(
    debt: Debt,
    confirmed: list[DebtTransactionMatch],
    payment_history: Iterable[DebtPaymentHistory],
) -> list[DebtPaymentHistory]:
    matched_ids = {match.transaction_id for match in confirmed}
    return [
        payment for payment in payment_history
        if payment.debt_id == debt.id
        and (payment.transaction_id is None or payment.transaction_id not in matched_ids)
    ]


def calculate_actual_debt_balance(
    debt: Debt,
    confirmed_matches: Iterable[DebtTransactionMatch],
    transactions: Iterable[Transaction] | Mapping[str, Transaction],
    payment_history: Iterable[DebtPaymentHistory],
) -> DebtBalanceInfo:
    confirmed = _confirmed_for(debt, confirmed_matches)
    by_id = transactions if isinstance(transactions, Mapping) else _index(transactions)

    total_paid = 0
    automatic = 0
    manual = 0
    last_payment: datetime | None = None

    for match in confirmed:
        transaction = by_id.get(match.transaction_id)
        if transaction is None or transaction.amount >= 0:
            continue
        payment = abs(transaction.amount)
        total_paid += payment
        automatic += payment
        if last_payment is None or transaction.created > last_payment:
            last_payment = transaction.created

    for entry in _unmatched_history(debt, confirmed, payment_history):
        total_paid += entry.amount
        if entry.is_automatic:
            automatic += entry.amount
        else:
            manual += entry.amount
        if last_payment is None or entry.payment_date > last_payment:
            last_payment = entry.payment_date

    current_balance = max(0, debt.original_amount - total_paid)
    progress = total_paid / debt.original_amount * 100 if debt.original_amount > 0 else 0.0

    return DebtBalanceInfo(
        original_amount=debt.original_amount,
        current_balance=current_balance,
        total_paid=total_paid,
        progress_percentage=min(100.0, progress),
        automatic_payments=automatic,
        manual_payments=manual,
        last_payment_date=last_payment,
        is_fully_paid=current_balance == 0,
    )


def calculate_multiple_debt_balances(
    debts: Iterable[Debt],
    confirmed_matches: Iterable[DebtTransactionMatch],
    transactions: Iterable[Transaction],
    payment_history: Iterable[DebtPaymentHistory],
) -> dict[str, DebtBalanceInfo]:
    matches = list(confirmed_matches)
    history = list(payment_history)
    by_id = _index(transactions)
    return {
        debt.id: calculate_actual_debt_balance(debt, matches, by_id, history)
        for debt in debts
    }


def calculate_debt_summary(
    debts: Iterable[Debt],
    confirmed_matches: Iterable[DebtTransactionMatch],
    transactions: Iterable[Transaction],
    payment_history: Iterable[DebtPaymentHistory],
) -> DebtSummary:
    debts = list(debts)
    balances = calculate_multiple_debt_balances(debts, confirmed_matches, transactions, payment_history)

    infos = [balances[debt.id] for debt in debts]
    total_original = sum(info.original_amount for info in infos)
    total_paid = sum(info.total_paid for info in infos)
    paid_off = sum(1 for info in infos if info.is_fully_paid)
    progress = total_paid / total_original * 100 if total_original > 0 else 0.0

    return DebtSummary(
        total_original_debt=total_original,
        total_current_debt=sum(info.current_balance for info in infos),
        total_paid=total_paid,
        total_automatic_payments=sum(info.automatic_payments for info in infos),
        total_manual_payments=sum(info.manual_payments for info in infos),
        active_debts=len(infos) - paid_off,
        paid_off_debts=paid_off,
        overall_progress_percentage=min(100.0, progress),
    )


def _expected_status(debt: Debt, info: DebtBalanceInfo) -> str:
    if info.is_fully_paid:
        return "paid_off"
    if debt.status == "deferred":
        return "deferred"
    return "active"


def should_update_debt_balance(debt: Debt, info: DebtBalanceInfo) -> bool:
    if abs(debt.current_balance - info.current_balance) > BALANCE_TOLERANCE:
        return True
    return debt.status != _expected_status(debt, info)


def find_potential_payments(
    debt: Debt,
    transactions: Iterable[Transaction],
    existing_matches: Iterable[DebtTransactionMatch],
) -> list[Transaction]:
    """Unmatched outgoing transactions whose names loosely mention the creditor."""
    creditor = debt.creditor.strip().lower()
    if not creditor:
        return []
    matched_ids = {match.transaction_id for match in existing_matches if match.debt_id == debt.id}

    candidates = []
    for tx in transactions:
        if tx.amount >= 0 or tx.id in matched_ids:
            continue
        description = tx.description.lower()
        merchant = (tx.merchant.name if tx.merchant and tx.merchant.name else "").lower()
        counterparty = (tx.counterparty.name if tx.counterparty and tx.counterparty.name else "").lower()
        if (
            creditor in description
            or (merchant and (creditor in merchant or merchant in creditor))
            or (counterparty and (creditor in counterparty or counterparty in creditor))
        ):
            candidates.append(tx)
    return candidates


def calculate_payment_velocity(
    debt: Debt,
    confirmed_matches: Iterable[DebtTransactionMatch],
    transactions: Iterable[Transaction],
    payment_history: Iterable[DebtPaymentHistory],
) -> PaymentVelocity:
    matches = list(confirmed_matches)
    history = list(payment_history)
    by_id = _index(transactions)
    info = calculate_actual_debt_balance(debt, matches, by_id, history)

    confirmed = _confirmed_for(debt, matches)
    dates = [by_id[match.transaction_id].created for match in confirmed if match.transaction_id in by_id]
    dates.extend(entry.payment_date for entry in _unmatched_history(debt, confirmed, history))
    if not dates:
        return PaymentVelocity(average_monthly_payment=0.0, payment_frequency=0.0, estimated_payoff_months=None)

    span_days = (max(dates) - min(dates)).total_seconds() / 86400
    months = max(1.0, span_days / DAYS_PER_MONTH)
    average = info.total_paid / months
    return PaymentVelocity(
        average_monthly_payment=average,
        payment_frequency=len(dates) / months,
        estimated_payoff_months=info.current_balance / average if average > 0 else None,
    )


async def load_debt_inputs(
    db: Database,
) -> tuple[list[Debt], list[DebtTransactionMatch], list[Transaction], list[DebtPaymentHistory]]:
    debts = await db.debts.to_list()
    confirmed = await db.debt_transaction_matches.where("match_status").equals("confirmed").to_list()
    transaction_ids = {match.transaction_id for match in confirmed}
    transactions = await db.transactions.where("id").any_of(transaction_ids).to_list()
    history = await db.debt_payment_history.to_list()
    return debts, confirmed, transactions, history


async def sync_debt_balances(db: Database) -> dict[str, int]:
    """Write recomputed balances back to stored debts that have drifted."""
    debts, confirmed, transactions, history = await load_debt_inputs(db)
    balances = calculate_multiple_debt_balances(debts, confirmed, transactions, history)

    updated = 0
    unchanged = 0
    for debt in debts:
        info = balances[debt.id]
        if not should_update_debt_balance(debt, info):
            unchanged += 1
            continue
        await db.debts.update(
            debt.id,
            current_balance=info.current_balance,
            status=_expected_status(debt, info),
            updated=utc_now(),
        )
        updated += 1
        logger.info(
            "[DEBT] %s balance %s -> %s",
            debt.name,
            debt.current_balance,
            info.current_balance,
        )

    logger.info("[DEBT] Balance sync complete: %s updated, %s unchanged.", updated, unchanged)
    return {"updated": updated, "unchanged": unchanged}
