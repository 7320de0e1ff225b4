from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from monzo_budget.core.errors import InvalidConfigError
from monzo_budget.logger import get_logger
from monzo_budget.models import (
    CreditorMatchingRule,
    Debt,
    DebtPaymentHistory,
    DebtTransactionMatch,
    Transaction,
    utc_now,
)
from monzo_budget.services.debt_matching import DebtMatchingService
from monzo_budget.storage.store import Database

logger = get_logger(__name__)


class DebtProcessor:
    """Applies debt matching to stored transactions and keeps debts in step."""

    def __init__(self, db: Database, service: DebtMatchingService | None = None) -> None:
        self.db = db
        self.service = service or DebtMatchingService()

    async def _apply_payment(
        self,
        match: DebtTransactionMatch,
        debt: Debt,
        transaction: Transaction,
    ) -> Debt:
        entry = self.service.create_payment_history_entry(match, debt, transaction)
        await self.db.debt_payment_history.add(entry)
        return await self.db.debts.update(
            debt.id,
            current_balance=entry.balance_after,
            status="paid_off" if entry.balance_after <= 0 else debt.status,
            updated=utc_now(),
        )

    async def process_transactions(self, transactions: Iterable[Transaction]) -> dict[str, int]:
        debts = {
            debt.id: debt
            for debt in await self.db.debts.where("status").equals("active").to_list()
        }
        rules = await self.db.creditor_matching_rules.where("enabled").equals(True).to_list()
        processed_ids = {match.transaction_id for match in await self.db.debt_transaction_matches.to_list()}

        summary = {"processed": 0, "matches": 0, "auto_confirmed": 0, "requires_review": 0}
        if not debts or not rules:
            logger.info("[DEBT] No active debts or enabled rules; nothing to match.")
            return summary

        for transaction in transactions:
            if transaction.id in processed_ids or transaction.amount >= 0:
                continue
            processed_ids.add(transaction.id)
            summary["processed"] += 1

            outcome = self.service.process_transaction(transaction, list(debts.values()), rules)
            for match in outcome.matches:
                await self.db.debt_transaction_matches.add(match)

            for match in outcome.auto_confirmed:
                debt = debts.get(match.debt_id)
                if debt is None:
                    continue
                updated = await self._apply_payment(match, debt, transaction)
                if updated.status == "active":
                    debts[updated.id] = updated
                else:
                    debts.pop(updated.id, None)

            summary["matches"] += len(outcome.matches)
            summary["auto_confirmed"] += len(outcome.auto_confirmed)
            summary["requires_review"] += len(outcome.requires_review)
            if outcome.matches:
                logger.info(
                    "[DEBT] Transaction %s: %s matches (%s auto-confirmed)",
                    transaction.id,
                    len(outcome.matches),
                    len(outcome.auto_confirmed),
                )

        logger.info(
            "[DEBT] Matching complete. Processed %s transactions, %s matches, %s auto-confirmed.",
            summary["processed"],
            summary["matches"],
            summary["auto_confirmed"],
        )
        return summary

    async def process_latest_transactions(self, count: int = 50) -> dict[str, int]:
        latest = await self.db.transactions.order_by("created").reverse().to_list()
        return await self.process_transactions(latest[:count])

    async def process_recent_transactions(self, days: int = 30, now: datetime | None = None) -> dict[str, int]:
        cutoff = (now or utc_now()) - timedelta(days=days)
        recent = await (
            self.db.transactions.filter(lambda tx: tx.created >= cutoff)
            .sort_by("created")
            .reverse()
            .to_list()
        )
        return await self.process_transactions(recent)

    async def confirm_match(self, match_id: str) -> DebtTransactionMatch:
        match = await self.db.debt_transaction_matches.require(match_id)
        if match.match_status == "confirmed":
            return match

        duplicate = await self.db.debt_transaction_matches.filter(
            lambda other: other.id != match.id
            and other.transaction_id == match.transaction_id
            and other.debt_id == match.debt_id
            and other.match_status == "confirmed"
        ).first()
        if duplicate is not None:
            raise InvalidConfigError(
                f"Transaction {match.transaction_id} already has a confirmed match for debt {match.debt_id}"
            )

        match = await self.db.debt_transaction_matches.update(
            match_id,
            match_status="confirmed",
            match_type="manual",
            updated=utc_now(),
        )
        debt = await self.db.debts.require(match.debt_id)
        transaction = await self.db.transactions.get(match.transaction_id)
        if transaction is not None:
            await self._apply_payment(match, debt, transaction)
        else:
            logger.warning("[DEBT] Confirmed match %s refers to missing transaction %s", match.id, match.transaction_id)
        logger.info("[DEBT] Match %s confirmed for %s", match.id, debt.name)
        return match

    async def reject_match(self, match_id: str) -> DebtTransactionMatch:
        match = await self.db.debt_transaction_matches.update(
            match_id,
            match_status="rejected",
            updated=utc_now(),
        )
        logger.info("[DEBT] Match %s rejected", match.id)
        return match

    async def record_manual_payment(
        self,
        debt_id: str,
        amount: int,
        payment_date: datetime | None = None,
        notes: str | None = None,
    ) -> DebtPaymentHistory:
        debt = await self.db.debts.require(debt_id)
        change = self.service.calculate_new_debt_balance(debt, amount, debt.interest_rate)
        entry = DebtPaymentHistory(
            debt_id=debt.id,
            amount=abs(amount),
            payment_date=payment_date or utc_now(),
            principal_amount=change.principal_paid,
            interest_amount=change.interest_paid,
            balance_after=change.new_balance,
            payment_type="final" if change.new_balance == 0 else "regular",
            is_automatic=False,
            notes=notes,
        )
        await self.db.debt_payment_history.add(entry)
        await self.db.debts.update(
            debt.id,
            current_balance=change.new_balance,
            status="paid_off" if change.new_balance == 0 else debt.status,
            updated=utc_now(),
        )
        return entry

    async def add_debt(self, debt: Debt) -> list[CreditorMatchingRule]:
        await self.db.debts.add(debt)
        rules = self.service.create_default_matching_rules(debt)
        await self.db.creditor_matching_rules.bulk_upsert(rules)
        return rules

    async def create_default_rules(self, debt_id: str) -> list[CreditorMatchingRule]:
        debt = await self.db.debts.require(debt_id)
        rules = self.service.create_default_matching_rules(debt)
        await self.db.creditor_matching_rules.bulk_upsert(rules)
        return rules

    async def add_rule(self, payload: dict[str, Any]) -> CreditorMatchingRule:
        errors = self.service.validate_matching_rule(payload)
        if errors:
            raise InvalidConfigError("; ".join(errors))
        try:
            rule = CreditorMatchingRule.model_validate(payload)
        except ValidationError as exc:
            raise InvalidConfigError(f"Invalid matching rule: {exc.errors()[0]['msg']}") from exc
        await self.db.debts.require(rule.debt_id)
        await self.db.creditor_matching_rules.add(rule)
        return rule

    async def delete_debt(self, debt_id: str) -> bool:
        rules = await self.db.creditor_matching_rules.where("debt_id").equals(debt_id).delete()
        matches = await self.db.debt_transaction_matches.where("debt_id").equals(debt_id).delete()
        deleted = await self.db.debts.delete(debt_id)
        logger.info("[DEBT] Deleted debt %s (%s rules, %s matches)", debt_id, rules, matches)
        return deleted
