import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from monzo_budget.logger import get_logger
from monzo_budget.matching.account import AccountMatch
from monzo_budget.matching.base import MatchStrategy
from monzo_budget.matching.exact import ExactMatch
from monzo_budget.matching.fuzzy import FuzzyMatch
from monzo_budget.matching.pattern import PatternMatch
from monzo_budget.models import (
    CreditorMatchingRule,
    Debt,
    DebtMatchResult,
    DebtPaymentHistory,
    DebtTransactionMatch,
    Transaction,
)

logger = get_logger(__name__)

RULE_TYPES = ("exact", "fuzzy", "pattern", "account")
RULE_FIELDS = ("merchant_name", "counterparty_name", "description", "account_number")

MINIMUM_PAYMENT_MARGIN = 1.1

CARD_KEYWORDS = (
    "credit card",
    "card",
    "visa",
    "mastercard",
    "amex",
    "american express",
    "barclaycard",
    "lloyds bank card",
    "hsbc card",
    "santander card",
    "natwest card",
    "halifax card",
    "tesco bank card",
    "m&s bank card",
)

CARD_ISSUERS = (
    "barclays",
    "lloyds",
    "hsbc",
    "santander",
    "natwest",
    "halifax",
    "tesco",
    "m&s",
    "marks spencer",
    "john lewis",
    "argos",
)

GENERIC_CARD_PATTERNS = (
    "card.*payment|payment.*card",
    "credit.*payment|payment.*credit",
    "direct.*debit|dd",
)


@dataclass(frozen=True)
class MatchingConfig:
    auto_confirm_threshold: float = 90
    review_threshold: float = 70
    enable_fuzzy_matching: bool = True
    max_fuzzy_distance: int = 3


@dataclass(frozen=True)
class BalanceChange:
    new_balance: int
    principal_paid: int
    interest_paid: int


@dataclass
class MatchOutcome:
    matches: list[DebtTransactionMatch] = field(default_factory=list)
    auto_confirmed: list[DebtTransactionMatch] = field(default_factory=list)
    requires_review: list[DebtTransactionMatch] = field(default_factory=list)


def _round_half_up(value: float) -> int:
    return int(value + 0.5) if value >= 0 else -int(-value + 0.5)


def extract_field_value(transaction: Transaction, rule_field: str) -> str | None:
    counterparty = transaction.counterparty
    if rule_field == "merchant_name":
        return transaction.merchant.name if transaction.merchant and transaction.merchant.name else None
    if rule_field == "counterparty_name":
        if counterparty is None:
            return None
        return counterparty.name or counterparty.preferred_name or None
    if rule_field == "description":
        return transaction.description or None
    if rule_field == "account_number":
        return counterparty.account_number if counterparty and counterparty.account_number else None
    return None


def is_likely_credit_card(creditor_name: str) -> bool:
    lowered = creditor_name.lower()
    return any(keyword in lowered for keyword in CARD_KEYWORDS)


def credit_card_patterns(creditor_name: str) -> list[str]:
    lowered = creditor_name.lower()
    patterns = []
    for issuer in CARD_ISSUERS:
        if issuer in lowered:
            patterns.append(f"{issuer}.*payment|payment.*{issuer}")
            patterns.append(f"{issuer}.*card|card.*{issuer}")
    patterns.extend(GENERIC_CARD_PATTERNS)
    return patterns


class DebtMatchingService:
    """Scores transactions against creditor rules and turns matches into payments."""

    def __init__(
        self,
        config: MatchingConfig | None = None,
        strategies: Mapping[str, MatchStrategy] | None = None,
    ) -> None:
        self.config = config or MatchingConfig()
        if strategies is None:
            strategies = {
                strategy.rule_type: strategy
                for strategy in (
                    ExactMatch(),
                    FuzzyMatch(self.config.max_fuzzy_distance),
                    PatternMatch(),
                    AccountMatch(),
                )
            }
        self.strategies = dict(strategies)

    def _evaluate_rule(self, transaction: Transaction, rule: CreditorMatchingRule) -> tuple[float, str] | None:
        value = extract_field_value(transaction, rule.field)
        if not value:
            return None
        if rule.type == "fuzzy" and not self.config.enable_fuzzy_matching:
            return None

        strategy = self.strategies.get(rule.type)
        if strategy is None:
            logger.warning("[DEBT] No strategy registered for rule type %s", rule.type)
            return None

        confidence = min(strategy.score(value, rule, transaction), 100)
        if confidence < rule.confidence_threshold:
            return None
        return confidence, value

    def find_debt_matches(
        self,
        transaction: Transaction,
        debts: Iterable[Debt],
        rules: Iterable[CreditorMatchingRule],
    ) -> list[DebtMatchResult]:
        if transaction.amount >= 0:
            return []

        enabled_rules = [rule for rule in rules if rule.enabled]
        results = []
        for debt in debts:
            if debt.status != "active":
                continue
            for rule in enabled_rules:
                if rule.debt_id != debt.id:
                    continue
                evaluated = self._evaluate_rule(transaction, rule)
                if evaluated is None:
                    continue
                confidence, value = evaluated
                if confidence < self.config.review_threshold:
                    continue
                results.append(DebtMatchResult(
                    debt_id=debt.id,
                    rule_id=rule.id,
                    confidence=confidence,
                    matched_field=rule.field,
                    matched_value=value,
                    transaction=transaction,
                ))

        results.sort(key=lambda result: result.confidence, reverse=True)
        return results

    def process_transaction(
        self,
        transaction: Transaction,
        debts: Iterable[Debt],
        rules: Iterable[CreditorMatchingRule],
    ) -> MatchOutcome:
        """Band matches by confidence, keeping only the strongest one per debt."""
        outcome = MatchOutcome()
        seen_debts: set[str] = set()
        for result in self.find_debt_matches(transaction, debts, rules):
            if result.debt_id in seen_debts:
                continue
            seen_debts.add(result.debt_id)

            confirmed = result.confidence >= self.config.auto_confirm_threshold
            match = DebtTransactionMatch(
                transaction_id=transaction.id,
                debt_id=result.debt_id,
                rule_id=result.rule_id,
                match_confidence=result.confidence,
                match_status="confirmed" if confirmed else "pending",
                match_type="automatic",
                matched_field=result.matched_field,
                matched_value=result.matched_value,
            )
            outcome.matches.append(match)
            if confirmed:
                outcome.auto_confirmed.append(match)
            else:
                outcome.requires_review.append(match)
        return outcome

    def create_default_matching_rules(self, debt: Debt) -> list[CreditorMatchingRule]:
        creditor = debt.creditor.strip()
        if not creditor:
            return []

        rules = [
            CreditorMatchingRule(
                debt_id=debt.id, type="exact", field="merchant_name", value=creditor, confidence_threshold=85
            ),
            CreditorMatchingRule(
                debt_id=debt.id, type="exact", field="counterparty_name", value=creditor, confidence_threshold=85
            ),
            CreditorMatchingRule(
                debt_id=debt.id, type="fuzzy", field="description", value=creditor, confidence_threshold=75
            ),
        ]
        if is_likely_credit_card(creditor):
            rules.extend(
                CreditorMatchingRule(
                    debt_id=debt.id,
                    type="pattern",
                    field="description",
                    value=pattern,
                    pattern=pattern,
                    confidence_threshold=80,
                )
                for pattern in credit_card_patterns(creditor)
            )
        logger.info("[DEBT] Created %s default rules for %s", len(rules), debt.name)
        return rules

    def calculate_new_debt_balance(
        self,
        debt: Debt,
        payment_amount: int,
        interest_rate: float | None = None,
    ) -> BalanceChange:
        payment = abs(payment_amount)
        balance = debt.current_balance
        if not interest_rate:
            return BalanceChange(
                new_balance=max(0, balance - payment),
                principal_paid=min(payment, balance),
                interest_paid=0,
            )

        interest_charge = _round_half_up(balance * (interest_rate / 100 / 12))
        if payment <= interest_charge:
            interest_paid, principal_paid = payment, 0
        else:
            interest_paid, principal_paid = interest_charge, payment - interest_charge
        return BalanceChange(
            new_balance=max(0, balance - principal_paid),
            principal_paid=principal_paid,
            interest_paid=interest_paid,
        )

    def create_payment_history_entry(
        self,
        match: DebtTransactionMatch,
        debt: Debt,
        transaction: Transaction,
    ) -> DebtPaymentHistory:
        payment = abs(transaction.amount)
        change = self.calculate_new_debt_balance(debt, payment, debt.interest_rate)

        if change.new_balance == 0:
            payment_type = "final"
        elif debt.minimum_payment and payment > debt.minimum_payment * MINIMUM_PAYMENT_MARGIN:
            payment_type = "extra"
        elif debt.minimum_payment:
            payment_type = "minimum"
        else:
            payment_type = "regular"

        return DebtPaymentHistory(
            debt_id=debt.id,
            transaction_id=transaction.id,
            amount=payment,
            payment_date=transaction.created,
            principal_amount=change.principal_paid,
            interest_amount=change.interest_paid,
            balance_after=change.new_balance,
            payment_type=payment_type,
            is_automatic=match.match_type == "automatic",
        )

    def validate_matching_rule(self, rule: Mapping[str, Any]) -> list[str]:
        """Validate a (possibly partial) rule payload; returns human-readable errors."""
        errors = []
        rule_type = rule.get("type")
        if not rule.get("debt_id"):
            errors.append("Debt ID is required")
        if rule_type not in RULE_TYPES:
            errors.append("Valid rule type is required (exact, pattern, fuzzy, account)")
        if rule.get("field") not in RULE_FIELDS:
            errors.append(
                "Valid field is required (merchant_name, counterparty_name, description, account_number)"
            )
        if not str(rule.get("value") or "").strip():
            errors.append("Rule value is required")

        pattern = rule.get("pattern")
        if rule_type == "pattern":
            if not str(pattern or "").strip():
                errors.append("Pattern is required for pattern-type rules")
            else:
                try:
                    re.compile(str(pattern), re.IGNORECASE)
                except re.error:
                    errors.append("Invalid regex pattern")

        threshold = rule.get("confidence_threshold")
        if threshold is not None and (
            isinstance(threshold, bool) or not isinstance(threshold, (int, float)) or not 0 <= threshold <= 100
        ):
            errors.append("Confidence threshold must be between 0 and 100")
        return errors
