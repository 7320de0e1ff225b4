from datetime import datetime, timezone

import pytest

from monzo_budget.matching.account import AccountMatch
from monzo_budget.matching.exact import ExactMatch
from monzo_budget.matching.fuzzy import FuzzyMatch
from monzo_budget.matching.pattern import PatternMatch
from monzo_budget.models import (
    Counterparty,
    CreditorMatchingRule,
    Debt,
    DebtTransactionMatch,
    Merchant,
    Transaction,
)
from monzo_budget.services.debt_matching import (
    DebtMatchingService,
    MatchingConfig,
    extract_field_value,
    is_likely_credit_card,
)

PAID_AT = datetime(2024, 4, 2, 9, 30, tzinfo=timezone.utc)


def _payment(
    amount: int = -20000,
    merchant: str | None = None,
    description: str = "",
    counterparty: Counterparty | None = None,
    tx_id: str = "tx_1",
) -> Transaction:
    return Transaction(
        id=tx_id,
        account_id="acc_1",
        amount=amount,
        created=PAID_AT,
        description=description,
        merchant=Merchant(name=merchant) if merchant else None,
        counterparty=counterparty,
    )


def _debt(**overrides) -> Debt:
    values = {"id": "debt_1", "name": "Card", "creditor": "Tesco", "original_amount": 100000, "current_balance": 100000}
    values.update(overrides)
    return Debt(**values)


def _rule(**overrides) -> CreditorMatchingRule:
    values = {"id": "rule_1", "debt_id": "debt_1", "type": "exact", "field": "merchant_name", "value": "Tesco",
              "confidence_threshold": 85}
    values.update(overrides)
    return CreditorMatchingRule(**values)


@pytest.fixture
def service() -> DebtMatchingService:
    return DebtMatchingService()


def test_exact_rule_matches_same_merchant(service: DebtMatchingService) -> None:
    results = service.find_debt_matches(_payment(merchant="Tesco"), [_debt()], [_rule()])

    assert len(results) == 1
    assert results[0].confidence == 100
    assert results[0].matched_field == "merchant_name"
    assert results[0].matched_value == "Tesco"


def test_exact_rule_filters_other_merchant(service: DebtMatchingService) -> None:
    assert service.find_debt_matches(_payment(merchant="ASDA"), [_debt()], [_rule()]) == []


def test_incoming_money_and_inactive_debts_never_match(service: DebtMatchingService) -> None:
    assert service.find_debt_matches(_payment(amount=500, merchant="Tesco"), [_debt()], [_rule()]) == []
    assert service.find_debt_matches(_payment(merchant="Tesco"), [_debt(status="paid_off")], [_rule()]) == []
    assert service.find_debt_matches(_payment(merchant="Tesco"), [_debt()], [_rule(enabled=False)]) == []


def test_results_sorted_by_confidence(service: DebtMatchingService) -> None:
    rules = [
        _rule(id="rule_contains", value="Tesco Bank"),
        _rule(id="rule_exact", debt_id="debt_2", value="Tesco Bank Payment"),
    ]
    debts = [_debt(), _debt(id="debt_2", creditor="Tesco Bank")]

    results = service.find_debt_matches(_payment(merchant="Tesco Bank Payment"), debts, rules)

    assert [result.rule_id for result in results] == ["rule_exact", "rule_contains"]
    assert [result.confidence for result in results] == [100, 85]


def test_process_transaction_bands_matches(service: DebtMatchingService) -> None:
    debts = [_debt(), _debt(id="debt_2", creditor="Barclaycard")]
    rules = [
        _rule(),
        _rule(id="rule_2", debt_id="debt_2", type="exact", field="description", value="Barclaycard",
              confidence_threshold=80),
    ]
    transaction = _payment(merchant="Tesco", description="Barclaycard monthly")

    outcome = service.process_transaction(transaction, debts, rules)

    assert len(outcome.matches) == 2
    assert [match.debt_id for match in outcome.auto_confirmed] == ["debt_1"]
    assert outcome.auto_confirmed[0].match_status == "confirmed"
    assert [match.debt_id for match in outcome.requires_review] == ["debt_2"]
    assert outcome.requires_review[0].match_status == "pending"
    assert outcome.requires_review[0].match_confidence == 85


def test_process_transaction_keeps_best_match_per_debt(service: DebtMatchingService) -> None:
    rules = [
        _rule(id="weak", field="description", value="Tesco"),
        _rule(id="strong"),
    ]
    transaction = _payment(merchant="Tesco", description="Tesco Bank card payment")

    outcome = service.process_transaction(transaction, [_debt()], rules)

    assert len(outcome.matches) == 1
    assert outcome.matches[0].rule_id == "strong"


def test_fuzzy_matching_can_be_disabled() -> None:
    rule = _rule(type="fuzzy", field="description", value="Barclaycard", confidence_threshold=75)
    transaction = _payment(description="Barclaycrd")

    enabled = DebtMatchingService().find_debt_matches(transaction, [_debt()], [rule])
    disabled = DebtMatchingService(MatchingConfig(enable_fuzzy_matching=False)).find_debt_matches(
        transaction, [_debt()], [rule]
    )

    assert enabled[0].confidence == 91
    assert disabled == []


@pytest.mark.parametrize(
    ("value", "expected"),
    [("tesco", 100), ("TESCO STORES 123", 85), ("Sainsbury", 0), ("  Tesco  ", 100)],
)
def test_exact_strategy(value: str, expected: int) -> None:
    assert ExactMatch().score(value, _rule(), _payment()) == expected


def test_fuzzy_strategy_respects_max_distance() -> None:
    rule = _rule(type="fuzzy", value="amex")
    strategy = FuzzyMatch(max_distance=1)
    assert strategy.score("AMEX", rule, _payment()) == 100
    assert strategy.score("amez", rule, _payment()) == 75
    assert strategy.score("visa", rule, _payment()) == 0


def test_pattern_strategy_scores_by_coverage() -> None:
    rule = _rule(type="pattern", field="description", value="barclays", pattern="barclays.*payment")
    strategy = PatternMatch()

    assert strategy.score("BARCLAYS CARD PAYMENT", rule, _payment()) == 100
    assert 70 <= strategy.score("DD BARCLAYS PAYMENT REF 12345678", rule, _payment()) < 100
    assert strategy.score("TESCO", rule, _payment()) == 0


def test_pattern_strategy_invalid_regex_scores_zero() -> None:
    rule = _rule(type="pattern", field="description", value="x", pattern="([unclosed")
    assert PatternMatch().score("anything", rule, _payment()) == 0


def test_account_strategy() -> None:
    rule = _rule(type="account", field="account_number", value="12345678")
    strategy = AccountMatch()

    exact = _payment(counterparty=Counterparty(account_number="12345678"))
    last_four = _payment(counterparty=Counterparty(account_number="99995678"))
    other = _payment(counterparty=Counterparty(account_number="11112222"))

    assert strategy.score("12345678", rule, exact) == 100
    assert strategy.score("99995678", rule, last_four) == 80
    assert strategy.score("11112222", rule, other) == 0
    assert strategy.score("", rule, _payment()) == 0


def test_extract_field_value() -> None:
    transaction = _payment(
        merchant="Tesco",
        description="TESCO BANK",
        counterparty=Counterparty(preferred_name="Tesco Bank", account_number="12345678"),
    )
    assert extract_field_value(transaction, "merchant_name") == "Tesco"
    assert extract_field_value(transaction, "counterparty_name") == "Tesco Bank"
    assert extract_field_value(transaction, "description") == "TESCO BANK"
    assert extract_field_value(transaction, "account_number") == "12345678"
    assert extract_field_value(_payment(), "merchant_name") is None


def test_default_rules_for_plain_creditor(service: DebtMatchingService) -> None:
    rules = service.create_default_matching_rules(_debt(creditor="Klarna"))

    assert [(rule.type, rule.field) for rule in rules] == [
        ("exact", "merchant_name"),
        ("exact", "counterparty_name"),
        ("fuzzy", "description"),
    ]
    assert all(rule.debt_id == "debt_1" and rule.value == "Klarna" for rule in rules)


def test_default_rules_add_card_patterns(service: DebtMatchingService) -> None:
    assert is_likely_credit_card("Tesco Bank Card")
    assert not is_likely_credit_card("Student Loans Company")

    rules = service.create_default_matching_rules(_debt(creditor="Tesco Bank Card"))
    patterns = [rule.pattern for rule in rules if rule.type == "pattern"]

    assert len(rules) == 8
    assert "tesco.*payment|payment.*tesco" in patterns
    assert "direct.*debit|dd" in patterns


def test_default_rules_skip_blank_creditor(service: DebtMatchingService) -> None:
    assert service.create_default_matching_rules(_debt(creditor="   ")) == []


def test_balance_without_interest(service: DebtMatchingService) -> None:
    change = service.calculate_new_debt_balance(_debt(current_balance=15000), -20000)
    assert change.new_balance == 0
    assert change.principal_paid == 15000
    assert change.interest_paid == 0


def test_balance_with_interest(service: DebtMatchingService) -> None:
    change = service.calculate_new_debt_balance(_debt(), 20000, interest_rate=12)
    assert change.interest_paid == 1000
    assert change.principal_paid == 19000
    assert change.new_balance == 81000

    small = service.calculate_new_debt_balance(_debt(), 500, interest_rate=12)
    assert small.interest_paid == 500
    assert small.principal_paid == 0
    assert small.new_balance == 100000


@pytest.mark.parametrize(
    ("amount", "balance", "minimum", "expected"),
    [
        (-20000, 100000, 5000, "extra"),
        (-5000, 100000, 5000, "minimum"),
        (-5000, 100000, None, "regular"),
        (-20000, 20000, 5000, "final"),
    ],
)
def test_payment_history_entry_types(
    service: DebtMatchingService, amount: int, balance: int, minimum: int | None, expected: str
) -> None:
    debt = _debt(current_balance=balance, minimum_payment=minimum)
    transaction = _payment(amount=amount)
    match = DebtTransactionMatch(transaction_id=transaction.id, debt_id=debt.id, match_confidence=100)

    entry = service.create_payment_history_entry(match, debt, transaction)

    assert entry.payment_type == expected
    assert entry.amount == abs(amount)
    assert entry.balance_after == max(0, balance - abs(amount))
    assert entry.payment_date == PAID_AT
    assert entry.is_automatic is True


def test_validate_matching_rule(service: DebtMatchingService) -> None:
    valid = {"debt_id": "debt_1", "type": "exact", "field": "merchant_name", "value": "Tesco"}
    assert service.validate_matching_rule(valid) == []

    errors = service.validate_matching_rule({"type": "pattern", "field": "iban", "value": " ",
                                             "pattern": "(", "confidence_threshold": 120})
    assert "Debt ID is required" in errors
    assert "Rule value is required" in errors
    assert "Invalid regex pattern" in errors
    assert "Confidence threshold must be between 0 and 100" in errors
    assert any(error.startswith("Valid field") for error in errors)

    missing_pattern = service.validate_matching_rule({**valid, "type": "pattern"})
    assert missing_pattern == ["Pattern is required for pattern-type rules"]


@pytest.mark.parametrize("threshold", ["80", True, -1, 100.5])
def test_validate_matching_rule_rejects_bad_thresholds(service: DebtMatchingService, threshold) -> None:
    rule = {"debt_id": "debt_1", "type": "exact", "field": "merchant_name", "value": "Tesco",
            "confidence_threshold": threshold}
    assert service.validate_matching_rule(rule) == ["Confidence threshold must be between 0 and 100"]
