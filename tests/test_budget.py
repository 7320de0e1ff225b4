from datetime import date, datetime, timezone

import pytest

from monzo_budget.models import (
    Account,
    Budget,
    BudgetCategory,
    CategoryMappingRule,
    CycleType,
    DatePeriod,
    Merchant,
    MonthlyCycleConfig,
    Transaction,
)
from monzo_budget.services import budget
from monzo_budget.services.budget import DEFAULT_CATEGORY_MAPPINGS

MARCH = DatePeriod(start_date=date(2024, 3, 1), end_date=date(2024, 3, 31))
FIRST_OF_MONTH = MonthlyCycleConfig(type=CycleType.SPECIFIC_DATE, date=1)

_counter = 0


def _tx(
    amount: int,
    when: datetime,
    category: str = "groceries",
    account_id: str = "acc_1",
    include: bool = True,
    merchant: str | None = None,
    description: str = "",
) -> Transaction:
    global _counter
    _counter += 1
    return Transaction(
        id=f"tx_{_counter}",
        account_id=account_id,
        amount=amount,
        created=when,
        category=category,
        include_in_spending=include,
        merchant=Merchant(name=merchant) if merchant else None,
        description=description,
    )


def _at(year: int, month: int, day: int, hour: int = 12) -> datetime:
    return datetime(year, month, day, hour, tzinfo=timezone.utc)


def _category(category: str = "groceries") -> BudgetCategory:
    return BudgetCategory(budget_id="budget_1", name=category.title(), category=category, allocated_amount=20000)


def test_category_spent_counts_only_outgoing_spend_in_period() -> None:
    transactions = [
        _tx(-1500, _at(2024, 3, 1, 0)),
        _tx(-2500, _at(2024, 3, 31, 23)),
        _tx(4000, _at(2024, 3, 10)),  # refund
        _tx(-9999, _at(2024, 3, 12), include=False),
        _tx(-700, _at(2024, 2, 29)),
        _tx(-800, _at(2024, 4, 1)),
        _tx(-300, _at(2024, 3, 15), category="transport"),
    ]

    assert budget.calculate_category_spent(transactions, _category(), MARCH) == 4000


def test_category_spent_with_mappings_matches_merchants_and_descriptions() -> None:
    transactions = [
        _tx(-1000, _at(2024, 3, 5), category="shopping"),
        _tx(-2000, _at(2024, 3, 6), category="general", merchant="TESCO EXPRESS"),
        _tx(-500, _at(2024, 3, 7), category="general", description="Weekly supermarket run"),
        _tx(-400, _at(2024, 3, 8), category="general", merchant="Boots"),
    ]

    plain = budget.calculate_category_spent(transactions, _category(), MARCH)
    mapped = budget.calculate_category_spent(transactions, _category(), MARCH, DEFAULT_CATEGORY_MAPPINGS)

    assert plain == 0
    assert mapped == 3500


def test_budget_spending_per_category_and_update() -> None:
    groceries = _category("groceries")
    transport = _category("transport")
    transactions = [
        _tx(-1200, _at(2024, 3, 2)),
        _tx(-300, _at(2024, 3, 3), category="transport"),
    ]

    spending = budget.calculate_budget_spending(transactions, [groceries, transport], MARCH)
    assert spending == {groceries.id: 1200, transport.id: 300}

    updated = budget.update_budget_category_spending(groceries, transactions, MARCH)
    assert updated.spent_amount == 1200
    assert groceries.spent_amount == 0


def test_create_budget_category_computes_initial_spend() -> None:
    created = budget.create_budget_category(
        "budget_1", "Eating out", "eating_out", 15000,
        [_tx(-2200, _at(2024, 3, 9), category="eating_out")],
        MARCH,
        color="#EF4444",
    )

    assert created.spent_amount == 2200
    assert created.allocated_amount == 15000
    assert created.color == "#EF4444"


def test_available_categories_always_include_other() -> None:
    transactions = [_tx(-1, _at(2024, 3, 1), category="bills"), _tx(-1, _at(2024, 3, 1), category="  ")]
    assert budget.get_available_categories(transactions) == ["bills", "other"]
    assert budget.get_available_categories([]) == ["other"]


def test_budget_and_calendar_periods() -> None:
    period = budget.get_budget_period(Budget(name="2024", year=2024))
    assert (period.start_date, period.end_date) == (date(2024, 1, 1), date(2024, 12, 31))

    february = budget.get_calendar_month_period(date(2024, 2, 14))
    assert (february.start_date, february.end_date) == (date(2024, 2, 1), date(2024, 2, 29))


def test_custom_monthly_periods_follow_cycle() -> None:
    payday = MonthlyCycleConfig(type=CycleType.SPECIFIC_DATE, date=25)

    current = budget.get_current_custom_monthly_period(payday, date(2024, 3, 10))
    assert (current.start_date, current.end_date) == (date(2024, 2, 25), date(2024, 3, 24))

    past = budget.get_past_custom_monthly_periods(payday, 3, date(2024, 3, 10))
    assert [period.start_date for period in past] == [date(2023, 12, 25), date(2024, 1, 25), date(2024, 2, 25)]
    assert past[-1] == current


def _three_months() -> list[Transaction]:
    return [
        _tx(-2000, _at(2024, 1, 5)),
        _tx(-3000, _at(2024, 1, 20)),
        _tx(-3000, _at(2024, 2, 10)),
        _tx(-4500, _at(2024, 3, 3)),
        _tx(-9000, _at(2024, 3, 4), category="rent"),
    ]


def test_suggested_budget_with_custom_cycle() -> None:
    suggestion = budget.get_suggested_budget_amounts_with_custom_cycle(
        _three_months(), "groceries", FIRST_OF_MONTH, 3, date(2024, 3, 10)
    )

    assert suggestion.average == pytest.approx(4166.67, abs=0.01)
    assert suggestion.suggested == 5000
    assert suggestion.min == 3000
    assert suggestion.max == 5000


def test_suggested_budget_ignores_periods_without_spend() -> None:
    suggestion = budget.get_suggested_budget_amounts_with_custom_cycle(
        _three_months(), "groceries", FIRST_OF_MONTH, 5, date(2024, 3, 10)
    )

    assert suggestion.average == pytest.approx(4166.67, abs=0.01)
    assert suggestion.min == 3000


def test_suggested_budget_calendar_months_matches_first_of_month_cycle() -> None:
    calendar_based = budget.get_suggested_budget_amounts(_three_months(), "groceries", 3, date(2024, 3, 10))
    assert calendar_based.suggested == 5000


def test_suggested_budget_without_history_is_zero() -> None:
    suggestion = budget.get_suggested_budget_amounts_with_custom_cycle(
        [], "groceries", FIRST_OF_MONTH, 3, date(2024, 3, 10)
    )
    assert suggestion.average == 0
    assert suggestion.suggested == 0
    assert suggestion.min == 0
    assert suggestion.max == 0


def test_suggested_budget_follows_custom_cycle_boundaries() -> None:
    payday = MonthlyCycleConfig(type=CycleType.SPECIFIC_DATE, date=25)
    transactions = [
        _tx(-1000, _at(2024, 2, 24)),  # previous cycle
        _tx(-2000, _at(2024, 2, 25)),  # current cycle
    ]

    suggestion = budget.get_suggested_budget_amounts_with_custom_cycle(
        transactions, "groceries", payday, 2, date(2024, 3, 1)
    )

    assert suggestion.min == 1000
    assert suggestion.max == 2000


def test_spending_summary_enhanced_folds_omitted_categories() -> None:
    transactions = [
        _tx(-1000, _at(2024, 3, 2)),
        _tx(-500, _at(2024, 3, 3)),
        _tx(-700, _at(2024, 3, 4), category="transfers"),
        _tx(-200, _at(2024, 3, 5), category=""),
        _tx(900, _at(2024, 3, 6), category="income"),
    ]

    plain = budget.get_category_spending_summary(transactions, MARCH)
    assert plain == {"groceries": 1500, "transfers": 700, "other": 200}

    enhanced = budget.get_category_spending_summary_enhanced(transactions, MARCH, omitted_categories=["transfers"])
    assert enhanced["groceries"].amount == 1500
    assert enhanced["groceries"].count == 2
    assert enhanced["other"].amount == 900
    assert enhanced["other"].count == 2
    assert "transfers" not in enhanced


@pytest.mark.parametrize("omitted", [(), ("groceries",), ("groceries", "bills", "other"), ("not-a-category",)])
def test_folding_into_other_never_drops_spend(omitted: tuple[str, ...]) -> None:
    transactions = [
        _tx(-1000, _at(2024, 3, 2)),
        _tx(-250, _at(2024, 3, 9), category="bills"),
        _tx(-75, _at(2024, 3, 12), category="other"),
        _tx(-40, _at(2024, 3, 20), category="transport"),
        _tx(600, _at(2024, 3, 21), category="income"),
    ]

    folded = budget.get_category_spending_summary_enhanced(transactions, MARCH, omitted)
    baseline = budget.get_category_spending_summary_enhanced(transactions, MARCH)

    assert sum(spend.amount for spend in folded.values()) == sum(spend.amount for spend in baseline.values())
    assert sum(spend.count for spend in folded.values()) == 4


def test_chart_data_links_accounts_to_categories() -> None:
    accounts = [Account(id="acc_1", description="Personal"), Account(id="acc_2", description="Joint")]
    transactions = [
        _tx(-1000, _at(2024, 3, 2)),
        _tx(-500, _at(2024, 3, 3)),
        _tx(-50, _at(2024, 3, 3), category="entertainment", account_id="acc_2"),
        _tx(-3000, _at(2024, 3, 4), category="bills", account_id="acc_2"),
        _tx(-100, _at(2024, 3, 4), account_id="acc_unknown"),
    ]

    chart = budget.generate_category_chart_data(transactions, accounts, MARCH, minimum_amount=100)

    links = {(link.source, link.target): link.value for link in chart.links}
    assert links == {
        ("account:acc_1", "category:groceries"): 1500,
        ("account:acc_2", "category:bills"): 3000,
    }
    node_ids = [node.id for node in chart.nodes]
    assert node_ids[:2] == ["account:acc_1", "account:acc_2"]
    assert "category:other" in node_ids
    assert "category:entertainment" in node_ids
    assert len(node_ids) == len(set(node_ids))


def test_validate_category_mappings() -> None:
    assert budget.validate_category_mappings(DEFAULT_CATEGORY_MAPPINGS) == []

    errors = budget.validate_category_mappings([
        CategoryMappingRule(budget_category="groceries", source_categories=["groceries"]),
        CategoryMappingRule(budget_category="groceries", source_categories=["shopping"]),
        CategoryMappingRule(budget_category="", source_categories=[]),
    ])

    assert len(errors) == 3
    assert "duplicated" in errors[0]
