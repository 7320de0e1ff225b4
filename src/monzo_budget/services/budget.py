"""Category spend, suggested allocations and account-to-category flows.

All amounts are minor units. Spend is the absolute value of outgoing
(negative) transactions flagged ``include_in_spending``; a transaction belongs
to a period when its UTC date falls inside the period's inclusive bounds.
"""
import calendar
from collections.abc import Iterable, Sequence
from datetime import date

from dateutil.relativedelta import relativedelta

from monzo_budget.domain.periods import (
    DateLike,
    get_current_monthly_period,
    get_past_monthly_periods,
    is_date_in_period,
)
from monzo_budget.domain.transactions import OTHER_CATEGORY, normalize_category
from monzo_budget.logger import get_logger
from monzo_budget.models import (
    Account,
    Budget,
    BudgetCategory,
    CategoryMappingRule,
    CategorySpend,
    ChartData,
    ChartLink,
    ChartNode,
    DatePeriod,
    MonthlyCycleConfig,
    MonthlyPeriod,
    SuggestedBudget,
    Transaction,
    utc_now,
)

logger = get_logger(__name__)

SUGGESTION_BUFFER = 1.2
DEFAULT_COLOR = "#3B82F6"

DEFAULT_CATEGORY_MAPPINGS = [
    CategoryMappingRule(
        budget_category="groceries",
        source_categories=["shopping", "groceries"],
        merchant_patterns=["tesco", "asda", "sainsbury", "morrisons", "aldi", "lidl", "iceland", "waitrose"],
        description_patterns=["grocery", "supermarket", "food shopping"],
    ),
    CategoryMappingRule(
        budget_category="transport",
        source_categories=["transport"],
        merchant_patterns=["uber", "bolt", "citymapper", "tfl", "trainline", "shell", "bp", "esso"],
        description_patterns=["fuel", "petrol", "diesel", "parking", "taxi", "bus", "train"],
    ),
    CategoryMappingRule(
        budget_category="entertainment",
        source_categories=["entertainment"],
        merchant_patterns=["spotify", "netflix", "amazon prime", "disney", "cinema", "pub", "bar"],
        description_patterns=["entertainment", "streaming", "subscription", "drinks", "movie"],
    ),
    CategoryMappingRule(
        budget_category="bills",
        source_categories=["bills"],
        merchant_patterns=["british gas", "eon", "vodafone", "ee", "three", "sky", "bt"],
        description_patterns=["utility", "electric", "gas", "water", "internet", "phone", "insurance"],
    ),
    CategoryMappingRule(
        budget_category="general",
        source_categories=["general", "expenses"],
        description_patterns=["general", "miscellaneous", "other"],
    ),
]


def _is_spend(transaction: Transaction) -> bool:
    return transaction.amount < 0 and transaction.include_in_spending


def _in_period(transaction: Transaction, period: DatePeriod) -> bool:
    return is_date_in_period(transaction.created, period)


def _matches_rule(transaction: Transaction, rule: CategoryMappingRule) -> bool:
    if transaction.category in rule.source_categories:
        return True
    merchant_name = (transaction.merchant.name if transaction.merchant else None) or ""
    if merchant_name:
        lowered = merchant_name.lower()
        if any(pattern.lower() in lowered for pattern in rule.merchant_patterns):
            return True
    if transaction.description:
        lowered = transaction.description.lower()
        if any(pattern.lower() in lowered for pattern in rule.description_patterns):
            return True
    return False


def _category_matcher(category: str, mappings: Sequence[CategoryMappingRule] | None):
    rule = None
    if mappings:
        rule = next(
            (candidate for candidate in mappings if candidate.budget_category.lower() == category.lower()),
            None,
        )
    if rule is None:
        return lambda transaction: transaction.category == category
    return lambda transaction: _matches_rule(transaction, rule)


def get_available_categories(transactions: Iterable[Transaction]) -> list[str]:
    categories = {tx.category.strip() for tx in transactions if tx.category and tx.category.strip()}
    categories.add(OTHER_CATEGORY)
    return sorted(categories)


def calculate_category_spent(
    transactions: Iterable[Transaction],
    budget_category: BudgetCategory,
    period: DatePeriod,
    mappings: Sequence[CategoryMappingRule] | None = None,
) -> int:
    """Spend for one budget category within ``period``.

    Without ``mappings`` a transaction counts when its category equals the
    budget category. With mappings, the rule for the budget category (if any)
    also matches source categories and merchant/description substrings.
    """
    matches = _category_matcher(budget_category.category, mappings)
    return sum(
        abs(tx.amount)
        for tx in transactions
        if _is_spend(tx) and _in_period(tx, period) and matches(tx)
    )


def calculate_budget_spending(
    transactions: Iterable[Transaction],
    categories: Iterable[BudgetCategory],
    period: DatePeriod,
    mappings: Sequence[CategoryMappingRule] | None = None,
) -> dict[str, int]:
    transactions = list(transactions)
    return {
        category.id: calculate_category_spent(transactions, category, period, mappings)
        for category in categories
    }


def update_budget_category_spending(
    budget_category: BudgetCategory,
    transactions: Iterable[Transaction],
    period: DatePeriod,
    mappings: Sequence[CategoryMappingRule] | None = None,
) -> BudgetCategory:
    spent = calculate_category_spent(transactions, budget_category, period, mappings)
    return budget_category.model_copy(update={"spent_amount": spent, "updated": utc_now()})


def create_budget_category(
    budget_id: str,
    name: str,
    category: str,
    allocated_amount: int,
    transactions: Iterable[Transaction],
    period: DatePeriod,
    color: str = DEFAULT_COLOR,
    mappings: Sequence[CategoryMappingRule] | None = None,
) -> BudgetCategory:
    created = BudgetCategory(
        budget_id=budget_id,
        name=name,
        category=category,
        allocated_amount=allocated_amount,
        color=color,
    )
    return update_budget_category_spending(created, transactions, period, mappings)


def get_budget_period(budget: Budget) -> DatePeriod:
    return DatePeriod(start_date=date(budget.year, 1, 1), end_date=date(budget.year, 12, 31))


def get_calendar_month_period(reference_date: DateLike | None = None) -> DatePeriod:
    reference = reference_date or date.today()
    start = date(reference.year, reference.month, 1)
    end = start.replace(day=calendar.monthrange(start.year, start.month)[1])
    return DatePeriod(start_date=start, end_date=end)


def get_current_custom_monthly_period(
    config: MonthlyCycleConfig,
    reference_date: DateLike | None = None,
) -> MonthlyPeriod:
    return get_current_monthly_period(config, reference_date)


def get_past_custom_monthly_periods(
    config: MonthlyCycleConfig,
    count: int,
    reference_date: DateLike | None = None,
) -> list[MonthlyPeriod]:
    return get_past_monthly_periods(config, count, reference_date)


def _suggest_from_periods(
    transactions: Iterable[Transaction],
    category: str,
    periods: Iterable[DatePeriod],
) -> SuggestedBudget:
    candidates = [tx for tx in transactions if _is_spend(tx) and tx.category == category]
    totals = []
    for period in periods:
        total = sum(abs(tx.amount) for tx in candidates if _in_period(tx, period))
        # Periods without spend would drag the average towards zero
        if total > 0:
            totals.append(total)

    if not totals:
        return SuggestedBudget()

    average = sum(totals) / len(totals)
    return SuggestedBudget(
        average=average,
        suggested=round(average * SUGGESTION_BUFFER),
        min=min(totals),
        max=max(totals),
    )


def get_suggested_budget_amounts(
    transactions: Iterable[Transaction],
    category: str,
    lookback_periods: int = 3,
    reference_date: DateLike | None = None,
) -> SuggestedBudget:
    """Suggest an allocation from the last ``lookback_periods`` calendar months."""
    reference = reference_date or date.today()
    periods = [get_calendar_month_period(reference - relativedelta(months=offset)) for offset in range(lookback_periods)]
    return _suggest_from_periods(transactions, category, periods)


def get_suggested_budget_amounts_with_custom_cycle(
    transactions: Iterable[Transaction],
    category: str,
    cycle_config: MonthlyCycleConfig,
    lookback_periods: int = 3,
    reference_date: DateLike | None = None,
) -> SuggestedBudget:
    periods = get_past_custom_monthly_periods(cycle_config, lookback_periods, reference_date)
    suggestion = _suggest_from_periods(transactions, category, periods)
    logger.debug(
        "[BUDGET] Suggested %s for %s over %s %s periods",
        suggestion.suggested,
        category,
        len(periods),
        cycle_config.type.value,
    )
    return suggestion


def get_category_spending_summary(
    transactions: Iterable[Transaction],
    period: DatePeriod,
) -> dict[str, int]:
    summary: dict[str, int] = {}
    for tx in transactions:
        if _is_spend(tx) and _in_period(tx, period):
            category = normalize_category(tx.category)
            summary[category] = summary.get(category, 0) + abs(tx.amount)
    return summary


def _bucket(category: str, omitted: set[str]) -> str:
    category = normalize_category(category)
    return OTHER_CATEGORY if category in omitted else category


def get_category_spending_summary_enhanced(
    transactions: Iterable[Transaction],
    period: DatePeriod,
    omitted_categories: Iterable[str] = (),
) -> dict[str, CategorySpend]:
    """Spend and count per category; omitted categories fold into ``other``."""
    omitted = set(omitted_categories)
    summary: dict[str, CategorySpend] = {}
    for tx in transactions:
        if not (_is_spend(tx) and _in_period(tx, period)):
            continue
        bucket = summary.setdefault(_bucket(tx.category, omitted), CategorySpend())
        bucket.amount += abs(tx.amount)
        bucket.count += 1
    return summary


def _account_node_id(account_id: str) -> str:
    return f"account:{account_id}"


def _category_node_id(category: str) -> str:
    return f"category:{category}"


def generate_category_chart_data(
    transactions: Iterable[Transaction],
    accounts: Iterable[Account],
    period: DatePeriod,
    omitted_categories: Iterable[str] = (),
    minimum_amount: int = 0,
) -> ChartData:
    """Account to category flow graph for a Sankey-style chart.

    One link per (account, category) pair carries the summed spend; links
    below ``minimum_amount`` are dropped. The ``other`` node is always present.
    """
    omitted = set(omitted_categories)
    accounts = list(accounts)
    account_ids = {account.id for account in accounts}

    flows: dict[tuple[str, str], int] = {}
    for tx in transactions:
        if tx.account_id not in account_ids:
            continue
        if not (_is_spend(tx) and _in_period(tx, period)):
            continue
        key = (tx.account_id, _bucket(tx.category, omitted))
        flows[key] = flows.get(key, 0) + abs(tx.amount)

    links = [
        ChartLink(source=_account_node_id(account_id), target=_category_node_id(category), value=value)
        for (account_id, category), value in sorted(flows.items())
        if value >= minimum_amount
    ]

    nodes = [
        ChartNode(id=_account_node_id(account.id), name=account.description or account.id, kind="account")
        for account in accounts
    ]
    categories = sorted({category for _, category in flows} | {OTHER_CATEGORY})
    nodes.extend(
        ChartNode(id=_category_node_id(category), name=category, kind="category")
        for category in categories
    )
    return ChartData(nodes=nodes, links=links)


def validate_category_mappings(mappings: Iterable[CategoryMappingRule]) -> list[str]:
    errors = []
    seen: set[str] = set()
    for index, mapping in enumerate(mappings):
        if not mapping.budget_category:
            errors.append(f"Mapping {index}: budget_category is required")
        elif mapping.budget_category in seen:
            errors.append(f"Mapping {index}: budget_category \"{mapping.budget_category}\" is duplicated")
        else:
            seen.add(mapping.budget_category)

        if not mapping.source_categories:
            errors.append(f"Mapping {index}: at least one source category is required")
    return errors
