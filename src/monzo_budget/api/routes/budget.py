from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query

from monzo_budget.api.dependencies import get_db, get_preferences
from monzo_budget.models import ChartData, DatePeriod, SuggestedBudget
from monzo_budget.services import budget
from monzo_budget.services.preferences import PreferencesService
from monzo_budget.storage.store import Database

router = APIRouter()


async def _resolve_period(
    preferences: PreferencesService,
    start_date: date | None,
    end_date: date | None,
) -> DatePeriod:
    if (start_date is None) != (end_date is None):
        raise HTTPException(status_code=422, detail="start_date and end_date must be given together")
    if start_date and end_date:
        if start_date > end_date:
            raise HTTPException(status_code=422, detail="start_date must not be after end_date")
        return DatePeriod(start_date=start_date, end_date=end_date)
    config = await preferences.get_monthly_cycle_config()
    current = budget.get_current_custom_monthly_period(config)
    return DatePeriod(start_date=current.start_date, end_date=current.end_date)


@router.get("/api/budget/categories")
async def list_categories(
    db: Annotated[Database, Depends(get_db)],
) -> list[str]:
    return budget.get_available_categories(await db.transactions.to_list())


@router.get("/api/budget/summary")
async def spending_summary(
    db: Annotated[Database, Depends(get_db)],
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
    start_date: date | None = None,
    end_date: date | None = None,
    omitted: Annotated[list[str] | None, Query()] = None,
) -> dict:
    period = await _resolve_period(preferences, start_date, end_date)
    summary = budget.get_category_spending_summary_enhanced(
        await db.transactions.to_list(),
        period,
        omitted or (),
    )
    return {
        "period": period.model_dump(mode="json"),
        "categories": {name: spend.model_dump() for name, spend in sorted(summary.items())},
        "total": sum(spend.amount for spend in summary.values()),
    }


@router.get("/api/budget/suggested/{category}")
async def suggested_amount(
    category: str,
    db: Annotated[Database, Depends(get_db)],
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
    lookback: Annotated[int, Query(ge=1, le=24)] = 3,
) -> SuggestedBudget:
    config = await preferences.get_monthly_cycle_config()
    return budget.get_suggested_budget_amounts_with_custom_cycle(
        await db.transactions.to_list(),
        category,
        config,
        lookback,
    )


@router.get("/api/budget/chart")
async def chart_data(
    db: Annotated[Database, Depends(get_db)],
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
    start_date: date | None = None,
    end_date: date | None = None,
    omitted: Annotated[list[str] | None, Query()] = None,
    minimum_amount: Annotated[int, Query(ge=0)] = 0,
) -> ChartData:
    period = await _resolve_period(preferences, start_date, end_date)
    return budget.generate_category_chart_data(
        await db.transactions.to_list(),
        await db.accounts.to_list(),
        period,
        omitted or (),
        minimum_amount,
    )
