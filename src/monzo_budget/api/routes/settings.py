from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, Query

from monzo_budget.api.dependencies import get_preferences
from monzo_budget.domain.periods import get_past_monthly_periods
from monzo_budget.models import MonthlyCycleConfig, MonthlyPeriod
from monzo_budget.services.preferences import PreferencesService

router = APIRouter()


@router.get("/api/settings/monthly-cycle")
async def get_monthly_cycle(
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
) -> MonthlyCycleConfig:
    return await preferences.get_monthly_cycle_config()


@router.put("/api/settings/monthly-cycle")
async def update_monthly_cycle(
    config: MonthlyCycleConfig,
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
) -> MonthlyCycleConfig:
    return await preferences.update_monthly_cycle_config(config)


@router.post("/api/settings/monthly-cycle/reset")
async def reset_monthly_cycle(
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
) -> MonthlyCycleConfig:
    return await preferences.reset_to_defaults()


@router.get("/api/periods")
async def list_periods(
    preferences: Annotated[PreferencesService, Depends(get_preferences)],
    count: Annotated[int, Query(ge=1, le=120)] = 12,
    reference_date: date | None = None,
) -> list[MonthlyPeriod]:
    config = await preferences.get_monthly_cycle_config()
    return get_past_monthly_periods(config, count, reference_date)
