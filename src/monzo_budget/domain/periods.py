"""Monthly budgeting cycles.

A cycle starts on an anchor day inside each calendar month (a fixed date, the
last working day, or the workday closest to a fixed date) and runs until the
day before the next month's anchor. Every budget and trend calculation slices
transactions with these periods.
"""
import calendar
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from monzo_budget.core.errors import InvalidConfigError
from monzo_budget.logger import get_logger
from monzo_budget.models import CycleType, DatePeriod, MonthlyCycleConfig, MonthlyPeriod

logger = get_logger(__name__)

DateLike = date | datetime

_SATURDAY = 5
_SUNDAY = 6


def _as_date(value: DateLike) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _is_weekend(day: date) -> bool:
    return day.weekday() >= _SATURDAY


def validate_cycle_config(config: MonthlyCycleConfig) -> None:
    if config.type in (CycleType.SPECIFIC_DATE, CycleType.CLOSEST_WORKDAY):
        if config.date is None or not 1 <= config.date <= 31:
            raise InvalidConfigError(
                f"Invalid date {config.date!r} for {config.type.value} cycle type (expected 1-31)"
            )


def get_closest_workday(day: DateLike) -> date:
    """Saturday moves back to Friday, Sunday forward to Monday."""
    day = _as_date(day)
    weekday = day.weekday()
    if weekday == _SATURDAY:
        return day - timedelta(days=1)
    if weekday == _SUNDAY:
        return day + timedelta(days=1)
    return day


def get_last_working_day_of_month(day: DateLike) -> date:
    day = _as_date(day)
    current = day.replace(day=calendar.monthrange(day.year, day.month)[1])
    while _is_weekend(current):
        current -= timedelta(days=1)
    return current


def _clamped_anchor(config: MonthlyCycleConfig, month: date) -> date:
    days_in_month = calendar.monthrange(month.year, month.month)[1]
    return month.replace(day=min(config.date, days_in_month))


def get_monthly_cycle_start_date(config: MonthlyCycleConfig, reference_month: DateLike) -> date:
    validate_cycle_config(config)
    month = _as_date(reference_month).replace(day=1)

    if config.type == CycleType.SPECIFIC_DATE:
        return _clamped_anchor(config, month)
    if config.type == CycleType.LAST_WORKING_DAY:
        return get_last_working_day_of_month(month)
    if config.type == CycleType.CLOSEST_WORKDAY:
        return get_closest_workday(_clamped_anchor(config, month))
    raise InvalidConfigError(f"Unknown monthly cycle type: {config.type}")


def format_monthly_period_name(start: date, end: date) -> str:
    start_month = start.strftime("%b")
    end_month = end.strftime("%b")
    if start_month == end_month and start.year == end.year:
        return f"{start_month} {start.year}"
    if start.year == end.year:
        return f"{start_month} - {end_month} {start.year}"
    return f"{start_month} {start.year} - {end_month} {end.year}"


def get_current_monthly_period(
    config: MonthlyCycleConfig,
    reference_date: DateLike | None = None,
) -> MonthlyPeriod:
    """Period containing ``reference_date``.

    Before this month's anchor the period is [previous anchor, this anchor - 1];
    otherwise [this anchor, next anchor - 1]. Weekend adjustment can push an
    anchor across a month boundary, so neighbouring months' anchors are
    considered too.
    """
    reference = _as_date(reference_date) if reference_date is not None else date.today()
    anchors = [
        get_monthly_cycle_start_date(config, reference + relativedelta(months=offset))
        for offset in (-1, 0, 1, 2)
    ]
    start = max(anchor for anchor in anchors if anchor <= reference)
    end = min(anchor for anchor in anchors if anchor > reference) - timedelta(days=1)

    return MonthlyPeriod(
        start_date=start,
        end_date=end,
        display_name=format_monthly_period_name(start, end),
    )


def get_past_monthly_periods(
    config: MonthlyCycleConfig,
    count: int = 12,
    reference_date: DateLike | None = None,
) -> list[MonthlyPeriod]:
    """Return ``count`` contiguous periods ending with the current one, oldest first."""
    if count <= 0:
        return []

    current = get_current_monthly_period(config, reference_date)
    periods = [current]
    cursor = current.start_date - timedelta(days=1)
    while len(periods) < count:
        period = get_current_monthly_period(config, cursor)
        periods.append(period)
        cursor = period.start_date - timedelta(days=1)

    periods.reverse()
    logger.debug(
        "[PERIOD] Generated %s periods for %s: %s .. %s",
        len(periods),
        config.type.value,
        periods[0].start_date,
        periods[-1].end_date,
    )
    return periods


def is_date_in_period(day: DateLike, period: DatePeriod) -> bool:
    day = _as_date(day)
    return period.start_date <= day <= period.end_date
