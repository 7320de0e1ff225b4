from pydantic import ValidationError

from monzo_budget.core.errors import InvalidConfigError
from monzo_budget.domain.periods import validate_cycle_config
from monzo_budget.logger import get_logger
from monzo_budget.models import (
    DEFAULT_MONTHLY_CYCLE,
    CycleType,
    MonthlyCycleConfig,
    UserPreferences,
    utc_now,
)
from monzo_budget.storage.store import Database

logger = get_logger(__name__)

DEFAULT_USER_ID = "default"


class PreferencesService:
    def __init__(self, db: Database, user_id: str = DEFAULT_USER_ID) -> None:
        self.db = db
        self.user_id = user_id

    async def _stored(self) -> UserPreferences | None:
        return await self.db.user_preferences.where("user_id").equals(self.user_id).first()

    async def get_user_preferences(self) -> UserPreferences:
        preferences = await self._stored()
        if preferences is None:
            preferences = UserPreferences(
                user_id=self.user_id,
                monthly_cycle_type=DEFAULT_MONTHLY_CYCLE.type,
                monthly_cycle_date=DEFAULT_MONTHLY_CYCLE.date,
            )
            await self.db.user_preferences.add(preferences)
            logger.info("[PREFS] Created default preferences for %s", self.user_id)
        return preferences

    async def get_monthly_cycle_config(self) -> MonthlyCycleConfig:
        preferences = await self.get_user_preferences()
        try:
            config = MonthlyCycleConfig(
                type=preferences.monthly_cycle_type,
                date=preferences.monthly_cycle_date,
            )
            validate_cycle_config(config)
        except (InvalidConfigError, ValidationError) as exc:
            logger.warning("[PREFS] Stored monthly cycle is invalid (%s); using default.", exc)
            return DEFAULT_MONTHLY_CYCLE.model_copy()
        return config

    async def update_monthly_cycle_config(self, config: MonthlyCycleConfig) -> MonthlyCycleConfig:
        validate_cycle_config(config)
        cycle_date = None if config.type == CycleType.LAST_WORKING_DAY else config.date

        preferences = await self.get_user_preferences()
        await self.db.user_preferences.update(
            preferences.id,
            monthly_cycle_type=config.type,
            monthly_cycle_date=cycle_date,
            updated=utc_now(),
        )
        logger.info("[PREFS] Monthly cycle set to %s (date=%s)", config.type.value, cycle_date)
        return MonthlyCycleConfig(type=config.type, date=cycle_date)

    async def reset_to_defaults(self) -> MonthlyCycleConfig:
        removed = await self.db.user_preferences.where("user_id").equals(self.user_id).delete()
        await self.get_user_preferences()
        logger.info("[PREFS] Preferences reset to defaults (removed %s records).", removed)
        return DEFAULT_MONTHLY_CYCLE.model_copy()
