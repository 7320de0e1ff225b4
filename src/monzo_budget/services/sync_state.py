from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from monzo_budget.logger import get_logger
from monzo_budget.models import APIMetrics, utc_now
from monzo_budget.storage.store import KeyValueStore

logger = get_logger(__name__)

TOKEN_TIMESTAMP_KEY = "tokenTimestamp"
LAST_PULL_PREFIX = "lastTransactionPull_"
LAST_INCREMENTAL_PREFIX = "lastIncrementalSync_"
METRICS_KEY = "transaction_api_metrics"

TOKEN_FRESH_WINDOW = timedelta(minutes=5)

Clock = Callable[[], datetime]


def _parse_timestamp(raw: Any) -> datetime | None:
    if not raw:
        return None
    try:
        return datetime.fromisoformat(str(raw))
    except ValueError:
        logger.warning("[SYNC] Ignoring unreadable timestamp %r", raw)
        return None


class SyncState:
    """Typed view over the key/value entries the sync engine keeps between runs."""

    def __init__(self, kv: KeyValueStore, clock: Clock = utc_now) -> None:
        self.kv = kv
        self.clock = clock

    async def flush(self) -> None:
        await self.kv.flush()

    def _get_time(self, key: str) -> datetime | None:
        return _parse_timestamp(self.kv.get(key))

    def _set_time(self, key: str, value: datetime | None) -> datetime:
        value = value or self.clock()
        self.kv.set(key, value.isoformat())
        return value

    # Token

    def token_issued_at(self) -> datetime | None:
        return self._get_time(TOKEN_TIMESTAMP_KEY)

    def record_token_issued(self, at: datetime | None = None) -> datetime:
        return self._set_time(TOKEN_TIMESTAMP_KEY, at)

    def is_token_stale(self) -> bool:
        issued = self.token_issued_at()
        if issued is None:
            return True
        return self.clock() - issued > TOKEN_FRESH_WINDOW

    # Per-account watermarks

    def last_pull(self, account_id: str) -> datetime | None:
        return self._get_time(f"{LAST_PULL_PREFIX}{account_id}")

    def mark_pulled(self, account_id: str, at: datetime | None = None) -> datetime:
        return self._set_time(f"{LAST_PULL_PREFIX}{account_id}", at)

    def last_incremental_sync(self, account_id: str) -> datetime | None:
        return self._get_time(f"{LAST_INCREMENTAL_PREFIX}{account_id}")

    def mark_incremental_sync(self, account_id: str, at: datetime | None = None) -> datetime:
        return self._set_time(f"{LAST_INCREMENTAL_PREFIX}{account_id}", at)

    # Metrics

    def metrics(self) -> list[APIMetrics]:
        records = []
        for raw in self.kv.get(METRICS_KEY) or []:
            try:
                records.append(APIMetrics.model_validate(raw))
            except ValidationError:
                logger.warning("[SYNC] Dropping unreadable metrics entry")
        return records

    def append_metrics(self, record: APIMetrics, cap: int) -> None:
        stored = list(self.kv.get(METRICS_KEY) or [])
        stored.append(record.model_dump(mode="json"))
        if len(stored) > cap:
            stored = stored[-cap:]
        self.kv.set(METRICS_KEY, stored)

    def clear_metrics(self) -> None:
        self.kv.delete(METRICS_KEY)
