"""Transaction sync against the Monzo API.

Each account is synced sequentially: either forward from the newest stored
transaction (cursor), or by backfilling a time window in adaptive chunks that
respect the API's ~90 day limit per request. Results are deduplicated by id and
upserted, so repeated or overlapping runs converge on the same stored state.
Accounts are fanned out concurrently and reported individually.
"""
import asyncio
import json
import math
from collections.abc import AsyncGenerator, Awaitable, Callable, Iterable
from dataclasses import dataclass
from datetime import datetime, timedelta
from time import perf_counter
from typing import Any, TypeVar

from monzo_budget.core.errors import (
    AuthenticationError,
    InvalidTimeRangeError,
    RateLimitError,
    RetriesExhaustedError,
    TimeRangeError,
    TransportFailure,
)
from monzo_budget.domain.timefmt import format_age, format_duration
from monzo_budget.domain.transactions import dedupe_transactions, parse_accounts, parse_transactions
from monzo_budget.integration.monzo import MonzoClient
from monzo_budget.logger import get_logger
from monzo_budget.models import (
    Account,
    AccountSyncResult,
    APIMetrics,
    SyncPhase,
    SyncProgress,
    Transaction,
)
from monzo_budget.services.sync_state import SyncState
from monzo_budget.storage.store import Database

logger = get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[SyncProgress], None]

FRESH_TOKEN_LOOKBACK = timedelta(days=5 * 365)
STALE_TOKEN_LOOKBACK = timedelta(days=90)

MAX_CHUNK_DAYS = 90
MIN_CHUNK_DAYS = 1
ESTIMATED_DAILY_TRANSACTIONS = 5
SPARSE_CHUNK_RATIO = 0.25
MAX_RANGE_SHRINKS = 3
MAX_PAGES_PER_REQUEST_CHAIN = 500


@dataclass
class _RunStats:
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0


class ProgressReporter:
    """Emits progress events for one operation; the terminal event is sent once."""

    def __init__(
        self,
        account_id: str | None,
        callbacks: Iterable[ProgressCallback | None] = (),
    ) -> None:
        self.account_id = account_id
        self.callbacks = [callback for callback in callbacks if callback is not None]
        self.phase = SyncPhase.EMPTY
        self.current = 0
        self.total = 0
        self.finished = False

    def _send(self, event: SyncProgress) -> None:
        for callback in self.callbacks:
            try:
                callback(event)
            except Exception:
                logger.exception("[SYNC] Progress callback failed for %s", self.account_id)

    def emit(
        self,
        stage: str,
        current: int | None = None,
        total: int | None = None,
        phase: SyncPhase | None = None,
    ) -> None:
        if self.finished:
            return
        if phase is not None:
            self.phase = phase
        if current is not None:
            self.current = current
        if total is not None:
            self.total = total
        self._send(SyncProgress(
            is_in_progress=True,
            stage=stage,
            current=self.current,
            total=self.total,
            phase=self.phase,
            account_id=self.account_id,
        ))

    def finish(self, stage: str, phase: SyncPhase) -> None:
        if self.finished:
            return
        self.finished = True
        self.phase = phase
        self._send(SyncProgress(
            is_in_progress=False,
            stage=stage,
            current=self.current,
            total=self.total,
            phase=phase,
            account_id=self.account_id,
        ))


class SyncEngine:
    def __init__(
        self,
        client: MonzoClient,
        db: Database,
        state: SyncState,
        *,
        max_retries: int = 3,
        backoff_seconds: float = 1.0,
        page_limit: int = 100,
        metrics_cap: int = 50,
        recent_pull_minutes: int = 60,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.client = client
        self.db = db
        self.state = state
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.page_limit = page_limit
        self.metrics_cap = metrics_cap
        self.recent_pull_minutes = recent_pull_minutes
        self.clock = clock or state.clock
        self.last_progress: dict[str, SyncProgress] = {}

    # Throttling checks

    def is_token_stale(self) -> bool:
        return self.state.is_token_stale()

    async def record_token_issued(self, at: datetime | None = None) -> datetime:
        issued = self.state.record_token_issued(at)
        await self.state.flush()
        logger.info("[SYNC] Token issue time recorded: %s", issued.isoformat())
        return issued

    def was_recently_pulled(self, account_id: str, threshold_minutes: int | None = None) -> bool:
        last_pull = self.state.last_pull(account_id)
        if last_pull is None:
            return False
        if threshold_minutes is None:
            threshold_minutes = self.recent_pull_minutes
        return self.clock() - last_pull < timedelta(minutes=threshold_minutes)

    def get_status(self, account_id: str) -> dict[str, Any]:
        now = self.clock()
        last_pull = self.state.last_pull(account_id)
        last_incremental = self.state.last_incremental_sync(account_id)
        progress = self.last_progress.get(account_id)
        return {
            "account_id": account_id,
            "token_stale": self.is_token_stale(),
            "recently_pulled": self.was_recently_pulled(account_id),
            "last_pull": last_pull,
            "last_pull_display": format_age((now - last_pull).total_seconds()) if last_pull else None,
            "last_incremental_sync": last_incremental,
            "progress": progress.model_dump(mode="json") if progress else None,
        }

    # Metrics

    def get_api_metrics(self) -> list[APIMetrics]:
        return self.state.metrics()

    async def clear_api_metrics(self) -> None:
        self.state.clear_metrics()
        await self.state.flush()
        logger.info("[SYNC] API metrics cleared.")

    def _record_metrics(
        self,
        operation: str,
        account_id: str | None,
        stats: _RunStats,
        transaction_count: int,
        started: float,
    ) -> None:
        elapsed = perf_counter() - started
        record = APIMetrics(
            timestamp=self.clock(),
            account_id=account_id,
            operation=operation,
            total_requests=stats.total_requests,
            successful_requests=stats.successful_requests,
            failed_requests=stats.failed_requests,
            total_transactions=transaction_count,
            duration_ms=round(elapsed * 1000, 1),
        )
        self.state.append_metrics(record, self.metrics_cap)
        logger.info(
            "[SYNC] %s for %s: %s requests (%s failed), %s transactions in %s",
            operation,
            account_id,
            stats.total_requests,
            stats.failed_requests,
            transaction_count,
            format_duration(elapsed),
        )

    # Remote calls

    def _backoff_delay(self, attempt: int, exc: Exception) -> float:
        delay = self.backoff_seconds * (2 ** attempt)
        retry_after = getattr(exc, "retry_after", None)
        if retry_after:
            delay = max(delay, retry_after)
        return delay

    async def _call_with_retry(
        self,
        call: Callable[[], Awaitable[T]],
        stats: _RunStats,
        reporter: ProgressReporter,
        account_id: str | None,
    ) -> T:
        attempt = 0
        while True:
            stats.total_requests += 1
            try:
                result = await call()
            except (RateLimitError, TransportFailure) as exc:
                stats.failed_requests += 1
                if attempt >= self.max_retries:
                    raise RetriesExhaustedError(
                        f"Giving up after {attempt + 1} attempts: {exc}",
                        account_id=account_id,
                    ) from exc
                delay = self._backoff_delay(attempt, exc)
                reason = "Rate limited" if isinstance(exc, RateLimitError) else "Network error"
                logger.warning(
                    "[SYNC] %s for %s (attempt %s/%s), retrying in %.2fs",
                    reason,
                    account_id,
                    attempt + 1,
                    self.max_retries + 1,
                    delay,
                )
                reporter.emit(f"{reason}, retrying in {delay:.1f}s")
                await asyncio.sleep(delay)
                attempt += 1
                continue
            except Exception:
                stats.failed_requests += 1
                raise
            stats.successful_requests += 1
            return result

    async def _fetch_pages(
        self,
        account_id: str,
        fetched: list[dict[str, Any]],
        stats: _RunStats,
        reporter: ProgressReporter,
        *,
        since: datetime | None = None,
        before: datetime | None = None,
        starting_after: str | None = None,
    ) -> int:
        """Follow ``starting_after`` until a short page; returns pages fetched."""
        pages = 0
        while True:
            cursor = starting_after

            async def call() -> list[dict[str, Any]]:
                return await self.client.list_transactions(
                    account_id,
                    since=since,
                    before=before,
                    starting_after=cursor,
                    limit=self.page_limit,
                )

            page = await self._call_with_retry(call, stats, reporter, account_id)
            fetched.extend(page)
            pages += 1
            if len(page) < self.page_limit:
                return pages
            if pages >= MAX_PAGES_PER_REQUEST_CHAIN:
                logger.warning("[SYNC] Page limit reached for %s; stopping early.", account_id)
                return pages
            starting_after = page[-1].get("id")
            if not starting_after:
                return pages

    def _initial_chunk_days(self) -> int:
        estimate = self.page_limit // ESTIMATED_DAILY_TRANSACTIONS
        return max(MIN_CHUNK_DAYS, min(MAX_CHUNK_DAYS, estimate))

    async def _fetch_window(
        self,
        account_id: str,
        since: datetime,
        before: datetime,
        fetched: list[dict[str, Any]],
        stats: _RunStats,
        reporter: ProgressReporter,
    ) -> None:
        window = before - since
        if window <= timedelta(days=MAX_CHUNK_DAYS):
            chunk = window
        else:
            chunk = timedelta(days=self._initial_chunk_days())

        chunk_start = since
        chunks_done = 0
        shrinks = 0
        while chunk_start < before:
            chunk_end = min(chunk_start + chunk, before)
            remaining = math.ceil((before - chunk_start) / chunk)
            reporter.emit(
                f"Fetching {chunk_start:%Y-%m-%d} to {chunk_end:%Y-%m-%d}",
                current=chunks_done,
                total=chunks_done + remaining,
            )
            before_count = len(fetched)
            try:
                pages = await self._fetch_pages(
                    account_id,
                    fetched,
                    stats,
                    reporter,
                    since=chunk_start,
                    before=chunk_end,
                )
            except InvalidTimeRangeError as exc:
                shrinks += 1
                smaller = max(timedelta(days=MIN_CHUNK_DAYS), chunk / 2)
                if shrinks > MAX_RANGE_SHRINKS or smaller == chunk:
                    raise TimeRangeError(
                        f"time range error: window from {chunk_start:%Y-%m-%d} still rejected "
                        f"after {shrinks - 1} shrinks ({exc})",
                        account_id=account_id,
                    ) from exc
                chunk = smaller
                logger.warning(
                    "[SYNC] Invalid time range for %s; shrinking chunk to %s",
                    account_id,
                    chunk,
                )
                reporter.emit("time range error: retrying with smaller windows")
                continue

            shrinks = 0
            chunks_done += 1
            chunk_count = len(fetched) - before_count
            chunk_start = chunk_end
            if pages > 1:
                chunk = max(timedelta(days=MIN_CHUNK_DAYS), chunk / 2)
            elif chunk_count < self.page_limit * SPARSE_CHUNK_RATIO:
                chunk = min(timedelta(days=MAX_CHUNK_DAYS), chunk * 2)

        reporter.emit(f"Fetched {len(fetched)} transactions", current=chunks_done, total=chunks_done)

    # Persistence

    async def _persist(self, account_id: str, fetched: list[dict[str, Any]]) -> list[Transaction]:
        transactions = dedupe_transactions(parse_transactions(fetched, account_id))
        if transactions:
            await self.db.transactions.bulk_upsert(transactions)
        return transactions

    async def _newest_stored(self, account_id: str) -> Transaction | None:
        return await (
            self.db.transactions.where("account_id")
            .equals(account_id)
            .sort_by("created")
            .last()
        )

    async def _run(
        self,
        operation: str,
        account_id: str,
        reporter: ProgressReporter,
        fetch: Callable[[list[dict[str, Any]], _RunStats], Awaitable[None]],
    ) -> list[Transaction]:
        stats = _RunStats()
        fetched: list[dict[str, Any]] = []
        transactions: list[Transaction] = []
        started = perf_counter()
        try:
            await fetch(fetched, stats)
        except AuthenticationError:
            logger.error("[SYNC] Authentication failed for %s; re-authentication required.", account_id)
            reporter.finish("Authentication failed: please re-authenticate with Monzo", SyncPhase.FAILED)
            raise
        except Exception as exc:
            transactions = await self._persist(account_id, fetched)
            logger.error(
                "[SYNC] %s failed for %s after saving %s transactions: %s",
                operation,
                account_id,
                len(transactions),
                exc,
            )
            reporter.finish(f"Sync failed: {exc}", SyncPhase.FAILED)
            raise
        else:
            transactions = await self._persist(account_id, fetched)
            self.state.mark_pulled(account_id)
            reporter.finish(f"Synced {len(transactions)} transactions", SyncPhase.READY)
            return transactions
        finally:
            self._record_metrics(operation, account_id, stats, len(transactions), started)
            reporter.finish("Sync failed", SyncPhase.FAILED)
            await self.state.flush()

    def _reporter(self, account_id: str, on_progress: ProgressCallback | None) -> ProgressReporter:
        def remember(event: SyncProgress) -> None:
            self.last_progress[account_id] = event

        return ProgressReporter(account_id, (remember, on_progress))

    # Operations

    async def retrieve_transactions(
        self,
        account_id: str,
        force_full: bool = False,
        on_progress: ProgressCallback | None = None,
    ) -> list[Transaction]:
        reporter = self._reporter(account_id, on_progress)
        if not force_full and self.was_recently_pulled(account_id):
            logger.info("[SYNC] %s was pulled recently; skipping.", account_id)
            reporter.emit("Checking last pull", phase=SyncPhase.READY)
            self._record_metrics("skipped", account_id, _RunStats(), 0, perf_counter())
            await self.state.flush()
            reporter.finish("skipped", SyncPhase.READY)
            return []

        newest = await self._newest_stored(account_id)
        if newest is not None:
            logger.info("[SYNC] Fetching %s transactions after %s", account_id, newest.id)
            reporter.emit("Fetching new transactions", phase=SyncPhase.REFRESHING)

            async def fetch(fetched: list[dict[str, Any]], stats: _RunStats) -> None:
                pages = await self._fetch_pages(
                    account_id, fetched, stats, reporter, starting_after=newest.id
                )
                reporter.emit(f"Fetched {len(fetched)} new transactions", current=pages, total=pages)

            return await self._run("retrieve", account_id, reporter, fetch)

        now = self.clock()
        stale = self.is_token_stale()
        since = now - (STALE_TOKEN_LOOKBACK if stale else FRESH_TOKEN_LOOKBACK)
        logger.info(
            "[SYNC] Backfilling %s from %s (token %s)",
            account_id,
            since.date(),
            "stale" if stale else "fresh",
        )
        reporter.emit("Starting history backfill", phase=SyncPhase.BACKFILLING)

        async def fetch(fetched: list[dict[str, Any]], stats: _RunStats) -> None:
            await self._fetch_window(account_id, since, now, fetched, stats, reporter)

        return await self._run("retrieve", account_id, reporter, fetch)

    async def incremental_sync(
        self,
        account_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> list[Transaction]:
        started_at = self.clock()
        watermark = self.state.last_incremental_sync(account_id)
        if watermark is None:
            logger.info("[SYNC] No incremental watermark for %s; running full retrieval.", account_id)
            transactions = await self.retrieve_transactions(account_id, force_full=True, on_progress=on_progress)
        else:
            reporter = self._reporter(account_id, on_progress)
            reporter.emit(f"Fetching transactions since {watermark:%Y-%m-%d %H:%M}", phase=SyncPhase.REFRESHING)

            async def fetch(fetched: list[dict[str, Any]], stats: _RunStats) -> None:
                await self._fetch_pages(account_id, fetched, stats, reporter, since=watermark)

            transactions = await self._run("incremental", account_id, reporter, fetch)

        self.state.mark_incremental_sync(account_id, started_at)
        await self.state.flush()
        return transactions

    async def force_refresh_all_transactions(
        self,
        accounts: Iterable[Account | str],
        on_progress: ProgressCallback | None = None,
    ) -> list[AccountSyncResult]:
        account_ids = [account.id if isinstance(account, Account) else account for account in accounts]
        total = len(account_ids)
        reporter = ProgressReporter(None, (on_progress,))
        reporter.emit(f"Refreshing {total} accounts", current=0, total=total, phase=SyncPhase.REFRESHING)
        completed = 0

        async def refresh(account_id: str) -> list[Transaction]:
            nonlocal completed
            try:
                return await self.retrieve_transactions(account_id, force_full=True)
            finally:
                completed += 1
                reporter.emit(f"Refreshed {completed} of {total} accounts", current=completed)

        outcomes = await asyncio.gather(
            *(refresh(account_id) for account_id in account_ids),
            return_exceptions=True,
        )

        results: list[AccountSyncResult] = []
        for account_id, outcome in zip(account_ids, outcomes):
            if isinstance(outcome, BaseException):
                logger.error("[SYNC] Refresh failed for %s: %s", account_id, outcome)
                results.append(AccountSyncResult(account_id=account_id, success=False, error=str(outcome)))
            else:
                results.append(AccountSyncResult(account_id=account_id, success=True, transactions=len(outcome)))

        failed = sum(1 for result in results if not result.success)
        if total and failed == total:
            reporter.finish(f"All {total} accounts failed to refresh", SyncPhase.FAILED)
        elif failed:
            reporter.finish(f"Refreshed {total - failed} of {total} accounts ({failed} failed)", SyncPhase.READY)
        else:
            reporter.finish(f"Refreshed {total} accounts", SyncPhase.READY)
        return results

    async def sync_accounts(self) -> list[Account]:
        reporter = ProgressReporter(None)
        accounts = parse_accounts(
            await self._call_with_retry(self.client.list_accounts, _RunStats(), reporter, None)
        )
        await self.db.accounts.bulk_upsert(accounts)
        logger.info("[SYNC] Stored %s accounts.", len(accounts))
        return accounts

    async def stream_sync(self, account_id: str, force_full: bool = False) -> AsyncGenerator[str, None]:
        queue: asyncio.Queue[SyncProgress | None] = asyncio.Queue()
        task = asyncio.create_task(
            self.retrieve_transactions(account_id, force_full=force_full, on_progress=queue.put_nowait)
        )
        task.add_done_callback(lambda _: queue.put_nowait(None))
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield f"data: {event.model_dump_json()}\n\n"

            if task.cancelled():
                return
            exc = task.exception()
            if exc is not None:
                payload = {"stage": "error", "message": str(exc), "is_in_progress": False}
                if isinstance(exc, AuthenticationError):
                    payload["reauthenticate"] = True
                yield f"data: {json.dumps(payload)}\n\n"
            else:
                payload = {"stage": "complete", "transactions": len(task.result()), "is_in_progress": False}
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            if not task.done():
                task.cancel()
