"""Keyed table store used for accounts, transactions, budgets, debts and bills.

Every table is keyed by the record ``id``; writes are upserts so applying the
same batch twice, or two batches in either order, leaves the same state. A
table can optionally mirror itself to ``<data_dir>/<name>.json``.
"""
import asyncio
import json
import os
from collections.abc import Callable, Iterable
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError

from monzo_budget.core.errors import RecordNotFoundError
from monzo_budget.logger import get_logger
from monzo_budget.models import (
    Account,
    Bill,
    BillPayment,
    Budget,
    BudgetCategory,
    CreditorMatchingRule,
    Debt,
    DebtPaymentHistory,
    DebtTransactionMatch,
    Transaction,
    UserPreferences,
)

logger = get_logger(__name__)

T = TypeVar("T", bound=BaseModel)

Predicate = Callable[[Any], bool]


def _write_json(path: str, payload: Any) -> None:
    directory = os.path.dirname(path)
    if directory:
        os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.tmp"
    with open(tmp_path, "w", encoding="utf-8") as handle:
        json.dump(payload, handle, indent=2)
    os.replace(tmp_path, path)


class Collection(Generic[T]):
    """Lazy filtered/sorted view over a table, evaluated on each read."""

    def __init__(
        self,
        table: "Table[T]",
        predicates: tuple[Predicate, ...] = (),
        sort_field: str | None = None,
        descending: bool = False,
    ) -> None:
        self._table = table
        self._predicates = predicates
        self._sort_field = sort_field
        self._descending = descending

    def filter(self, predicate: Callable[[T], bool]) -> "Collection[T]":
        return Collection(self._table, self._predicates + (predicate,), self._sort_field, self._descending)

    def sort_by(self, field: str) -> "Collection[T]":
        return Collection(self._table, self._predicates, field, self._descending)

    def reverse(self) -> "Collection[T]":
        return Collection(self._table, self._predicates, self._sort_field, not self._descending)

    def _evaluate(self) -> list[T]:
        records = [
            record for record in self._table.records()
            if all(predicate(record) for predicate in self._predicates)
        ]
        if self._sort_field:
            field = self._sort_field
            records.sort(key=lambda record: (getattr(record, field), record.id))
        if self._descending:
            records.reverse()
        return records

    async def to_list(self) -> list[T]:
        return self._evaluate()

    async def first(self) -> T | None:
        records = self._evaluate()
        return records[0] if records else None

    async def last(self) -> T | None:
        records = self._evaluate()
        return records[-1] if records else None

    async def count(self) -> int:
        return len(self._evaluate())

    async def delete(self) -> int:
        ids = [record.id for record in self._evaluate()]
        return await self._table.bulk_delete(ids)


class WhereClause(Generic[T]):
    def __init__(self, table: "Table[T]", field: str) -> None:
        self._table = table
        self._field = field

    def equals(self, value: Any) -> Collection[T]:
        field = self._field
        return Collection(self._table, (lambda record: getattr(record, field) == value,))

    def any_of(self, values: Iterable[Any]) -> Collection[T]:
        field = self._field
        wanted = set(values)
        return Collection(self._table, (lambda record: getattr(record, field) in wanted,))

    def between(self, lower: Any, upper: Any, *, include_upper: bool = True) -> Collection[T]:
        field = self._field

        def in_range(record: Any) -> bool:
            value = getattr(record, field)
            if value < lower:
                return False
            return value <= upper if include_upper else value < upper

        return Collection(self._table, (in_range,))


class Table(Generic[T]):
    def __init__(self, name: str, model: type[T], path: str | None = None) -> None:
        self.name = name
        self.model = model
        self.path = path
        self._records: dict[str, T] = {}
        self._save_lock = asyncio.Lock()
        self.load()

    def load(self) -> None:
        if not self.path or not os.path.exists(self.path):
            return
        try:
            with open(self.path, encoding="utf-8") as handle:
                rows = json.load(handle)
        except json.JSONDecodeError:
            logger.error("[STORE] %s is not valid JSON; starting with an empty %s table.", self.path, self.name)
            return
        for row in rows:
            try:
                record = self.model.model_validate(row)
            except ValidationError:
                logger.warning("[STORE] Dropping unreadable %s record %s", self.name, row.get("id"))
                continue
            self._records[record.id] = record
        logger.debug("[STORE] Loaded %s %s records", len(self._records), self.name)

    async def _persist(self) -> None:
        if not self.path:
            return
        payload = [record.model_dump(mode="json") for record in self._records.values()]
        async with self._save_lock:
            await asyncio.to_thread(_write_json, self.path, payload)

    def records(self) -> list[T]:
        return list(self._records.values())

    async def add(self, record: T) -> str:
        if record.id in self._records:
            raise ValueError(f"{self.name} record '{record.id}' already exists")
        self._records[record.id] = record
        await self._persist()
        return record.id

    async def put(self, record: T) -> str:
        self._records[record.id] = record
        await self._persist()
        return record.id

    async def bulk_upsert(self, records: Iterable[T]) -> int:
        count = 0
        for record in records:
            self._records[record.id] = record
            count += 1
        if count:
            await self._persist()
        return count

    async def get(self, record_id: str) -> T | None:
        return self._records.get(record_id)

    async def require(self, record_id: str) -> T:
        record = self._records.get(record_id)
        if record is None:
            raise RecordNotFoundError(self.name, record_id)
        return record

    async def update(self, record_id: str, **changes: Any) -> T:
        record = await self.require(record_id)
        updated = record.model_copy(update=changes)
        self._records[record_id] = updated
        await self._persist()
        return updated

    async def delete(self, record_id: str) -> bool:
        removed = self._records.pop(record_id, None)
        if removed is not None:
            await self._persist()
        return removed is not None

    async def bulk_delete(self, record_ids: Iterable[str]) -> int:
        removed = 0
        for record_id in record_ids:
            if self._records.pop(record_id, None) is not None:
                removed += 1
        if removed:
            await self._persist()
        return removed

    async def clear(self) -> None:
        self._records.clear()
        await self._persist()

    async def count(self) -> int:
        return len(self._records)

    async def to_list(self) -> list[T]:
        return self.records()

    def where(self, field: str) -> WhereClause[T]:
        return WhereClause(self, field)

    def order_by(self, field: str) -> Collection[T]:
        return Collection(self, sort_field=field)

    def filter(self, predicate: Callable[[T], bool]) -> Collection[T]:
        return Collection(self, (predicate,))


class Database:
    def __init__(self, data_dir: str | None = None) -> None:
        self.data_dir = data_dir
        self.accounts: Table[Account] = self._table("accounts", Account)
        self.transactions: Table[Transaction] = self._table("transactions", Transaction)
        self.budgets: Table[Budget] = self._table("budgets", Budget)
        self.budget_categories: Table[BudgetCategory] = self._table("budget_categories", BudgetCategory)
        self.debts: Table[Debt] = self._table("debts", Debt)
        self.creditor_matching_rules: Table[CreditorMatchingRule] = self._table(
            "creditor_matching_rules", CreditorMatchingRule
        )
        self.debt_transaction_matches: Table[DebtTransactionMatch] = self._table(
            "debt_transaction_matches", DebtTransactionMatch
        )
        self.debt_payment_history: Table[DebtPaymentHistory] = self._table(
            "debt_payment_history", DebtPaymentHistory
        )
        self.bills: Table[Bill] = self._table("bills", Bill)
        self.bill_payments: Table[BillPayment] = self._table("bill_payments", BillPayment)
        self.user_preferences: Table[UserPreferences] = self._table("user_preferences", UserPreferences)

    def _table(self, name: str, model: type[T]) -> Table[T]:
        path = os.path.join(self.data_dir, f"{name}.json") if self.data_dir else None
        return Table(name, model, path)

    def tables(self) -> list[Table[Any]]:
        return [value for value in vars(self).values() if isinstance(value, Table)]

    async def reset(self) -> None:
        for table in self.tables():
            await table.clear()
        logger.info("[STORE] All tables cleared.")


class KeyValueStore:
    """Key/value store for sync bookkeeping.

    Reads and writes happen in memory; ``flush()`` writes pending changes to disk
    off the event loop.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = path
        self._values: dict[str, Any] = {}
        self._dirty = False
        self._save_lock = asyncio.Lock()
        self.load()

    def load(self) -> None:
        if self.path and os.path.exists(self.path):
            try:
                with open(self.path, encoding="utf-8") as handle:
                    self._values = json.load(handle)
            except json.JSONDecodeError:
                logger.error("[STORE] %s is not valid JSON; starting empty.", self.path)
                self._values = {}

    async def flush(self) -> None:
        if not self.path or not self._dirty:
            return
        async with self._save_lock:
            payload = dict(self._values)
            self._dirty = False
            await asyncio.to_thread(_write_json, self.path, payload)

    def get(self, key: str, default: Any = None) -> Any:
        return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._dirty = True

    def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._dirty = True

    def keys(self, prefix: str = "") -> list[str]:
        return [key for key in self._values if key.startswith(prefix)]

    def clear(self) -> None:
        self._values = {}
        self._dirty = True
