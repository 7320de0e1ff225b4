from collections.abc import Iterable
from datetime import datetime
from typing import Any

from pydantic import ValidationError

from monzo_budget.logger import get_logger
from monzo_budget.models import Account, Transaction

logger = get_logger(__name__)

OTHER_CATEGORY = "other"


def parse_transaction(raw: dict[str, Any], account_id: str | None = None) -> Transaction | None:
    data = dict(raw)
    if account_id and not data.get("account_id"):
        data["account_id"] = account_id
    try:
        return Transaction.model_validate(data)
    except ValidationError as exc:
        logger.warning(
            "[SYNC] Skipping malformed transaction %s: %s",
            raw.get("id", "<no id>"),
            exc.errors()[0].get("msg") if exc.errors() else exc,
        )
        return None


def parse_transactions(raw_txs: Iterable[dict[str, Any]], account_id: str | None = None) -> list[Transaction]:
    parsed = []
    for raw in raw_txs:
        transaction = parse_transaction(raw, account_id)
        if transaction is not None:
            parsed.append(transaction)
    return parsed


def parse_accounts(raw_accounts: Iterable[dict[str, Any]]) -> list[Account]:
    accounts = []
    for raw in raw_accounts:
        try:
            accounts.append(Account.model_validate(raw))
        except ValidationError:
            logger.warning("[SYNC] Skipping malformed account %s", raw.get("id", "<no id>"))
    return accounts


def dedupe_transactions(transactions: Iterable[Transaction]) -> list[Transaction]:
    """Collapse copies of the same transaction id.

    The first copy seen wins, except that a settled copy replaces a pending one
    (pending amounts can change on settlement). Output keeps first-seen order.
    """
    kept: dict[str, Transaction] = {}
    for transaction in transactions:
        existing = kept.get(transaction.id)
        if existing is None:
            kept[transaction.id] = transaction
        elif transaction.is_settled and not existing.is_settled:
            kept[transaction.id] = transaction
    return list(kept.values())


def normalize_category(category: str | None) -> str:
    cleaned = (category or "").strip()
    return cleaned or OTHER_CATEGORY


def format_api_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")
