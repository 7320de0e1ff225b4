from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from monzo_budget.api.dependencies import get_db, get_monzo, get_sync_engine
from monzo_budget.api.schemas import RefreshAllRequest, TokenRequest
from monzo_budget.core import settings
from monzo_budget.integration.monzo import MonzoClient
from monzo_budget.logger import get_logger
from monzo_budget.models import AccountSyncResult, APIMetrics
from monzo_budget.services.sync import SyncEngine
from monzo_budget.storage.store import Database

logger = get_logger(__name__)

router = APIRouter()


@router.post("/api/token")
async def record_token(
    req: TokenRequest,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    monzo: Annotated[MonzoClient, Depends(get_monzo)],
) -> dict[str, str | bool]:
    if req.token:
        monzo.refresh(token=req.token)
        logger.info("[API] Monzo token updated.")
    issued = await engine.record_token_issued(req.issued_at)
    return {"status": "success", "issued_at": issued.isoformat(), "token_stale": engine.is_token_stale()}


@router.post("/api/sync/accounts")
async def sync_accounts(
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
) -> dict:
    accounts = await engine.sync_accounts()
    return {"status": "success", "accounts": [account.model_dump(mode="json") for account in accounts]}


@router.post("/api/sync/refresh-all")
async def refresh_all(
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    db: Annotated[Database, Depends(get_db)],
    req: RefreshAllRequest | None = None,
) -> list[AccountSyncResult]:
    if req and req.account_ids:
        account_ids = req.account_ids
    else:
        account_ids = [account.id for account in await db.accounts.to_list() if not account.closed]
    return await engine.force_refresh_all_transactions(account_ids)


@router.post("/api/sync/{account_id}")
async def sync_account(
    account_id: str,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    force_full: bool = False,
) -> dict:
    transactions = await engine.retrieve_transactions(account_id, force_full=force_full)
    return {"status": "success", "account_id": account_id, "transactions": len(transactions)}


@router.post("/api/sync/{account_id}/incremental")
async def sync_account_incremental(
    account_id: str,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
) -> dict:
    transactions = await engine.incremental_sync(account_id)
    return {"status": "success", "account_id": account_id, "transactions": len(transactions)}


@router.get("/api/sync/{account_id}/status")
async def sync_status(
    account_id: str,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
) -> dict:
    return engine.get_status(account_id)


@router.get("/api/sync-stream/{account_id}")
async def sync_stream(
    account_id: str,
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
    force_full: bool = False,
) -> StreamingResponse:
    return StreamingResponse(
        engine.stream_sync(account_id, force_full=force_full),
        media_type="text/event-stream",
        headers=settings.SSE_HEADERS,
    )


@router.get("/api/metrics")
async def get_metrics(
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
) -> list[APIMetrics]:
    return engine.get_api_metrics()


@router.delete("/api/metrics")
async def clear_metrics(
    engine: Annotated[SyncEngine, Depends(get_sync_engine)],
) -> dict[str, str]:
    await engine.clear_api_metrics()
    return {"status": "cleared"}
