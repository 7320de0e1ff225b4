from fastapi import HTTPException, Request

from monzo_budget.integration.monzo import MonzoClient
from monzo_budget.services.bills import BillService
from monzo_budget.services.debt_processing import DebtProcessor
from monzo_budget.services.preferences import PreferencesService
from monzo_budget.services.sync import SyncEngine
from monzo_budget.storage.store import Database


def get_db(request: Request) -> Database:
    db = getattr(request.app.state, "db", None)
    if not db:
        raise HTTPException(status_code=500, detail="Store not initialized")
    return db


def get_monzo(request: Request) -> MonzoClient:
    monzo = getattr(request.app.state, "monzo", None)
    if not monzo:
        raise HTTPException(status_code=500, detail="Monzo client not configured")
    return monzo


def get_sync_engine(request: Request) -> SyncEngine:
    engine = getattr(request.app.state, "sync_engine", None)
    if not engine:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return engine


def get_preferences(request: Request) -> PreferencesService:
    preferences = getattr(request.app.state, "preferences", None)
    if not preferences:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return preferences


def get_debt_processor(request: Request) -> DebtProcessor:
    processor = getattr(request.app.state, "debt_processor", None)
    if not processor:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return processor


def get_bill_service(request: Request) -> BillService:
    service = getattr(request.app.state, "bill_service", None)
    if not service:
        raise HTTPException(status_code=500, detail="Service not initialized")
    return service
