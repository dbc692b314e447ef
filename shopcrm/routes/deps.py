from fastapi import HTTPException, Request

from ..services.sync_manager import SyncManager
from ..store.local_store import COLLECTIONS, LocalStore


def get_store(request: Request) -> LocalStore:
    store = getattr(request.app.state, "store", None)
    if store is None:
        raise HTTPException(status_code=503, detail="Store not ready")
    return store


def get_sync_manager(request: Request) -> SyncManager:
    manager = getattr(request.app.state, "sync_manager", None)
    if manager is None:
        raise HTTPException(status_code=503, detail="Sync manager not ready")
    return manager


def check_collection(name: str) -> str:
    if name not in COLLECTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown collection: {name}")
    return name
