from fastapi import APIRouter, Depends

from ..schemas.sync import PullRequest, SyncResult, SyncStatus
from ..services.sync_manager import SyncManager
from .deps import get_sync_manager


router = APIRouter(prefix="/api/sync", tags=["sync"])


@router.get("/status", response_model=SyncStatus)
def sync_status(manager: SyncManager = Depends(get_sync_manager)):
    return manager.get_status()


@router.post("/push", response_model=SyncResult)
async def sync_push(manager: SyncManager = Depends(get_sync_manager)):
    return await manager.manual_sync()


@router.post("/pull", response_model=SyncResult)
async def sync_pull(body: PullRequest, manager: SyncManager = Depends(get_sync_manager)):
    return await manager.pull(body.strategy)
