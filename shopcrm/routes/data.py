from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from ..schemas.records import LoginRequest, TicketReplyCreate
from ..services.backup import BackupFormatError, export_bundle, import_bundle
from ..store.local_store import LocalStore
from .deps import get_store


router = APIRouter(prefix="/api", tags=["data"])


@router.get("/stats")
def stats(store: LocalStore = Depends(get_store)):
    return store.get_stats()


@router.get("/settings")
def get_settings(store: LocalStore = Depends(get_store)):
    return store.get_settings()


@router.patch("/settings")
def update_settings(payload: dict, store: LocalStore = Depends(get_store)):
    return store.update_settings(payload)


@router.post("/statuses/reorder")
def reorder_statuses(payload: dict, store: LocalStore = Depends(get_store)):
    ids = payload.get("ids")
    if not isinstance(ids, list):
        raise HTTPException(status_code=400, detail="ids must be a list")
    return store.reorder_statuses([str(i) for i in ids])


@router.post("/leads/{lead_id}/convert", status_code=201)
def convert_lead(lead_id: str, store: LocalStore = Depends(get_store)):
    customer = store.convert_lead_to_customer(lead_id)
    if customer is None:
        raise HTTPException(status_code=404, detail="Lead not found")
    return customer


@router.post("/tickets/{ticket_id}/replies", status_code=201)
def add_ticket_reply(ticket_id: str, body: TicketReplyCreate, store: LocalStore = Depends(get_store)):
    reply = store.add_ticket_reply(ticket_id, {
        "message": body.message,
        "author": body.author,
        "isStaff": bool(body.is_staff),
    })
    if reply is None:
        raise HTTPException(status_code=404, detail="Ticket not found")
    return reply


@router.post("/auth/login")
def login(body: LoginRequest, store: LocalStore = Depends(get_store)):
    user = store.authenticate(body.username, body.password)
    if user is None:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return user


# ----- Backup -----
@router.get("/export")
def export_data(store: LocalStore = Depends(get_store)):
    filename = f"crm-backup-{datetime.now().strftime('%Y-%m-%d')}.json"
    return JSONResponse(
        content=export_bundle(store),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import")
async def import_data(request: Request, store: LocalStore = Depends(get_store)):
    try:
        bundle = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Import file is not valid JSON")
    if not isinstance(bundle, dict):
        raise HTTPException(status_code=400, detail="Import file must be a JSON object")
    try:
        counts = import_bundle(store.storage, bundle, store.storage_key)
    except BackupFormatError as e:
        raise HTTPException(status_code=400, detail=str(e))
    store.reload()
    return {"status": "ok", "imported": counts}
