from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException

from ..services.notifications import customer_message, notify_shop
from ..store.local_store import LocalStore, public_user
from .deps import check_collection, get_store


router = APIRouter(prefix="/api/collections", tags=["collections"])


def _public(name: str, record: Dict[str, Any]) -> Dict[str, Any]:
    return public_user(record) if name == "users" else record


@router.get("/{name}")
def list_records(name: str = Depends(check_collection), store: LocalStore = Depends(get_store)):
    return [_public(name, r) for r in store.list(name)]


@router.get("/{name}/{record_id}")
def get_record(record_id: str, name: str = Depends(check_collection), store: LocalStore = Depends(get_store)):
    record = store.get(name, record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return _public(name, record)


@router.post("/{name}", status_code=201)
def create_record(
    payload: dict,
    name: str = Depends(check_collection),
    store: LocalStore = Depends(get_store),
):
    record = store.add_record(name, payload)
    if name == "customers":
        notify_shop(store.get_settings(), "new_customer", customer_message(record))
    return _public(name, record)


@router.patch("/{name}/{record_id}")
@router.put("/{name}/{record_id}")
def update_record(
    record_id: str,
    payload: dict,
    name: str = Depends(check_collection),
    store: LocalStore = Depends(get_store),
):
    record = store.update_record(name, record_id, payload)
    if record is None:
        raise HTTPException(status_code=404, detail="Record not found")
    return _public(name, record)


@router.delete("/{name}/{record_id}")
def delete_record(record_id: str, name: str = Depends(check_collection), store: LocalStore = Depends(get_store)):
    if name == "customers":
        jobs = store.filter("jobs", "customerId", record_id)
        if jobs:
            raise HTTPException(
                status_code=409,
                detail=f"This customer has {len(jobs)} job(s) associated. Delete those jobs first.",
            )
    if not store.delete_record(name, record_id):
        raise HTTPException(status_code=404, detail="Record not found")
    return {"status": "ok"}
