from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..config import settings
from ..rate_limit import limiter
from ..services.data_transform import safe_date_parse, utc_now_iso
from ..services.notifications import send_estimate_email, send_estimate_whatsapp
from ..store.local_store import LocalStore
from .deps import get_store


router = APIRouter(prefix="/api/estimates", tags=["estimates"])
public_router = APIRouter(prefix="/public/estimates", tags=["public"])


def _is_expired(estimate: dict) -> bool:
    valid_until = safe_date_parse(estimate.get("validUntil"))
    # Canonical timestamps compare correctly as strings
    return bool(valid_until) and valid_until < utc_now_iso()


def _respondable(store: LocalStore, token: str) -> dict:
    estimate = store.get_estimate_by_token(token)
    if not estimate:
        raise HTTPException(status_code=404, detail="Estimate not found")
    if estimate.get("status") != "sent":
        raise HTTPException(status_code=409, detail=f"Estimate is already {estimate.get('status')}")
    if _is_expired(estimate):
        raise HTTPException(status_code=409, detail="Estimate has expired")
    return estimate


# ----- Staff -----
@router.post("/{estimate_id}/convert", status_code=201)
def convert_to_invoice(estimate_id: str, store: LocalStore = Depends(get_store)):
    invoice = store.convert_estimate_to_invoice(estimate_id)
    if invoice is None:
        raise HTTPException(status_code=404, detail="Estimate not found")
    return invoice


@router.post("/{estimate_id}/send")
def send_estimate(
    estimate_id: str,
    channels: List[str] = Query(default=["email"]),
    store: LocalStore = Depends(get_store),
):
    estimate = store.get("estimates", estimate_id)
    if not estimate:
        raise HTTPException(status_code=404, detail="Estimate not found")
    customer = store.resolve("customers", estimate.get("customerId"))
    shop_settings = store.get_settings()

    results = []
    if "email" in channels:
        results.append(send_estimate_email(shop_settings, estimate, customer))
    if "whatsapp" in channels:
        results.append(send_estimate_whatsapp(shop_settings, estimate, customer))

    sent_via = [r.channel for r in results if r.success]
    if sent_via and estimate.get("status") == "draft":
        estimate = store.update_estimate(estimate_id, {"status": "sent", "sentAt": utc_now_iso()})
    return {
        "estimate": estimate,
        "sent_via": sent_via,
        "errors": {r.channel: r.error for r in results if not r.success},
    }


# ----- Public (token link) -----
@public_router.get("/{token}")
@limiter.limit(settings.public_rate_limit)
def view_estimate(request: Request, token: str, store: LocalStore = Depends(get_store)):
    estimate = store.get_estimate_by_token(token)
    if not estimate:
        raise HTTPException(status_code=404, detail="Estimate not found")
    customer = store.resolve("customers", estimate.get("customerId"))
    shop_settings = store.get_settings()
    return {
        "estimate": estimate,
        "customer": {"name": customer.get("name")},
        "business": {
            "name": shop_settings.get("businessName"),
            "currency": shop_settings.get("currency"),
        },
        "can_respond": estimate.get("status") == "sent" and not _is_expired(estimate),
    }


@public_router.post("/{token}/accept")
@limiter.limit(settings.public_rate_limit)
def accept_estimate(request: Request, token: str, store: LocalStore = Depends(get_store)):
    _respondable(store, token)
    return store.accept_estimate(token)


@public_router.post("/{token}/decline")
@limiter.limit(settings.public_rate_limit)
def decline_estimate(request: Request, token: str, store: LocalStore = Depends(get_store)):
    _respondable(store, token)
    return store.decline_estimate(token)
