from fastapi import APIRouter, Depends, HTTPException

from ..schemas.records import JobImageUpload, JobStatusChange
from ..services.images import ImageValidationError, prepare_job_image
from ..services.notifications import job_message, notify_shop
from ..store.local_store import LocalStore
from .deps import get_store


router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _status_name(store: LocalStore, status_id):
    status = store.get("statuses", status_id) if status_id else None
    return (status or {}).get("name") or status_id


@router.post("", status_code=201)
def create_job(payload: dict, store: LocalStore = Depends(get_store)):
    job = store.add_job(payload)
    customer = store.resolve("customers", job.get("customerId"))
    message = job_message("new_job", job, customer.get("name"), status_name=_status_name(store, job.get("status")))
    notify_shop(store.get_settings(), "new_job", message)
    return job


@router.get("/{job_id}")
def get_job(job_id: str, store: LocalStore = Depends(get_store)):
    job = store.get("jobs", job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return {
        "job": job,
        "customer": store.resolve("customers", job.get("customerId")),
        "status": store.resolve("statuses", job.get("status")),
    }


@router.get("/{job_id}/history")
def get_job_history(job_id: str, store: LocalStore = Depends(get_store)):
    job = store.get("jobs", job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Job not found")
    return job.get("history") or []


@router.post("/{job_id}/status")
def change_job_status(
    job_id: str,
    body: JobStatusChange,
    store: LocalStore = Depends(get_store),
):
    current = store.get("jobs", job_id)
    if not current:
        raise HTTPException(status_code=404, detail="Job not found")

    old_status = current.get("status")
    job = store.update_job(job_id, {"status": body.status, "statusNote": body.note})
    if job is None:
        # Deleted since it was read above
        raise HTTPException(status_code=404, detail="Job not found")

    if body.notify and body.status != old_status:
        customer = store.resolve("customers", job.get("customerId"))
        if body.status == "delivered":
            kind = "job_completed"
            message = job_message(kind, job, customer.get("name"))
        else:
            kind = "status_update"
            message = job_message(
                kind,
                job,
                customer.get("name"),
                old_status=_status_name(store, old_status),
                new_status=_status_name(store, body.status),
                note=body.note,
            )
        notify_shop(store.get_settings(), kind, message)
    return job


@router.post("/{job_id}/images", status_code=201)
def upload_job_image(job_id: str, body: JobImageUpload, store: LocalStore = Depends(get_store)):
    if not store.get("jobs", job_id):
        raise HTTPException(status_code=404, detail="Job not found")
    try:
        data = prepare_job_image(body.data)
    except ImageValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))
    image = store.add_job_image(job_id, body.status, data)
    if image is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return image


@router.delete("/{job_id}/images/{status}/{image_id}")
def delete_job_image(job_id: str, status: str, image_id: str, store: LocalStore = Depends(get_store)):
    if not store.delete_job_image(job_id, status, image_id):
        raise HTTPException(status_code=404, detail="Image not found")
    return {"status": "ok"}
