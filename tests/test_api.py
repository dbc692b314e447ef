"""HTTP tests for the FastAPI app (local-only mode, no remote backend).

Tests:
- Health and request id propagation
- Jobs: create, detail with resolved references, status changes, images
- Generic collections CRUD and referential checks
- Estimates: send, convert, public token flow
- Sync endpoints, backup export/import, login, settings, stats
"""
import base64
import io
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from shopcrm.main import create_app
from shopcrm.services.notifications import NotificationResult
from shopcrm.services.sync_manager import build_sync_manager
from shopcrm.storage.provider import MemoryStateStorage
from shopcrm.store.local_store import LocalStore


@pytest.fixture
def client(store, offline_backend):
    app = create_app(store=store, sync_manager=build_sync_manager(store, offline_backend), enable_metrics=False)
    return TestClient(app)


def _png_data_url():
    buf = io.BytesIO()
    Image.new("RGB", (40, 20), (10, 120, 200)).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode()


def _customer(client, **fields):
    payload = {"name": "Asha", "phone": "+91 98765 43210"}
    payload.update(fields)
    return client.post("/api/collections/customers", json=payload).json()


def _job(client, customer_id, **fields):
    payload = {"customerId": customer_id, "status": "received", "vehicleMake": "BMW", "vehicleModel": "M3"}
    payload.update(fields)
    return client.post("/api/jobs", json=payload).json()


# ═══════════════════════════════════════════════
# App basics
# ═══════════════════════════════════════════════

class TestApp:

    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok", "sync": "uninitialized"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_is_generated(self, client):
        assert client.get("/health").headers["X-Request-ID"]

    def test_store_not_ready(self):
        app = create_app(store=None, sync_manager=None, enable_metrics=False)
        response = TestClient(app).get("/api/stats")
        assert response.status_code == 503


# ═══════════════════════════════════════════════
# Jobs
# ═══════════════════════════════════════════════

class TestJobs:

    def test_create_job(self, client):
        customer = _customer(client)
        response = client.post("/api/jobs", json={"customerId": customer["id"], "status": "received"})
        assert response.status_code == 201
        job = response.json()
        assert job["history"][0]["note"] == "Job created"

    def test_job_detail_resolves_references(self, client):
        customer = _customer(client)
        job = _job(client, customer["id"])
        detail = client.get(f"/api/jobs/{job['id']}").json()
        assert detail["customer"]["name"] == "Asha"
        assert detail["status"]["name"] == "Received"

    def test_dangling_customer_shows_placeholder(self, client):
        job = _job(client, "deleted-customer")
        detail = client.get(f"/api/jobs/{job['id']}").json()
        assert detail["customer"] == {"id": "deleted-customer", "name": "Not found", "missing": True}

    def test_status_change_appends_history(self, client):
        job = _job(client, _customer(client)["id"])
        response = client.post(f"/api/jobs/{job['id']}/status", json={"status": "painting", "note": "Primer done"})
        assert response.status_code == 200
        history = client.get(f"/api/jobs/{job['id']}/history").json()
        assert [h["status"] for h in history] == ["received", "painting"]
        assert history[-1]["note"] == "Primer done"

    def test_status_change_notifies_shop(self, client, store):
        store.update_settings({"whatsapp": {"enabled": True, "phone": "1", "apiKey": "k", "notifyJobComplete": True}})
        job = _job(client, _customer(client)["id"], totalPrice=1500)
        with patch("shopcrm.routes.jobs.notify_shop") as notify:
            client.post(f"/api/jobs/{job['id']}/status", json={"status": "delivered"})
        _, kind, message = notify.call_args[0]
        assert kind == "job_completed"
        assert "total 1500" in message

    def test_missing_job(self, client):
        assert client.get("/api/jobs/nope").status_code == 404
        assert client.get("/api/jobs/nope/history").status_code == 404
        assert client.post("/api/jobs/nope/status", json={"status": "ready"}).status_code == 404

    def test_status_change_for_job_deleted_meanwhile(self, client, store):
        job = _job(client, _customer(client)["id"])
        with patch.object(store, "update_job", return_value=None):
            response = client.post(f"/api/jobs/{job['id']}/status", json={"status": "ready"})
        assert response.status_code == 404

    def test_images(self, client):
        job = _job(client, _customer(client)["id"])
        response = client.post(f"/api/jobs/{job['id']}/images", json={"status": "received", "data": _png_data_url()})
        assert response.status_code == 201
        image = response.json()
        stored = client.get(f"/api/jobs/{job['id']}").json()["job"]["images"]["received"]
        assert [i["id"] for i in stored] == [image["id"]]

        url = f"/api/jobs/{job['id']}/images/received/{image['id']}"
        assert client.delete(url).status_code == 200
        assert client.delete(url).status_code == 404

    def test_invalid_image(self, client):
        job = _job(client, _customer(client)["id"])
        response = client.post(f"/api/jobs/{job['id']}/images", json={"status": "received", "data": "not-base64!"})
        assert response.status_code == 400


# ═══════════════════════════════════════════════
# Collections
# ═══════════════════════════════════════════════

class TestCollections:

    def test_crud(self, client):
        created = client.post("/api/collections/services", json={"name": "Chrome Delete", "price": 20000})
        assert created.status_code == 201
        service_id = created.json()["id"]

        assert client.get(f"/api/collections/services/{service_id}").json()["name"] == "Chrome Delete"
        patched = client.patch(f"/api/collections/services/{service_id}", json={"price": 25000}).json()
        assert patched["price"] == 25000 and patched["name"] == "Chrome Delete"
        assert len(client.get("/api/collections/services").json()) == 9

        assert client.delete(f"/api/collections/services/{service_id}").status_code == 200
        assert client.get(f"/api/collections/services/{service_id}").status_code == 404

    def test_unknown_collection_and_record(self, client):
        assert client.get("/api/collections/spaceships").status_code == 404
        assert client.patch("/api/collections/customers/nope", json={"name": "x"}).status_code == 404
        assert client.delete("/api/collections/customers/nope").status_code == 404

    def test_customer_with_jobs_cannot_be_deleted(self, client):
        customer = _customer(client)
        _job(client, customer["id"])
        response = client.delete(f"/api/collections/customers/{customer['id']}")
        assert response.status_code == 409
        assert "1 job(s)" in response.json()["detail"]

    def test_users_never_expose_passwords(self, client):
        client.post("/api/collections/users", json={"username": "tech", "password": "s3cret"})
        users = client.get("/api/collections/users").json()
        assert len(users) == 3
        assert all("password" not in u for u in users)

    def test_invoice_numbering(self, client):
        first = client.post("/api/collections/invoices", json={"total": 100}).json()
        second = client.post("/api/collections/invoices", json={"total": 200}).json()
        assert (first["invoiceNumber"], second["invoiceNumber"]) == ("INV-1001", "INV-1002")


# ═══════════════════════════════════════════════
# Estimates
# ═══════════════════════════════════════════════

class TestEstimates:

    def _estimate(self, client, **fields):
        customer = _customer(client, email="asha@example.com")
        payload = {"customerId": customer["id"], "total": 5000}
        payload.update(fields)
        return client.post("/api/collections/estimates", json=payload).json()

    def _mark_sent(self, client, estimate):
        client.patch(f"/api/collections/estimates/{estimate['id']}", json={"status": "sent"})

    def test_public_view(self, client):
        estimate = self._estimate(client)
        body = client.get(f"/public/estimates/{estimate['publicToken']}").json()
        assert body["estimate"]["estimateNumber"] == "EST-1001"
        assert body["customer"] == {"name": "Asha"}
        assert body["can_respond"] is False

    def test_draft_cannot_be_accepted(self, client):
        estimate = self._estimate(client)
        assert client.post(f"/public/estimates/{estimate['publicToken']}/accept").status_code == 409

    def test_accept_sent_estimate(self, client):
        estimate = self._estimate(client)
        self._mark_sent(client, estimate)
        response = client.post(f"/public/estimates/{estimate['publicToken']}/accept")
        assert response.status_code == 200
        assert response.json()["status"] == "accepted"
        assert client.post(f"/public/estimates/{estimate['publicToken']}/decline").status_code == 409

    def test_decline_sent_estimate(self, client):
        estimate = self._estimate(client)
        self._mark_sent(client, estimate)
        response = client.post(f"/public/estimates/{estimate['publicToken']}/decline")
        assert response.json()["status"] == "declined"

    def test_expired_estimate(self, client):
        estimate = self._estimate(client, validUntil="2020-01-01T00:00:00.000Z")
        self._mark_sent(client, estimate)
        response = client.post(f"/public/estimates/{estimate['publicToken']}/accept")
        assert response.status_code == 409
        assert response.json()["detail"] == "Estimate has expired"

    def test_unknown_token(self, client):
        assert client.get("/public/estimates/nope").status_code == 404
        assert client.post("/public/estimates/nope/accept").status_code == 404

    def test_public_routes_are_rate_limited(self, client):
        codes = [client.get("/public/estimates/nope").status_code for _ in range(25)]
        assert 429 in codes

    def test_send_marks_estimate_sent(self, client):
        estimate = self._estimate(client)
        ok = NotificationResult(success=True, channel="email")
        with patch("shopcrm.routes.estimates.send_estimate_email", return_value=ok) as send:
            body = client.post(f"/api/estimates/{estimate['id']}/send").json()
        send.assert_called_once()
        assert body["sent_via"] == ["email"]
        assert body["estimate"]["status"] == "sent"
        assert body["estimate"]["sentAt"]

    def test_failed_send_keeps_draft(self, client):
        estimate = self._estimate(client)
        body = client.post(f"/api/estimates/{estimate['id']}/send?channels=whatsapp").json()
        assert body["sent_via"] == []
        assert "whatsapp" in body["errors"]
        assert body["estimate"]["status"] == "draft"

    def test_convert_to_invoice(self, client):
        estimate = self._estimate(client)
        response = client.post(f"/api/estimates/{estimate['id']}/convert")
        assert response.status_code == 201
        assert response.json()["fromEstimate"] == estimate["id"]
        assert client.post("/api/estimates/nope/convert").status_code == 404


# ═══════════════════════════════════════════════
# Sync endpoints
# ═══════════════════════════════════════════════

class TestSyncEndpoints:

    def test_status_in_local_only_mode(self, client):
        status = client.get("/api/sync/status").json()
        assert status["is_configured"] is False
        assert status["is_syncing"] is False

    def test_push_reports_not_configured(self, client):
        body = client.post("/api/sync/push").json()
        assert body["success"] is False
        assert body["message"] == "Remote backend not configured"

    def test_pull_validates_strategy(self, client):
        assert client.post("/api/sync/pull", json={"strategy": "sideways"}).status_code == 422
        assert client.post("/api/sync/pull", json={"strategy": "merge"}).json()["success"] is False


# ═══════════════════════════════════════════════
# Data endpoints
# ═══════════════════════════════════════════════

class TestData:

    def test_export(self, client):
        _job(client, _customer(client)["id"])
        response = client.get("/api/export")
        assert response.headers["content-disposition"].startswith('attachment; filename="crm-backup-')
        body = response.json()
        assert len(body["jobs"]) == 1
        assert "exportedAt" in body

    def test_import_replaces_data(self, client):
        other = LocalStore(MemoryStateStorage(), "other", tz_name="UTC")
        other.add_customer({"name": "Imported"})
        bundle = client.get("/api/export").json()
        bundle["customers"] = other.list("customers")

        response = client.post("/api/import", json=bundle)
        assert response.status_code == 200
        assert response.json()["imported"]["customers"] == 1
        names = [c["name"] for c in client.get("/api/collections/customers").json()]
        assert names == ["Imported"]

    def test_import_rejects_bad_input(self, client):
        bad_json = client.post("/api/import", content=b"{nope", headers={"Content-Type": "application/json"})
        assert bad_json.status_code == 400
        assert client.post("/api/import", json=[1, 2]).status_code == 400
        assert client.post("/api/import", json={"jobs": "nope"}).status_code == 400

    def test_login(self, client):
        response = client.post("/api/auth/login", json={"username": "admin", "password": "admin123"})
        assert response.status_code == 200
        assert response.json()["role"] == "admin"
        assert "password" not in response.json()
        assert client.post("/api/auth/login", json={"username": "admin", "password": "x"}).status_code == 401

    def test_settings(self, client):
        client.patch("/api/settings", json={"businessName": "Wrap Lab"})
        body = client.get("/api/settings").json()
        assert body["businessName"] == "Wrap Lab"
        assert body["currency"] == "INR"

    def test_stats(self, client):
        _job(client, _customer(client)["id"])
        stats = client.get("/api/stats").json()
        assert stats["totalJobs"] == 1
        assert stats["totalCustomers"] == 1
        assert stats["activeJobs"] == 1

    def test_reorder_statuses(self, client):
        body = client.post("/api/statuses/reorder", json={"ids": ["delivered"]}).json()
        assert body[0]["id"] == "delivered"
        assert client.post("/api/statuses/reorder", json={"ids": "delivered"}).status_code == 400

    def test_convert_lead(self, client):
        lead = client.post("/api/collections/leads", json={"name": "Ravi"}).json()
        response = client.post(f"/api/leads/{lead['id']}/convert")
        assert response.status_code == 201
        assert response.json()["leadId"] == lead["id"]
        assert client.post("/api/leads/nope/convert").status_code == 404

    def test_ticket_reply(self, client):
        ticket = client.post("/api/collections/tickets", json={"subject": "Swirl marks"}).json()
        response = client.post(f"/api/tickets/{ticket['id']}/replies", json={"message": "Booked a polish"})
        assert response.status_code == 201
        assert response.json()["isStaff"] is True
        assert client.post("/api/tickets/nope/replies", json={"message": "x"}).status_code == 404
