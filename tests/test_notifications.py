"""Unit tests for WhatsApp / email notifications.

Tests:
- send_whatsapp / send_email success and failure paths (transport mocked)
- Per-event toggles in shop settings
- Message text and public estimate links
"""
from unittest.mock import patch

import httpx

from shopcrm.config import settings
from shopcrm.services import notifications
from shopcrm.services.notifications import (
    customer_message,
    job_message,
    notify_shop,
    public_estimate_link,
    send_email,
    send_estimate_email,
    send_estimate_whatsapp,
    send_whatsapp,
)


def _shop(**whatsapp):
    base = {"enabled": True, "phone": "+911234567890", "apiKey": "key", "notifyNewJob": True,
            "notifyStatusChange": True, "notifyJobComplete": True, "notifyNewCustomer": False}
    base.update(whatsapp)
    return {"businessName": "Wrap Lab", "whatsapp": base, "email": {"enabled": True}}


# ═══════════════════════════════════════════════
# WhatsApp
# ═══════════════════════════════════════════════

class TestSendWhatsapp:

    def test_success(self):
        with patch.object(notifications.httpx, "Client") as client_cls:
            result = send_whatsapp("+911234567890", "key", "Hello")
        client = client_cls.return_value.__enter__.return_value
        assert result.success
        _, kwargs = client.get.call_args
        assert kwargs["params"] == {"phone": "+911234567890", "text": "Hello", "apikey": "key"}

    def test_transport_error_is_reported(self):
        with patch.object(notifications.httpx, "Client") as client_cls:
            client_cls.return_value.__enter__.return_value.get.side_effect = httpx.ConnectError("down")
            result = send_whatsapp("+911234567890", "key", "Hello")
        assert result.success is False
        assert result.channel == "whatsapp"
        assert "down" in result.error

    def test_missing_credentials(self):
        with patch.object(notifications.httpx, "Client") as client_cls:
            result = send_whatsapp("", "key", "Hello")
        assert result.error == "Not configured"
        client_cls.assert_not_called()


# ═══════════════════════════════════════════════
# Email
# ═══════════════════════════════════════════════

class TestSendEmail:

    def test_success(self):
        with patch.object(settings, "smtp_host", "smtp.example.com"), \
             patch.object(settings, "mail_from", "shop@example.com"), \
             patch.object(notifications.smtplib, "SMTP") as smtp_cls:
            result = send_email("asha@example.com", "Hi", "Body")
        assert result.success
        sent = smtp_cls.return_value.__enter__.return_value.send_message.call_args[0][0]
        assert sent["To"] == "asha@example.com"
        assert sent["Subject"] == "Hi"

    def test_not_configured(self):
        with patch.object(settings, "smtp_host", None):
            result = send_email("asha@example.com", "Hi", "Body")
        assert result.error == "Not configured"

    def test_no_recipient(self):
        assert send_email(None, "Hi", "Body").error == "No recipient"

    def test_smtp_failure(self):
        with patch.object(settings, "smtp_host", "smtp.example.com"), \
             patch.object(settings, "mail_from", "shop@example.com"), \
             patch.object(notifications.smtplib, "SMTP", side_effect=OSError("refused")):
            result = send_email("asha@example.com", "Hi", "Body")
        assert result.success is False
        assert result.error == "refused"


# ═══════════════════════════════════════════════
# Shop alerts
# ═══════════════════════════════════════════════

class TestNotifyShop:

    def test_enabled_toggle_sends(self):
        with patch.object(notifications, "send_whatsapp") as send:
            notify_shop(_shop(), "new_job", "msg")
        send.assert_called_once_with("+911234567890", "key", "msg")

    def test_disabled_toggle_skips(self):
        with patch.object(notifications, "send_whatsapp") as send:
            assert notify_shop(_shop(), "new_customer", "msg") is None
            assert notify_shop(_shop(enabled=False), "new_job", "msg") is None
            assert notify_shop({}, "new_job", "msg") is None
            assert notify_shop(_shop(), "unknown_kind", "msg") is None
        send.assert_not_called()


class TestMessages:

    def test_job_messages(self):
        job = {"vehicleMake": "BMW", "vehicleModel": "M3", "licensePlate": "KA-01", "totalPrice": 1500, "status": "received"}
        assert job_message("new_job", job, "Asha", status_name="Received") == \
            "New job: BMW M3 (KA-01) for Asha, status Received"
        assert job_message("job_completed", job, "Asha") == "Job completed: BMW M3 (KA-01) for Asha, total 1500"
        assert job_message("status_update", job, old_status="Received", new_status="Painting", note="Two coats") == \
            "Job status updated: BMW M3 (KA-01) Received -> Painting. Note: Two coats"

    def test_job_message_placeholders(self):
        assert job_message("job_completed", {}) == "Job completed: Vehicle (N/A) for N/A, total 0"

    def test_customer_message(self):
        assert customer_message({"name": "Asha", "phone": "123"}) == "New customer: Asha, phone 123, email N/A"

    def test_public_link(self):
        with patch.object(settings, "public_base_url", "https://shop.example.com/"):
            assert public_estimate_link({"publicToken": "abc"}) == "https://shop.example.com/public/estimates/abc"


# ═══════════════════════════════════════════════
# Estimates
# ═══════════════════════════════════════════════

class TestEstimateDelivery:

    ESTIMATE = {"estimateNumber": "EST-1001", "total": 5000, "publicToken": "tok", "validUntil": "2024-06-01T00:00:00.000Z"}

    def test_email_contains_link(self):
        with patch.object(notifications, "send_email") as send:
            send_estimate_email(_shop(), self.ESTIMATE, {"name": "Asha", "email": "asha@example.com"})
        to, subject, body = send.call_args[0]
        assert to == "asha@example.com"
        assert subject == "Estimate EST-1001 from Wrap Lab"
        assert "/public/estimates/tok" in body
        assert "Valid until" in body

    def test_email_disabled(self):
        shop = _shop()
        shop["email"]["enabled"] = False
        result = send_estimate_email(shop, self.ESTIMATE, {"email": "asha@example.com"})
        assert result.success is False

    def test_whatsapp_needs_customer_phone(self):
        result = send_estimate_whatsapp(_shop(), self.ESTIMATE, {"name": "Asha"})
        assert result.error == "Customer does not have a phone number"

    def test_whatsapp_sends_link(self):
        with patch.object(notifications, "send_whatsapp") as send:
            send_estimate_whatsapp(_shop(), self.ESTIMATE, {"phone": "999"})
        phone, key, message = send.call_args[0]
        assert (phone, key) == ("999", "key")
        assert "EST-1001" in message and "/public/estimates/tok" in message
