"""
Outbound notifications: WhatsApp (CallMeBot) and email (SMTP).
Best-effort only: callers get a NotificationResult and nothing is raised.
"""
import smtplib
from email.message import EmailMessage
from typing import Any, Dict, Optional

import httpx
import structlog
from pydantic import BaseModel

from ..config import settings


logger = structlog.get_logger(__name__)


class NotificationResult(BaseModel):
    success: bool
    channel: str
    error: Optional[str] = None


def send_whatsapp(phone: Optional[str], api_key: Optional[str], message: str) -> NotificationResult:
    """
    Send a WhatsApp message through the CallMeBot HTTP API.

    Args:
        phone: Recipient number with country code
        api_key: CallMeBot key issued for that number
        message: Plain text body

    Returns:
        NotificationResult (``success=False`` with ``error`` on any failure)
    """
    if not phone or not api_key:
        return NotificationResult(success=False, channel="whatsapp", error="Not configured")
    try:
        with httpx.Client(timeout=settings.notify_timeout_seconds) as client:
            response = client.get(
                settings.callmebot_url,
                params={"phone": phone, "text": message, "apikey": api_key},
            )
            response.raise_for_status()
        logger.info("whatsapp_sent", phone=phone)
        return NotificationResult(success=True, channel="whatsapp")
    except Exception as e:
        logger.warning("whatsapp_failed", phone=phone, error=str(e))
        return NotificationResult(success=False, channel="whatsapp", error=str(e))


def send_email(to: Optional[str], subject: str, body: str) -> NotificationResult:
    """
    Send a plain text email over the configured SMTP server.

    Args:
        to: Recipient address
        subject: Subject line
        body: Plain text body

    Returns:
        NotificationResult (``success=False`` with ``error`` on any failure)
    """
    if not to:
        return NotificationResult(success=False, channel="email", error="No recipient")
    if not (settings.smtp_host and settings.mail_from):
        return NotificationResult(success=False, channel="email", error="Not configured")
    try:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = settings.mail_from
        msg["To"] = to
        msg.set_content(body)
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=settings.notify_timeout_seconds) as s:
            if settings.smtp_tls:
                s.starttls()
            if settings.smtp_username and settings.smtp_password:
                s.login(settings.smtp_username, settings.smtp_password)
            s.send_message(msg)
        logger.info("email_sent", to=to, subject=subject)
        return NotificationResult(success=True, channel="email")
    except Exception as e:
        logger.warning("email_failed", to=to, error=str(e))
        return NotificationResult(success=False, channel="email", error=str(e))


NOTIFY_TOGGLES = {
    "new_job": "notifyNewJob",
    "status_update": "notifyStatusChange",
    "job_completed": "notifyJobComplete",
    "new_customer": "notifyNewCustomer",
}


def _vehicle(job: Dict[str, Any]) -> str:
    return " ".join(str(p) for p in (job.get("vehicleMake"), job.get("vehicleModel")) if p) or "Vehicle"


def job_message(kind: str, job: Dict[str, Any], customer_name: Optional[str] = None, **extra: Any) -> str:
    """Plain text line for a job event (new_job|status_update|job_completed)."""
    plate = job.get("licensePlate") or "N/A"
    customer_name = customer_name or "N/A"
    if kind == "new_job":
        return f"New job: {_vehicle(job)} ({plate}) for {customer_name}, status {extra.get('status_name') or job.get('status')}"
    if kind == "job_completed":
        return f"Job completed: {_vehicle(job)} ({plate}) for {customer_name}, total {job.get('totalPrice') or 0}"
    text = f"Job status updated: {_vehicle(job)} ({plate}) {extra.get('old_status')} -> {extra.get('new_status')}"
    if extra.get("note"):
        text += f". Note: {extra['note']}"
    return text


def customer_message(customer: Dict[str, Any]) -> str:
    return (
        f"New customer: {customer.get('name') or 'N/A'}, "
        f"phone {customer.get('phone') or 'N/A'}, email {customer.get('email') or 'N/A'}"
    )


def notify_shop(shop_settings: Dict[str, Any], kind: str, message: str) -> Optional[NotificationResult]:
    """
    Send a WhatsApp alert to the shop's own number if ``kind`` is switched on.

    Returns None when WhatsApp or the toggle for ``kind`` is off.
    """
    whatsapp = shop_settings.get("whatsapp") or {}
    toggle = NOTIFY_TOGGLES.get(kind)
    if not whatsapp.get("enabled") or not toggle or not whatsapp.get(toggle):
        return None
    return send_whatsapp(whatsapp.get("phone"), whatsapp.get("apiKey"), message)


def send_estimate_email(shop_settings: Dict[str, Any], estimate: Dict[str, Any], customer: Dict[str, Any]) -> NotificationResult:
    """Email the customer a link to the public estimate page."""
    email_settings = shop_settings.get("email") or {}
    if not email_settings.get("enabled"):
        return NotificationResult(success=False, channel="email", error="Email notifications disabled")
    business = shop_settings.get("businessName") or settings.app_name
    link = public_estimate_link(estimate)
    lines = [
        f"Hello {customer.get('name') or 'there'},",
        "",
        f"{business} has sent you estimate {estimate.get('estimateNumber')}.",
        f"Total: {estimate.get('total') or 0}",
    ]
    if estimate.get("validUntil"):
        lines.append(f"Valid until: {estimate['validUntil']}")
    lines += ["", f"View and respond: {link}"]
    return send_email(customer.get("email"), f"Estimate {estimate.get('estimateNumber')} from {business}", "\n".join(lines))


def send_estimate_whatsapp(shop_settings: Dict[str, Any], estimate: Dict[str, Any], customer: Dict[str, Any]) -> NotificationResult:
    """WhatsApp the customer the estimate link, using the shop's CallMeBot key."""
    whatsapp = shop_settings.get("whatsapp") or {}
    if not whatsapp.get("enabled") or not whatsapp.get("apiKey"):
        return NotificationResult(success=False, channel="whatsapp", error="WhatsApp not configured in settings")
    if not customer.get("phone"):
        return NotificationResult(success=False, channel="whatsapp", error="Customer does not have a phone number")
    business = shop_settings.get("businessName") or settings.app_name
    message = (
        f"{business}: estimate {estimate.get('estimateNumber')} for {estimate.get('total') or 0}. "
        f"View and respond: {public_estimate_link(estimate)}"
    )
    return send_whatsapp(customer["phone"], whatsapp["apiKey"], message)


def public_estimate_link(estimate: Dict[str, Any]) -> str:
    return f"{(settings.public_base_url or '').rstrip('/')}/public/estimates/{estimate.get('publicToken')}"
