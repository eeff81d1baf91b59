"""
Delivery Worker

Drains pending `outbound_messages` rows:
  • email    - SMTP (SMTP_SERVER / SMTP_USER / SMTP_PASSWORD)
  • whatsapp - WhatsApp Cloud API over httpx (WHATSAPP_TOKEN / WHATSAPP_PHONE_NUMBER_ID)
  • in_app   - nothing to send, marked delivered

If a channel's credentials are missing the message is logged and marked sent
(development mode). A failed attempt stays pending until DELIVERY_MAX_ATTEMPTS,
then becomes failed.
"""
import logging
import smtplib
from dataclasses import dataclass
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

import httpx
from sqlalchemy import select
from sqlalchemy.orm import Session

from arkan.core.config import Settings, settings as default_settings
from arkan.db.base import utcnow
from arkan.models.outbox import DeliveryState, OutboundMessage

logger = logging.getLogger(__name__)


@dataclass
class DeliveryReport:
    sent: int = 0
    retrying: int = 0
    failed: int = 0


# ── Channel senders ───────────────────────────────────────────────────────────

def _send_email(row: OutboundMessage, cfg: Settings) -> None:
    if not cfg.email_configured:
        logger.info(f"[DELIVERY][EMAIL] SMTP not configured. Would send to '{row.target}': {row.subject}")
        return

    msg = MIMEMultipart("alternative")
    msg["Subject"] = row.subject or ""
    msg["From"] = cfg.EMAIL_FROM
    msg["To"] = row.target
    msg.attach(MIMEText(f"{row.body_ar}\n\n{row.body_en}", "plain", "utf-8"))
    if row.html:
        msg.attach(MIMEText(row.html, "html", "utf-8"))

    with smtplib.SMTP(cfg.SMTP_SERVER, cfg.SMTP_PORT, timeout=15) as server:
        server.starttls()
        server.login(cfg.SMTP_USER, cfg.SMTP_PASSWORD)
        server.sendmail(cfg.EMAIL_FROM, row.target, msg.as_string())
    logger.info(f"[DELIVERY][EMAIL] Sent to '{row.target}': {row.subject}")


def _send_whatsapp(row: OutboundMessage, cfg: Settings, client: Optional[httpx.Client] = None) -> None:
    if not cfg.whatsapp_configured:
        logger.info(f"[DELIVERY][WHATSAPP - no token] To {row.target}: {row.body_ar}")
        return

    phone = "".join(c for c in row.target if c.isdigit())
    url = f"{cfg.WHATSAPP_API_URL}/{cfg.WHATSAPP_PHONE_NUMBER_ID}/messages"
    payload = {
        "messaging_product": "whatsapp",
        "to": phone,
        "type": "text",
        "text": {"body": f"{row.body_ar}\n\n{row.body_en}"},
    }
    headers = {"Authorization": f"Bearer {cfg.WHATSAPP_TOKEN}"}

    if client is not None:
        response = client.post(url, json=payload, headers=headers)
    else:
        with httpx.Client(timeout=15) as own_client:
            response = own_client.post(url, json=payload, headers=headers)
    response.raise_for_status()
    logger.info(f"[DELIVERY][WHATSAPP] Sent to {phone}")


# ── Worker ────────────────────────────────────────────────────────────────────

def deliver_pending(
    db: Session,
    limit: int = 100,
    cfg: Optional[Settings] = None,
    client: Optional[httpx.Client] = None,
) -> DeliveryReport:
    """Attempt delivery of up to `limit` pending rows, oldest first."""
    cfg = cfg or default_settings
    report = DeliveryReport()

    rows = db.execute(
        select(OutboundMessage)
        .where(OutboundMessage.delivery_state == DeliveryState.PENDING)
        .order_by(OutboundMessage.created_at)
        .limit(limit)
    ).scalars().all()

    for row in rows:
        row.attempts += 1
        try:
            if row.channel == "email":
                _send_email(row, cfg)
            elif row.channel == "whatsapp":
                _send_whatsapp(row, cfg, client)
            row.delivery_state = DeliveryState.SENT
            row.delivered_at = utcnow()
            row.last_error = None
            report.sent += 1
        except (smtplib.SMTPException, httpx.HTTPError, OSError) as e:
            row.last_error = str(e)
            if row.attempts >= cfg.DELIVERY_MAX_ATTEMPTS:
                row.delivery_state = DeliveryState.FAILED
                report.failed += 1
                logger.error(f"[DELIVERY] Giving up on {row.id} after {row.attempts} attempts: {e}")
            else:
                report.retrying += 1
                logger.warning(f"[DELIVERY] Attempt {row.attempts} failed for {row.id}: {e}")
        db.commit()

    if rows:
        logger.info(f"[DELIVERY] sent={report.sent} retrying={report.retrying} failed={report.failed}")
    return report
