"""
Outbound transport boundary.

The automation engine hands every message to a MessageTransport. The
production transport writes an `outbound_messages` row (email and WhatsApp
alike); delivery itself is the delivery worker's job, including retries.
"""
from __future__ import annotations

import html
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from arkan.core.exceptions import TransportError
from arkan.models.outbox import DeliveryState, OutboundMessage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryHandle:
    id: str
    channel: str
    state: str


class MessageTransport(Protocol):
    def enqueue(self, message) -> DeliveryHandle: ...


def render_email_html(title: str, body: str, footer: str = "نظام أركان لإدارة العقارات") -> str:
    """Right-to-left branded email body."""
    return f"""
<div dir="rtl" style="font-family: 'Cairo', sans-serif; max-width: 600px; margin: 0 auto; border: 1px solid #e2e8f0; border-radius: 12px; overflow: hidden;">
  <div style="background-color: #0A2A43; padding: 24px; text-align: center; color: white;">
    <h1 style="margin: 0; font-size: 24px;">أركان - ARKAN</h1>
  </div>
  <div style="padding: 32px; background-color: white;">
    <h2 style="color: #1a202c; border-bottom: 2px solid #edf2f7; padding-bottom: 16px;">{html.escape(title)}</h2>
    <p style="color: #4a5568; line-height: 1.8; font-size: 16px;">{html.escape(body)}</p>
    <div style="margin-top: 32px; padding: 16px; background-color: #f7fafc; border-radius: 8px; font-size: 14px; color: #718096;">
      {html.escape(footer)}
    </div>
  </div>
  <div style="background-color: #edf2f7; padding: 16px; text-align: center; font-size: 12px; color: #a0aec0;">
    هذا البريد مرسل آلياً، يرجى عدم الرد عليه.
  </div>
</div>
""".strip()


class OutboxTransport:
    """Queued-document hand-off: one OutboundMessage row per message."""

    def __init__(self, db: Session):
        self.db = db

    def enqueue(self, message) -> DeliveryHandle:
        row = OutboundMessage(
            company_id=message.company_id,
            channel=message.channel.value,
            target=message.target,
            trigger=message.trigger,
            dedupe_key=message.dedupe_key,
            subject=message.subject_ar,
            body_en=message.message_en,
            body_ar=message.message_ar,
            html=render_email_html(message.subject_ar or "", message.message_ar)
            if message.channel.value == "email" else None,
        )
        try:
            self.db.add(row)
            self.db.commit()
        except Exception as e:
            self.db.rollback()
            logger.error(f"[OUTBOX] Could not enqueue {message.dedupe_key}: {e}")
            raise TransportError(f"Could not enqueue message: {e}", "تعذر إضافة الرسالة إلى قائمة الإرسال")

        logger.info(f"[OUTBOX] Queued {row.channel} to {row.target} ({row.trigger})")
        return DeliveryHandle(id=row.id, channel=row.channel, state=row.delivery_state.value)

    def recently_sent_keys(self, company_id: str, since: datetime) -> Set[str]:
        """Dedupe keys queued or delivered for this company since `since`."""
        rows = self.db.execute(
            select(OutboundMessage.dedupe_key).where(
                OutboundMessage.company_id == company_id,
                OutboundMessage.created_at >= since,
                OutboundMessage.delivery_state != DeliveryState.FAILED,
            )
        ).scalars().all()
        return set(rows)
