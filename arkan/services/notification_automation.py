"""
Notification Automation

Turns Financial Behavior Engine output into a bounded, de-duplicated set of
outbound messages and hands them to a transport.

  • process_automation_queue - grace reminders, level 2+ escalations, contract expiry
  • deduplicate              - drop messages whose dedupe_key was already sent
  • send_messages            - enqueue each message, one audit entry per attempt

Queue construction is pure and stable for unchanged input, so callers can diff
dedupe keys against what was sent before.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from typing import Dict, Iterable, List, Optional, Sequence

from arkan.core.config import Settings, settings as default_settings
from arkan.core.date_utils import as_date
from arkan.core.exceptions import ArkanError, MalformedRecordError, TenantScopeRequiredError, TransportError
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLevel, AuditLogger
from arkan.services.financial_engine import FinancialPolicy, detect_payment_issues, parse_date
from arkan.services.outbox import DeliveryHandle, MessageTransport
from arkan.services.tenant_context import CompanyContext
from arkan.services.tenant_middleware import TenantQueryMiddleware

logger = logging.getLogger(__name__)


class Channel(str, Enum):
    WHATSAPP = "whatsapp"
    EMAIL = "email"
    IN_APP = "in_app"


class Trigger:
    GRACE_PERIOD = "payment_grace_period"
    ESCALATION = "payment_escalation"
    CONTRACT_EXPIRY = "contract_expiry_soon"


@dataclass(frozen=True)
class MessageTemplate:
    body_en: str
    body_ar: str
    subject_en: Optional[str] = None
    subject_ar: Optional[str] = None


TEMPLATES: Dict[tuple, MessageTemplate] = {
    (Trigger.GRACE_PERIOD, Channel.WHATSAPP): MessageTemplate(
        "Friendly reminder: Your payment of {amount} {currency} for unit {unit_no} is within the grace period. "
        "Please pay by {grace_end} to avoid late fees.",
        "تذكير لطيف: دفعتك بقيمة {amount} {currency} للوحدة {unit_no} لا تزال ضمن فترة السماح. "
        "يرجى السداد بحلول {grace_end} لتجنب غرامات التأخير.",
    ),
    (Trigger.GRACE_PERIOD, Channel.EMAIL): MessageTemplate(
        "Payment reminder for unit {unit_no}. Due date: {due_date}.",
        "تذكير بسداد قيمة إيجار الوحدة {unit_no}. تاريخ الاستحقاق: {due_date}.",
        "Payment due reminder - Arkan",
        "تذكير بموعد استحقاق - أركان",
    ),
    (Trigger.ESCALATION, Channel.WHATSAPP): MessageTemplate(
        "IMPORTANT: Your payment for unit {unit_no} is {days} days overdue. Level {level} escalation initiated.",
        "هام: دفعتك للوحدة {unit_no} متأخرة {days} يوماً. تم بدء إجراءات التصعيد من المستوى {level}.",
        "Important: overdue payment",
        "إنذار هام: تأخير سداد",
    ),
    (Trigger.CONTRACT_EXPIRY, Channel.WHATSAPP): MessageTemplate(
        "Your contract for {property_name} (Unit {unit_no}) expires on {end_date}. Contact us to renew.",
        "عقدك في {property_name} (وحدة {unit_no}) ينتهي في {end_date}. تواصل معنا للتجديد.",
    ),
}


@dataclass(frozen=True)
class AutomatedMessage:
    channel: Channel
    target: str
    message_en: str
    message_ar: str
    trigger: str
    company_id: str
    entity_id: str
    dedupe_key: str
    subject_en: Optional[str] = None
    subject_ar: Optional[str] = None
    level: Optional[int] = None


@dataclass(frozen=True)
class DeliveryResult:
    message: AutomatedMessage
    success: bool
    handle: Optional[DeliveryHandle] = None
    error: Optional[str] = None


def _get(record, name, default=None):
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def _value(v):
    return v.value if hasattr(v, "value") else v


def build_message(trigger: str, channel: Channel, target: str, company_id: str,
                  entity_id: str, dedupe_key: str, level: Optional[int] = None, **fields) -> AutomatedMessage:
    template = TEMPLATES[(trigger, channel)]
    return AutomatedMessage(
        channel=channel,
        target=target,
        message_en=template.body_en.format(level=level, **fields),
        message_ar=template.body_ar.format(level=level, **fields),
        trigger=trigger,
        company_id=company_id,
        entity_id=entity_id,
        dedupe_key=dedupe_key,
        subject_en=template.subject_en,
        subject_ar=template.subject_ar,
        level=level,
    )


def deduplicate(messages: Iterable[AutomatedMessage], sent_keys: Iterable[str] = ()) -> List[AutomatedMessage]:
    """Drop messages already sent and repeated keys within the batch, keeping order."""
    seen = set(sent_keys)
    unique = []
    for message in messages:
        if message.dedupe_key in seen:
            continue
        seen.add(message.dedupe_key)
        unique.append(message)
    return unique


class NotificationAutomation:
    """Builds and dispatches one company's notification queue."""

    def __init__(self, middleware: TenantQueryMiddleware, audit: AuditLogger, settings: Optional[Settings] = None):
        self.middleware = middleware
        self.audit = audit
        self.settings = settings or default_settings

    # ──────────────────────────── Queue construction ────────────────────────────

    def process_automation_queue(
        self,
        context: CompanyContext,
        payments: Sequence,
        contracts: Sequence,
        tenants: Sequence,
        now,
        policy: Optional[FinancialPolicy] = None,
    ) -> List[AutomatedMessage]:
        """
        Build the queue for the context's company.

        Every input record must belong to that company (CrossTenantAccessError
        otherwise). A privileged system-wide context must switch first.
        """
        if not context.company_id:
            raise TenantScopeRequiredError(
                "Automation runs for one company at a time",
                "تعمل الأتمتة على شركة واحدة في كل مرة",
            )
        payments = self.middleware.ensure_records_in_scope(context, payments)
        contracts = self.middleware.ensure_records_in_scope(context, contracts)
        tenants = self.middleware.ensure_records_in_scope(context, tenants)

        policy = policy or FinancialPolicy()
        company_id = context.company_id
        issues = detect_payment_issues(payments, now, policy, self.audit, company_id)

        contracts_by_id = {_get(c, "id"): c for c in contracts}
        tenants_by_id = {_get(t, "id"): t for t in tenants}
        tenants_by_name = {}
        for tenant in sorted(tenants, key=lambda t: str(_get(t, "id"))):
            tenants_by_name.setdefault(_get(tenant, "full_name"), tenant)

        def tenant_for(payment):
            contract = contracts_by_id.get(_get(payment, "contract_id"))
            if contract is not None and _get(contract, "tenant_id") in tenants_by_id:
                return tenants_by_id[_get(contract, "tenant_id")]
            return tenants_by_name.get(_get(payment, "tenant_name"))

        queue: List[AutomatedMessage] = []

        # 1. Grace-period reminders
        for payment in issues.within_grace:
            tenant = tenant_for(payment)
            if tenant is None:
                logger.info(f"[AUTOMATION] No tenant contact for payment {_get(payment, 'id')}")
                continue
            due = parse_date(_get(payment, "id"), "due_date", _get(payment, "due_date"))
            fields = {
                "amount": f"{float(_get(payment, 'amount')):g}",
                "currency": policy.currency,
                "unit_no": _get(payment, "unit_no") or "-",
                "due_date": due.isoformat(),
                "grace_end": (due + timedelta(days=policy.grace_period_days)).isoformat(),
            }
            payment_id = _get(payment, "id")
            if _get(tenant, "phone"):
                queue.append(build_message(
                    Trigger.GRACE_PERIOD, Channel.WHATSAPP, _get(tenant, "phone"), company_id, payment_id,
                    f"{Trigger.GRACE_PERIOD}:whatsapp:{payment_id}", **fields,
                ))
            if _get(tenant, "email"):
                queue.append(build_message(
                    Trigger.GRACE_PERIOD, Channel.EMAIL, _get(tenant, "email"), company_id, payment_id,
                    f"{Trigger.GRACE_PERIOD}:email:{payment_id}", **fields,
                ))

        # 2. Escalations
        for entry in issues.needs_escalation:
            if entry.level < self.settings.ESCALATION_NOTIFY_MIN_LEVEL:
                continue
            tenant = tenant_for(entry.payment)
            if tenant is None or not _get(tenant, "phone"):
                continue
            payment_id = _get(entry.payment, "id")
            queue.append(build_message(
                Trigger.ESCALATION, Channel.WHATSAPP, _get(tenant, "phone"), company_id, payment_id,
                f"{Trigger.ESCALATION}:whatsapp:{payment_id}:L{entry.level}", level=entry.level,
                unit_no=_get(entry.payment, "unit_no") or "-", days=entry.days_overdue,
            ))

        # 3. Contract expiry
        today = as_date(now)
        horizon = today + timedelta(days=self.settings.CONTRACT_EXPIRY_LOOKAHEAD_DAYS)
        expiring = []
        for contract in contracts:
            if _value(_get(contract, "status")) != "active":
                continue
            try:
                end_date = parse_date(_get(contract, "id"), "end_date", _get(contract, "end_date"))
            except MalformedRecordError as e:
                logger.warning(f"[AUTOMATION] Skipping contract {e.record_id}: {e.reason}")
                continue
            if today < end_date <= horizon:
                expiring.append((end_date, str(_get(contract, "id")), contract))

        for end_date, contract_id, contract in sorted(expiring, key=lambda item: item[:2]):
            tenant = tenants_by_id.get(_get(contract, "tenant_id"))
            if tenant is None or not _get(tenant, "phone"):
                continue
            queue.append(build_message(
                Trigger.CONTRACT_EXPIRY, Channel.WHATSAPP, _get(tenant, "phone"), company_id, contract_id,
                f"{Trigger.CONTRACT_EXPIRY}:whatsapp:{contract_id}:{end_date.isoformat()}",
                property_name=_get(contract, "property_name") or "-",
                unit_no=_get(contract, "unit_no") or "-",
                end_date=end_date.isoformat(),
            ))

        queue = deduplicate(queue)
        if queue:
            self.audit.log_info(
                company_id,
                AuditEvent.QUEUE_PROCESSED,
                f"Automation engine generated {len(queue)} notifications",
                f"قام محرك الأتمتة بإنشاء {len(queue)} تنبيهات",
                {"count": len(queue)},
                category=AuditCategory.AUTOMATION,
            )
        return queue

    # ──────────────────────────── Dispatch ────────────────────────────

    def send_messages(
        self,
        context: CompanyContext,
        messages: Sequence[AutomatedMessage],
        transport: MessageTransport,
    ) -> List[DeliveryResult]:
        """
        Enqueue every message. A transport failure is recorded on that message's
        result and does not stop the rest. Each attempt is audited with its trigger.
        """
        messages = self.middleware.ensure_records_in_scope(context, messages, "send")
        results = []
        for message in messages:
            try:
                handle = transport.enqueue(message)
                result = DeliveryResult(message, True, handle)
            except ArkanError as e:
                result = DeliveryResult(message, False, error=e.message_en)
            except Exception as e:
                error = TransportError(str(e))
                result = DeliveryResult(message, False, error=error.message_en)

            if result.success:
                message_en = f"Sent {message.channel.value} message to {message.target}: {message.message_en}"
                message_ar = f"تم إرسال رسالة {message.channel.value} إلى {message.target}: {message.message_ar}"
            else:
                logger.warning(f"[AUTOMATION] Transport failed for {message.dedupe_key}: {result.error}")
                message_en = f"Send failed for {message.channel.value} message to {message.target}: {result.error}"
                message_ar = f"فشل إرسال رسالة {message.channel.value} إلى {message.target}: {result.error}"
            self.audit.append(
                message.company_id,
                AuditLevel.INFO if result.success else AuditLevel.WARNING,
                AuditEvent.MESSAGE_SEND,
                message_en,
                message_ar,
                {
                    "trigger": message.trigger,
                    "channel": message.channel.value,
                    "dedupe_key": message.dedupe_key,
                    "entity_id": message.entity_id,
                    "success": result.success,
                    "error": result.error,
                    "handle_id": result.handle.id if result.handle else None,
                },
                category=AuditCategory.AUTOMATION,
            )
            results.append(result)
        return results
