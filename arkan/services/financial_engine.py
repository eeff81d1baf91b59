"""
Financial Behavior Engine

Pure, deterministic functions over already-fetched collections of payments,
contracts and maintenance requests. Nothing here queries the database or reads
the clock: "now" is always passed in.

  • analyze_payment                 - lifecycle status, escalation level, risk score
  • detect_payment_issues           - withinGrace / severelyOverdue / needsEscalation
  • assess_financial_health         - collection rate, overdue share, recommendations
  • calculate_cash_flow_forecast    - expected / projected / expenses per month
  • analyze_tenant_payment_history  - per-tenant payment behaviour

The three issue buckets are computed independently from the same days-overdue
value. severelyOverdue and needsEscalation overlap on purpose: severity is a
reporting lens, escalation an action lens.

A malformed record is skipped with a warning; it never aborts the computation.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field, model_validator

from arkan.core.config import settings
from arkan.core.date_utils import as_date, add_months, month_key, month_starts, months_between
from arkan.core.exceptions import MalformedRecordError
from arkan.models.contract import ContractStatus, FREQUENCY_MONTHS, PaymentFrequency
from arkan.models.payment import PaymentStatus
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger, SYSTEM_SCOPE

logger = logging.getLogger(__name__)


# ==================== Policy ====================

class FinancialPolicy(BaseModel):
    """Tenant-configurable thresholds. Unset company settings fall back to configured defaults."""

    grace_period_days: int = Field(default_factory=lambda: settings.GRACE_PERIOD_DAYS, ge=0)
    escalation_interval_days: int = Field(default_factory=lambda: settings.ESCALATION_INTERVAL_DAYS, gt=0)
    severe_overdue_days: int = Field(default_factory=lambda: settings.SEVERE_OVERDUE_DAYS, gt=0)
    health_window_days: int = Field(default_factory=lambda: settings.HEALTH_WINDOW_DAYS, gt=0)
    collection_rate_floor: float = Field(default_factory=lambda: settings.COLLECTION_RATE_FLOOR, ge=0, le=1)
    overdue_percentage_ceiling: float = Field(default_factory=lambda: settings.OVERDUE_PERCENTAGE_CEILING, ge=0, le=1)
    slow_payment_days: int = Field(default_factory=lambda: settings.SLOW_PAYMENT_DAYS, ge=0)
    forecast_horizon_months: int = Field(default_factory=lambda: settings.FORECAST_HORIZON_MONTHS, gt=0)
    currency: str = Field(default_factory=lambda: settings.DEFAULT_CURRENCY)
    locale: str = Field(default_factory=lambda: settings.DEFAULT_LOCALE)

    @model_validator(mode="after")
    def check_every_overdue_day_is_classified(self):
        # Day grace+1 must already be an escalation or severe day
        first_action_day = min(self.escalation_interval_days, self.severe_overdue_days)
        if first_action_day > self.grace_period_days + 1:
            raise ValueError(
                "escalation_interval_days or severe_overdue_days must not exceed "
                "grace_period_days + 1, otherwise some overdue payments fall in no bucket"
            )
        return self

    @classmethod
    def from_company(cls, company) -> "FinancialPolicy":
        overrides = {}
        for name in ("grace_period_days", "escalation_interval_days", "severe_overdue_days", "currency", "locale"):
            value = getattr(company, name, None)
            if value is not None:
                overrides[name] = value
        return cls(**overrides)


# ==================== Record access ====================

def _get(record: Any, name: str, default=None):
    if isinstance(record, dict):
        return record.get(name, default)
    return getattr(record, name, default)


def _value(v):
    return v.value if hasattr(v, "value") else v


def parse_date(record_id, name: str, value) -> date:
    """Coerce a date, datetime or ISO string; MalformedRecordError otherwise."""
    if isinstance(value, (date, datetime)):
        return as_date(value)
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError:
            pass
    raise MalformedRecordError(record_id, f"{name} is not a date")


def _to_amount(record_id, name: str, value) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedRecordError(record_id, f"{name} is not a number")
    if value < 0:
        raise MalformedRecordError(record_id, f"{name} is negative")
    return float(value)


@dataclass(frozen=True)
class _PaymentView:
    """Validated projection of a payment record; keeps a reference to the original."""
    id: str
    contract_id: Optional[str]
    tenant_name: Optional[str]
    due_date: date
    amount: float
    status: str
    paid_at: Optional[datetime]
    record: Any = field(compare=False, hash=False)


_PAYMENT_STATUSES = {s.value for s in PaymentStatus}


def _payment_view(record, contract_ids: Optional[set] = None) -> _PaymentView:
    record_id = _get(record, "id")
    if not record_id:
        raise MalformedRecordError(None, "payment has no id")
    status = _value(_get(record, "status"))
    if status not in _PAYMENT_STATUSES:
        raise MalformedRecordError(record_id, f"unknown status {status!r}")
    contract_id = _get(record, "contract_id")
    if contract_ids is not None and contract_id not in contract_ids:
        raise MalformedRecordError(record_id, f"references unknown contract {contract_id}")
    paid_at = _get(record, "paid_at")
    if paid_at is not None and not isinstance(paid_at, (date, datetime)):
        raise MalformedRecordError(record_id, "paid_at is not a timestamp")
    return _PaymentView(
        id=str(record_id),
        contract_id=contract_id,
        tenant_name=_get(record, "tenant_name"),
        due_date=parse_date(record_id, "due_date", _get(record, "due_date")),
        amount=_to_amount(record_id, "amount", _get(record, "amount")),
        status=status,
        paid_at=paid_at,
        record=record,
    )


def _report_malformed(error: MalformedRecordError, audit: Optional[AuditLogger], scope: Optional[str]) -> None:
    logger.warning(f"[FINANCE] Skipping malformed record {error.record_id}: {error.reason}")
    if audit is not None:
        audit.log_warning(
            scope or SYSTEM_SCOPE,
            AuditEvent.MALFORMED_RECORD,
            f"Skipped malformed record {error.record_id}: {error.reason}",
            f"تم تجاهل سجل غير صالح {error.record_id}: {error.reason}",
            {"record_id": error.record_id, "reason": error.reason},
            category=AuditCategory.FINANCE,
        )


def _valid_payments(payments, contracts=None, audit=None, scope=None) -> Tuple[List[_PaymentView], int]:
    contract_ids = None
    if contracts is not None:
        contract_ids = {_get(c, "id") for c in contracts}
    views, skipped = [], 0
    for record in payments:
        try:
            views.append(_payment_view(record, contract_ids))
        except MalformedRecordError as e:
            skipped += 1
            _report_malformed(e, audit, scope)
    return views, skipped


# ==================== Derived status ====================

def days_overdue(now, due_date, status) -> int:
    """Whole days past due; 0 for paid or not-yet-due payments."""
    if _value(status) == PaymentStatus.PAID.value:
        return 0
    return max(0, (as_date(now) - as_date(due_date)).days)


def effective_status(now, due_date, status) -> PaymentStatus:
    """due / overdue / paid as of `now`, independent of any stored overdue flag."""
    if _value(status) == PaymentStatus.PAID.value:
        return PaymentStatus.PAID
    if as_date(now) > as_date(due_date):
        return PaymentStatus.OVERDUE
    return PaymentStatus.DUE


def escalation_level(days: int, policy: FinancialPolicy) -> int:
    return days // policy.escalation_interval_days


# ==================== Payment analysis ====================

@dataclass(frozen=True)
class PaymentAnalysis:
    payment_id: str
    status: str                 # on_time | grace_period | overdue | severely_overdue
    days_overdue: int
    grace_period_end: Optional[date]
    is_within_grace: bool
    escalation_level: int
    risk_score: int


def analyze_payment(payment, now, policy: Optional[FinancialPolicy] = None) -> PaymentAnalysis:
    """
    Analyse one payment.

    Raises:
        MalformedRecordError: the record cannot be read as a payment
    """
    policy = policy or FinancialPolicy()
    view = payment if isinstance(payment, _PaymentView) else _payment_view(payment)

    days = days_overdue(now, view.due_date, view.status)
    is_paid = view.status == PaymentStatus.PAID.value

    if is_paid or days == 0:
        status, risk = "on_time", 0
    elif days <= policy.grace_period_days:
        status, risk = "grace_period", 20
    elif days >= policy.severe_overdue_days:
        status, risk = "severely_overdue", 80 + (days - policy.severe_overdue_days)
    else:
        status, risk = "overdue", 50 + (days - policy.grace_period_days)

    return PaymentAnalysis(
        payment_id=view.id,
        status=status,
        days_overdue=days,
        grace_period_end=None if is_paid else view.due_date + timedelta(days=policy.grace_period_days),
        is_within_grace=status == "grace_period",
        escalation_level=escalation_level(days, policy),
        risk_score=min(100, risk),
    )


# ==================== Issue detection ====================

@dataclass(frozen=True)
class EscalationEntry:
    payment: Any
    level: int
    days_overdue: int


@dataclass(frozen=True)
class PaymentIssues:
    within_grace: Tuple[Any, ...] = ()
    severely_overdue: Tuple[Any, ...] = ()
    needs_escalation: Tuple[EscalationEntry, ...] = ()
    skipped: int = 0


def detect_payment_issues(
    payments: Iterable,
    now,
    policy: Optional[FinancialPolicy] = None,
    audit: Optional[AuditLogger] = None,
    scope: Optional[str] = None,
) -> PaymentIssues:
    """
    Classify overdue payments into the three (independent) buckets.

      within_grace      0 < days_overdue <= grace_period_days
      severely_overdue  days_overdue >= severe_overdue_days
      needs_escalation  floor(days_overdue / escalation_interval_days) >= 1

    Output is ordered by (due_date, id) so repeated calls with the same
    inputs and `now` are identical.
    """
    policy = policy or FinancialPolicy()
    views, skipped = _valid_payments(payments, audit=audit, scope=scope)
    views.sort(key=lambda v: (v.due_date, v.id))

    within_grace, severe, escalations = [], [], []
    for view in views:
        if effective_status(now, view.due_date, view.status) != PaymentStatus.OVERDUE:
            continue
        days = days_overdue(now, view.due_date, view.status)
        if days <= policy.grace_period_days:
            within_grace.append(view.record)
        if days >= policy.severe_overdue_days:
            severe.append(view.record)
        level = escalation_level(days, policy)
        if level >= 1:
            escalations.append(EscalationEntry(view.record, level, days))

    return PaymentIssues(tuple(within_grace), tuple(severe), tuple(escalations), skipped)


# ==================== Financial health ====================

@dataclass(frozen=True)
class HealthMetrics:
    collection_rate: float
    overdue_percentage: float
    average_days_to_payment: float
    overdue_count: int


@dataclass(frozen=True)
class HealthRule:
    key: str
    applies: Callable[[HealthMetrics, FinancialPolicy], bool]
    risk_factor_en: str
    risk_factor_ar: str
    recommendation_en: Optional[str] = None
    recommendation_ar: Optional[str] = None


# Evaluated in order; add rules here, not in assess_financial_health
HEALTH_RULES: Tuple[HealthRule, ...] = (
    HealthRule(
        "low_collection_rate",
        lambda m, p: m.collection_rate < p.collection_rate_floor,
        "Low collection rate", "انخفاض معدل التحصيل",
        "Improve collection process with automated reminders",
        "تحسين عملية التحصيل بواسطة التذكيرات الآلية",
    ),
    HealthRule(
        "high_overdue_percentage",
        lambda m, p: m.overdue_percentage > p.overdue_percentage_ceiling,
        "High overdue percentage", "ارتفاع نسبة المتأخرات",
        "Review tenant screening criteria",
        "مراجعة معايير فحص المستأجرين",
    ),
    HealthRule(
        "slow_payment_velocity",
        lambda m, p: m.average_days_to_payment > p.slow_payment_days,
        "Slow payment velocity", "بطء سرعة السداد",
        "Consider early payment incentives",
        "النظر في حوافز الدفع المبكر",
    ),
    HealthRule(
        "multiple_overdue_payments",
        lambda m, p: m.overdue_count > 5,
        "Multiple overdue payments", "دفعات متأخرة متعددة",
    ),
)


@dataclass(frozen=True)
class FinancialHealth:
    collection_rate: float
    overdue_percentage: float
    recommendations: List[Dict[str, str]]
    overall_score: int
    status: str                 # healthy | attention | risk
    average_days_to_payment: float
    risk_factors: List[Dict[str, str]]
    window_start: date
    window_end: date
    payments_in_window: int
    skipped: int = 0


def evaluate_health_rules(metrics: HealthMetrics, policy: FinancialPolicy, rules=HEALTH_RULES):
    risk_factors, recommendations = [], []
    for rule in rules:
        if not rule.applies(metrics, policy):
            continue
        risk_factors.append({"key": rule.key, "en": rule.risk_factor_en, "ar": rule.risk_factor_ar})
        if rule.recommendation_en:
            recommendations.append({"key": rule.key, "en": rule.recommendation_en, "ar": rule.recommendation_ar})
    return risk_factors, recommendations


def assess_financial_health(
    payments: Iterable,
    contracts: Optional[Iterable] = None,
    now=None,
    policy: Optional[FinancialPolicy] = None,
    audit: Optional[AuditLogger] = None,
    scope: Optional[str] = None,
) -> FinancialHealth:
    """
    Score a portfolio over the trailing window [now - health_window_days, now].

    collection_rate    = paid count / count of payments due in the window (1.0 when empty)
    overdue_percentage = overdue amount / total amount due in the window (0.0 when empty)

    Payments referencing a contract not in `contracts` are skipped (when contracts are given).
    """
    if now is None:
        raise ValueError("now is required")
    policy = policy or FinancialPolicy()
    contracts = list(contracts) if contracts is not None else None
    views, skipped = _valid_payments(payments, contracts, audit, scope)

    window_end = as_date(now)
    window_start = window_end - timedelta(days=policy.health_window_days)
    in_window = [v for v in views if window_start <= v.due_date <= window_end]

    total_count = len(in_window)
    paid_count = sum(1 for v in in_window if v.status == PaymentStatus.PAID.value)
    total_amount = sum(v.amount for v in in_window)
    overdue = [v for v in in_window if effective_status(now, v.due_date, v.status) == PaymentStatus.OVERDUE]
    overdue_amount = sum(v.amount for v in overdue)

    collection_rate = paid_count / total_count if total_count else 1.0
    overdue_percentage = overdue_amount / total_amount if total_amount else 0.0

    paid_with_date = [v for v in views if v.status == PaymentStatus.PAID.value and v.paid_at is not None]
    if paid_with_date:
        total_days = sum(max(0, (as_date(v.paid_at) - v.due_date).days) for v in paid_with_date)
        average_days = round(total_days / len(paid_with_date), 1)
    else:
        average_days = 0.0

    metrics = HealthMetrics(collection_rate, overdue_percentage, average_days, len(overdue))
    risk_factors, recommendations = evaluate_health_rules(metrics, policy)

    score = 100.0
    score -= max(0.0, (1 - collection_rate) * 100 * 0.5)
    score -= overdue_percentage * 100 * 0.3
    score -= min(20.0, average_days)
    overall_score = max(0, round(score))

    if overall_score < 50 or len(risk_factors) >= 3:
        status = "risk"
    elif overall_score < 70 or risk_factors:
        status = "attention"
    else:
        status = "healthy"

    return FinancialHealth(
        collection_rate=collection_rate,
        overdue_percentage=overdue_percentage,
        recommendations=recommendations,
        overall_score=overall_score,
        status=status,
        average_days_to_payment=average_days,
        risk_factors=risk_factors,
        window_start=window_start,
        window_end=window_end,
        payments_in_window=total_count,
        skipped=skipped,
    )


# ==================== Cash flow forecast ====================

@dataclass(frozen=True)
class CashFlowForecast:
    labels: List[str]
    expected: List[float]
    projected: List[float]
    expenses: List[float]
    collection_rate: float


def _contract_schedule(contract) -> Tuple[date, date, float, int]:
    contract_id = _get(contract, "id")
    start = parse_date(contract_id, "start_date", _get(contract, "start_date"))
    end = parse_date(contract_id, "end_date", _get(contract, "end_date"))
    if end < start:
        raise MalformedRecordError(contract_id, "end_date before start_date")
    rent = _to_amount(contract_id, "rent_amount", _get(contract, "rent_amount"))
    frequency = _value(_get(contract, "payment_frequency") or PaymentFrequency.MONTHLY)
    try:
        step = FREQUENCY_MONTHS[PaymentFrequency(frequency)]
    except ValueError:
        raise MalformedRecordError(contract_id, f"unknown payment frequency {frequency!r}")
    return start, end, rent, step


def _due_in_month(start: date, end: date, step: int, month_start: date) -> bool:
    offset = months_between(start, month_start)
    if offset < 0 or offset % step:
        return False
    return add_months(start, offset) <= end


def calculate_cash_flow_forecast(
    contracts: Iterable,
    payments: Iterable,
    now,
    horizon_months: Optional[int] = None,
    policy: Optional[FinancialPolicy] = None,
    maintenance: Sequence = (),
    collection_rate: Optional[float] = None,
    audit: Optional[AuditLogger] = None,
    scope: Optional[str] = None,
) -> CashFlowForecast:
    """
    Month-by-month forecast starting with the month of `now`.

    expected[i]  rent due under active contracts with a scheduled due date in month i
    projected[i] expected[i] x collection rate (from the health assessment unless given)
    expenses[i]  maintenance cost recorded in the same calendar month one year earlier
    """
    policy = policy or FinancialPolicy()
    horizon = horizon_months or policy.forecast_horizon_months
    contracts = list(contracts)

    if collection_rate is None:
        collection_rate = assess_financial_health(payments, contracts, now, policy, audit, scope).collection_rate

    schedules = []
    for contract in contracts:
        if _value(_get(contract, "status")) != ContractStatus.ACTIVE.value:
            continue
        try:
            schedules.append(_contract_schedule(contract))
        except MalformedRecordError as e:
            _report_malformed(e, audit, scope)

    history: Dict[str, float] = {}
    for request in maintenance:
        request_id = _get(request, "id")
        try:
            created = parse_date(request_id, "created_at", _get(request, "created_at"))
            cost = _to_amount(request_id, "cost", _get(request, "cost") or 0)
        except MalformedRecordError as e:
            _report_malformed(e, audit, scope)
            continue
        key = month_key(created)
        history[key] = history.get(key, 0.0) + cost

    labels, expected, projected, expenses = [], [], [], []
    for month_start in month_starts(now, horizon):
        month_expected = sum(
            rent for start, end, rent, step in schedules
            if _due_in_month(start, end, step, month_start)
        )
        labels.append(month_key(month_start))
        expected.append(round(month_expected, 2))
        projected.append(round(month_expected * collection_rate, 2))
        expenses.append(round(history.get(month_key(add_months(month_start, -12)), 0.0), 2))

    return CashFlowForecast(labels, expected, projected, expenses, collection_rate)


# ==================== Tenant payment history ====================

@dataclass(frozen=True)
class TenantPaymentHistory:
    tenant_id: Optional[str]
    tenant_name: str
    total_payments: int
    on_time_payments: int
    late_payments: int
    missed_payments: int
    average_days_late: int
    total_amount_paid: float
    total_amount_outstanding: float
    payment_score: int
    risk_level: str             # low | medium | high
    is_repeat_offender: bool


def analyze_tenant_payment_history(
    tenant_name: str,
    payments: Iterable,
    now,
    policy: Optional[FinancialPolicy] = None,
    tenant_id: Optional[str] = None,
    audit: Optional[AuditLogger] = None,
    scope: Optional[str] = None,
) -> TenantPaymentHistory:
    """
    Payment behaviour of one tenant (matched by tenant_name).

    on time  paid within the grace period (or paid with no paid_at)
    late     paid after the grace period
    missed   unpaid and past the grace period
    """
    policy = policy or FinancialPolicy()
    views, _ = _valid_payments(payments, audit=audit, scope=scope)
    views = [v for v in views if v.tenant_name == tenant_name]

    on_time = late = missed = 0
    days_late_total = 0
    paid_total = outstanding_total = 0.0

    for view in views:
        grace_end = view.due_date + timedelta(days=policy.grace_period_days)
        if view.status == PaymentStatus.PAID.value:
            paid_total += view.amount
            if view.paid_at is None or as_date(view.paid_at) <= grace_end:
                on_time += 1
            else:
                late += 1
                days_late_total += (as_date(view.paid_at) - view.due_date).days
        else:
            outstanding_total += view.amount
            days = days_overdue(now, view.due_date, view.status)
            if days > policy.grace_period_days:
                missed += 1
                days_late_total += days

    total = len(views)
    average_days_late = days_late_total / (late + missed) if (late + missed) else 0.0
    on_time_rate = (on_time / total) * 100 if total else 100.0
    payment_score = max(0, round(on_time_rate - min(30.0, average_days_late) - missed * 10))

    if payment_score < 50 or missed >= 3:
        risk_level = "high"
    elif payment_score < 70 or missed >= 1:
        risk_level = "medium"
    else:
        risk_level = "low"

    is_repeat_offender = (late + missed) >= 3
    if is_repeat_offender and audit is not None:
        audit.log_warning(
            scope or SYSTEM_SCOPE,
            AuditEvent.REPEAT_OFFENDER_DETECTED,
            f"Tenant {tenant_name} identified as repeat late payer",
            f"تم تحديد المستأجر {tenant_name} كمتأخر متكرر في السداد",
            {"tenant_id": tenant_id, "late_payments": late, "missed_payments": missed},
            category=AuditCategory.PAYMENT,
        )

    return TenantPaymentHistory(
        tenant_id=tenant_id,
        tenant_name=tenant_name,
        total_payments=total,
        on_time_payments=on_time,
        late_payments=late,
        missed_payments=missed,
        average_days_late=round(average_days_late),
        total_amount_paid=paid_total,
        total_amount_outstanding=outstanding_total,
        payment_score=payment_score,
        risk_level=risk_level,
        is_repeat_offender=is_repeat_offender,
    )
