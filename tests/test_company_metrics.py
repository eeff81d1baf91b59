import pytest

from arkan.services.audit_logger import AuditEvent, SYSTEM_SCOPE
from arkan.services.company_metrics import (
    calculate_company_metrics,
    get_system_metrics,
    list_company_metrics,
    system_health,
)


@pytest.fixture
def root(resolver, seeded, principal):
    return resolver.resolve_context(principal("root"))


def _by_company(metrics):
    return {m.company_id: m for m in metrics}


def test_company_metrics_are_computed_per_company(db, middleware, root, now):
    metrics = _by_company(list_company_metrics(db, root, middleware, now))
    assert list(metrics) == ["co-alpha", "co-beta", "co-frozen"]

    alpha = metrics["co-alpha"]
    assert alpha.user_count == 2
    assert alpha.tenant_count == 1
    assert alpha.active_contracts == 1
    assert (alpha.pending_payments, alpha.overdue_payments) == (0, 2)
    assert alpha.pending_maintenance == 1
    assert alpha.monthly_revenue == 5000.0
    assert alpha.collection_rate == pytest.approx(1 / 3)
    assert alpha.health_status == "risk"

    beta = metrics["co-beta"]
    assert (beta.user_count, beta.tenant_count, beta.overdue_payments) == (1, 1, 1)
    assert beta.monthly_revenue == 0.0


def test_company_without_records_is_healthy(db, middleware, root, now, seeded):
    frozen = calculate_company_metrics(db, seeded["frozen"], root, middleware, now)
    assert frozen.status == "suspended"
    assert frozen.overdue_payments == 0
    assert frozen.collection_rate == 1.0
    assert frozen.health_status == "healthy"
    assert frozen.last_activity == seeded["frozen"].created_at


def test_metrics_never_touch_other_companies(db, middleware, root, now, audit_sink):
    list_company_metrics(db, root, middleware, now)
    assert not [e for e in audit_sink.entries if e.event_type == AuditEvent.CROSS_TENANT_ACCESS]


def test_system_metrics_summary(db, middleware, root, now, audit, audit_sink):
    summary = get_system_metrics(db, root, middleware, now, audit)

    assert summary.total_companies == 3
    assert (summary.active_companies, summary.trial_companies, summary.suspended_companies) == (1, 1, 1)
    assert summary.total_users == 4
    assert summary.total_tenants == 2
    assert summary.total_active_contracts == 2
    assert summary.problematic_companies == 2
    assert summary.system_health == "risk"

    comparison = summary.comparison
    assert comparison.top_by_revenue[0].company_id == "co-alpha"
    assert [m.company_id for m in comparison.top_by_collection_rate] == ["co-frozen", "co-alpha", "co-beta"]
    assert [m.company_id for m in comparison.needs_attention] == ["co-alpha", "co-beta"]

    entries = [e for e in audit_sink.entries if e.event_type == AuditEvent.SYSTEM_METRICS_CALCULATED]
    assert [e.scope for e in entries] == [SYSTEM_SCOPE]
    assert entries[0].metadata["system_health"] == "risk"


@pytest.mark.parametrize("problematic, expected", [
    (0, "healthy"),
    (1, "healthy"),
    (2, "attention"),
    (3, "attention"),
    (4, "risk"),
])
def test_system_health_thresholds(problematic, expected):
    assert system_health(problematic, 10) == expected
