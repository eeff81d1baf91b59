import pytest
from sqlalchemy import select

from arkan.core.exceptions import CrossTenantAccessError, RecordNotFoundError, TenantScopeRequiredError
from arkan.models.payment import Payment
from arkan.models.tenant import Tenant
from arkan.services.audit_logger import AuditEvent
from arkan.services.tenant_middleware import ScopedRepository, TenantFilter


@pytest.fixture
def alpha(resolver, seeded, principal):
    return resolver.resolve_context(principal("alpha-admin"))


@pytest.fixture
def root(resolver, seeded, principal):
    return resolver.resolve_context(principal("root"))


def _cross_tenant_entries(audit_sink):
    return [e for e in audit_sink.entries if e.event_type == AuditEvent.CROSS_TENANT_ACCESS]


def test_filter_is_always_applied_for_company_users(middleware, alpha):
    assert middleware.scope_filters(alpha, {"status": "due"}) == {"status": "due", "company_id": "co-alpha"}
    assert middleware.tenant_filter(alpha) == TenantFilter(company_id="co-alpha")


def test_requesting_another_company_is_rejected_once(middleware, alpha, audit_sink):
    with pytest.raises(CrossTenantAccessError) as exc:
        middleware.scope_filters(alpha, {"company_id": "co-beta"})

    assert exc.value.status_code == 403
    entries = _cross_tenant_entries(audit_sink)
    assert len(entries) == 1
    assert entries[0].metadata["attempted_company_id"] == "co-beta"
    assert entries[0].metadata["actual_company_id"] == "co-alpha"


def test_reading_foreign_record_is_rejected(db, middleware, alpha, audit_sink):
    foreign = db.get(Payment, "p-beta")
    with pytest.raises(CrossTenantAccessError):
        middleware.check_access(alpha, foreign)

    entries = _cross_tenant_entries(audit_sink)
    assert len(entries) == 1
    assert entries[0].metadata["record_id"] == "p-beta"
    assert entries[0].metadata["resource"] == "Payment"


def test_super_admin_system_view_sees_all_tenants(middleware, root):
    assert middleware.tenant_filter(root).all_tenants
    assert middleware.scope_filters(root, {"status": "due"}) == {"status": "due"}
    assert middleware.tenant_filter(root, "co-beta") == TenantFilter(company_id="co-beta")


def test_switched_super_admin_is_scoped_to_target(resolver, middleware, seeded, principal):
    context = resolver.switch_context(principal("root"), "co-beta")
    assert middleware.tenant_filter(context) == TenantFilter(company_id="co-beta")


def test_scope_records_filters_in_memory(middleware, alpha):
    records = [{"id": 1, "company_id": "co-alpha"}, {"id": 2, "company_id": "co-beta"}, {"id": 3}]
    assert [r["id"] for r in middleware.scope_records(alpha, records)] == [1]


def test_ensure_records_in_scope_rejects_mixed_batch(middleware, alpha):
    with pytest.raises(CrossTenantAccessError):
        middleware.ensure_records_in_scope(alpha, [{"company_id": "co-alpha"}, {"company_id": "co-beta"}])


def test_stamp_write_sets_company(middleware, alpha):
    assert middleware.stamp_write(alpha, {"full_name": "X"}) == {"full_name": "X", "company_id": "co-alpha"}


def test_stamp_write_rejects_foreign_company(middleware, alpha, audit_sink):
    with pytest.raises(CrossTenantAccessError):
        middleware.stamp_write(alpha, {"full_name": "X", "company_id": "co-beta"})
    assert len(_cross_tenant_entries(audit_sink)) == 1


def test_system_wide_write_needs_explicit_company(middleware, root):
    with pytest.raises(TenantScopeRequiredError):
        middleware.stamp_write(root, {"full_name": "X"})
    assert middleware.stamp_write(root, {"company_id": "co-beta"})["company_id"] == "co-beta"


def test_company_id_is_immutable(db, middleware, alpha):
    record = db.get(Tenant, "t-ahmed")
    with pytest.raises(CrossTenantAccessError):
        middleware.validate_update(alpha, record, {"company_id": "co-beta"})
    assert middleware.validate_update(alpha, record, {"company_id": "co-alpha", "phone": "1"}) == {"phone": "1"}


def test_scope_select_adds_predicate(db, middleware, alpha):
    stmt = middleware.scope_select(alpha, select(Payment), Payment)
    ids = sorted(p.id for p in db.execute(stmt).scalars())
    assert ids == ["p-alpha-grace", "p-alpha-late", "p-alpha-paid"]


# ── ScopedRepository ──

def test_repository_list_and_get(db, middleware, alpha):
    repo = ScopedRepository(db, alpha, middleware)
    assert [t.id for t in repo.list(Tenant)] == ["t-ahmed"]
    assert repo.get(Tenant, "t-ahmed").full_name == "Ahmed Ali"
    with pytest.raises(CrossTenantAccessError):
        repo.get(Tenant, "t-sara")
    with pytest.raises(RecordNotFoundError):
        repo.get(Tenant, "t-nobody")


def test_repository_create_update_delete_are_audited(db, middleware, alpha, audit_sink):
    repo = ScopedRepository(db, alpha, middleware)
    tenant = repo.create(Tenant, {"full_name": "Khalid", "phone": "+966500000009"})
    assert tenant.company_id == "co-alpha"

    repo.update(Tenant, tenant.id, {"email": "k@example.com"})
    repo.delete(Tenant, tenant.id)

    events = [e.event_type for e in audit_sink.entries if e.scope == "co-alpha"]
    assert events == [AuditEvent.RECORD_CREATED, AuditEvent.RECORD_UPDATED, AuditEvent.RECORD_DELETED]
    assert db.get(Tenant, tenant.id) is None


def test_repository_cannot_delete_foreign_record(db, middleware, alpha):
    repo = ScopedRepository(db, alpha, middleware)
    with pytest.raises(CrossTenantAccessError):
        repo.delete(Tenant, "t-sara")
    assert db.get(Tenant, "t-sara") is not None


def test_batch_stamp_rejects_whole_batch(middleware, alpha, audit_sink):
    stamped = middleware.stamp_writes(alpha, [{"full_name": "A"}, {"full_name": "B", "company_id": "co-alpha"}])
    assert [p["company_id"] for p in stamped] == ["co-alpha", "co-alpha"]

    with pytest.raises(CrossTenantAccessError):
        middleware.stamp_writes(alpha, [{"full_name": "A"}, {"full_name": "B", "company_id": "co-beta"}])
    assert len(_cross_tenant_entries(audit_sink)) == 1


def test_batch_delete_validation(db, middleware, alpha):
    own = db.get(Tenant, "t-ahmed")
    assert middleware.validate_deletes(alpha, [own]) == [own]
    with pytest.raises(CrossTenantAccessError):
        middleware.validate_deletes(alpha, [own, db.get(Tenant, "t-sara")])


def test_repository_batch_create_and_delete(db, middleware, alpha, audit_sink):
    repo = ScopedRepository(db, alpha, middleware)
    created = repo.create_many(Tenant, [
        {"full_name": "Khalid", "phone": "+966500000009"},
        {"full_name": "Noura", "phone": "+966500000008"},
    ])
    assert {t.company_id for t in created} == {"co-alpha"}

    assert repo.delete_many(Tenant, [t.id for t in created]) == 2
    events = [e.event_type for e in audit_sink.entries if e.scope == "co-alpha"]
    assert events.count(AuditEvent.RECORD_CREATED) == 2
    assert events.count(AuditEvent.RECORD_DELETED) == 2


def test_repository_batch_is_all_or_nothing(db, middleware, alpha):
    repo = ScopedRepository(db, alpha, middleware)
    with pytest.raises(CrossTenantAccessError):
        repo.create_many(Tenant, [
            {"full_name": "Khalid", "phone": "+966500000009"},
            {"full_name": "Intruder", "phone": "+966500000007", "company_id": "co-beta"},
        ])
    assert [t.id for t in repo.list(Tenant)] == ["t-ahmed"]

    with pytest.raises(CrossTenantAccessError):
        repo.delete_many(Tenant, ["t-ahmed", "t-sara"])
    assert db.get(Tenant, "t-ahmed") is not None
    assert db.get(Tenant, "t-sara") is not None
