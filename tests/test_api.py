import pytest

from arkan.models.company import Company

AS_OF = {"as_of": "2025-03-15"}


@pytest.fixture
def as_user(client, auth_headers):
    """Call the API as a given principal: as_user("alpha-admin").get(...)."""

    class Caller:
        def __init__(self, uid):
            self.headers = auth_headers(uid)

        def get(self, url, **kwargs):
            return client.get(url, headers=self.headers, **kwargs)

        def post(self, url, **kwargs):
            return client.post(url, headers=self.headers, **kwargs)

        def patch(self, url, **kwargs):
            return client.patch(url, headers=self.headers, **kwargs)

    return Caller


# ==================== System ====================

def test_root_and_health(client):
    assert client.get("/").json()["success"] is True
    assert client.get("/health").status_code == 200


# ==================== Context ====================

def test_context_requires_token(client):
    response = client.get("/api/context")
    assert response.status_code == 401
    assert response.json()["code"] == "authentication_failed"
    assert response.json()["detail_ar"]


def test_context_for_company_user(as_user):
    body = as_user("alpha-staff").get("/api/context").json()
    assert body["company_id"] == "co-alpha"
    assert body["role"] == "staff"
    assert "tenants:create" in body["permissions"]


def test_suspended_company_gets_403(as_user):
    response = as_user("frozen-admin").get("/api/context")
    assert response.status_code == 403
    assert response.json()["code"] == "account_suspended"


def test_super_admin_switch_and_log(as_user):
    root = as_user("root")
    response = root.post("/api/context/switch", json={"company_id": "co-beta", "reason": "audit"})
    assert response.status_code == 200
    assert response.json()["is_context_switch"] is True

    tenants = root.get("/api/tenants").json()
    assert [t["id"] for t in tenants] == ["t-sara"]

    log = root.get("/api/context/switch-log").json()
    assert len(log) == 1 and log[0]["to_company_id"] == "co-beta"

    assert root.post("/api/context/exit").json()["company_id"] is None
    assert len(root.get("/api/context/switch-log").json()) == 2


def test_company_user_cannot_switch(as_user):
    response = as_user("alpha-admin").post("/api/context/switch", json={"company_id": "co-beta"})
    assert response.status_code == 403
    assert as_user("alpha-admin").get("/api/context/switch-log").status_code == 403


# ==================== Scoped records ====================

def test_company_user_sees_only_own_records(as_user):
    alpha = as_user("alpha-admin")
    assert [t["id"] for t in alpha.get("/api/tenants").json()] == ["t-ahmed"]
    ids = {p["id"] for p in alpha.get("/api/payments", params=AS_OF).json()}
    assert ids == {"p-alpha-grace", "p-alpha-late", "p-alpha-paid"}


def test_cross_tenant_reads_are_rejected(as_user, audit_sink):
    alpha = as_user("alpha-admin")

    response = alpha.get("/api/tenants", params={"company_id": "co-beta"})
    assert response.status_code == 403
    assert response.json()["code"] == "cross_tenant_access"

    assert alpha.get("/api/payments/p-beta").status_code == 403
    entries = [e for e in audit_sink.entries if e.event_type == "CROSS_TENANT_ACCESS"]
    assert len(entries) == 2
    assert {e.metadata["attempted_company_id"] for e in entries} == {"co-beta"}


def test_cross_tenant_write_is_rejected(as_user):
    response = as_user("alpha-admin").post(
        "/api/tenants", json={"full_name": "Intruder", "phone": "+966500000099", "company_id": "co-beta"},
    )
    assert response.status_code == 403


def test_create_tenant_is_stamped_with_company(as_user):
    response = as_user("alpha-staff").post("/api/tenants", json={"full_name": "Khalid", "phone": "+966500000010"})
    assert response.status_code == 201
    assert response.json()["company_id"] == "co-alpha"


def test_system_wide_write_needs_company(as_user):
    root = as_user("root")
    payload = {"full_name": "Khalid", "phone": "+966500000010"}
    response = root.post("/api/tenants", json=payload)
    assert response.status_code == 409
    assert response.json()["code"] == "tenant_scope_required"

    created = root.post("/api/tenants", json={**payload, "company_id": "co-beta"})
    assert created.status_code == 201
    assert created.json()["company_id"] == "co-beta"


def test_system_wide_read_spans_companies(as_user):
    ids = {t["id"] for t in as_user("root").get("/api/tenants").json()}
    assert ids == {"t-ahmed", "t-sara"}


def test_permissions_are_enforced(as_user):
    response = as_user("alpha-staff").post(
        "/api/payments", json={"contract_id": "c-alpha", "due_date": "2025-04-01", "amount": 5000},
    )
    assert response.status_code == 403
    assert response.json()["code"] == "permission_denied"


def test_create_and_record_payment(as_user):
    alpha = as_user("alpha-admin")
    created = alpha.post(
        "/api/payments", params=AS_OF, json={"contract_id": "c-alpha", "due_date": "2025-04-01", "amount": 5000},
    )
    assert created.status_code == 201
    body = created.json()
    assert body["tenant_name"] == "Ahmed Ali"
    assert body["effective_status"] == "due"

    recorded = alpha.post(f"/api/payments/{body['id']}/record", params=AS_OF, json={"method": "cash"})
    assert recorded.status_code == 200
    assert recorded.json()["status"] == "paid"
    assert recorded.json()["paid_at"].startswith("2025-03-15")

    again = alpha.post(f"/api/payments/{body['id']}/record", json={})
    assert again.status_code == 409


def test_effective_status_ignores_stored_flag(as_user):
    payment = as_user("alpha-admin").get("/api/payments/p-alpha-grace", params=AS_OF).json()
    assert payment["status"] == "due"
    assert payment["effective_status"] == "overdue"


# ==================== Finance ====================

def test_financial_health(as_user):
    body = as_user("alpha-admin").get("/api/finance/health", params=AS_OF).json()
    assert body["payments_in_window"] == 3
    assert body["collection_rate"] == pytest.approx(1 / 3)
    assert body["window_end"] == "2025-03-15"


def test_payment_issues(as_user):
    body = as_user("alpha-admin").get("/api/finance/issues", params=AS_OF).json()
    assert [p["id"] for p in body["within_grace"]] == ["p-alpha-grace"]
    assert [p["id"] for p in body["severely_overdue"]] == ["p-alpha-late"]
    assert [(e["payment"]["id"], e["level"]) for e in body["needs_escalation"]] == [("p-alpha-late", 4)]


def test_cash_flow_forecast(as_user):
    body = as_user("alpha-admin").get("/api/finance/forecast", params={**AS_OF, "months": 3}).json()
    assert body["labels"] == ["2025-03", "2025-04", "2025-05"]
    assert body["expected"] == [5000.0, 5000.0, 0.0]
    assert body["expenses"] == [0.0, 750.0, 0.0]


def test_payment_analysis_and_history(as_user):
    alpha = as_user("alpha-admin")
    analysis = alpha.get("/api/finance/payments/p-alpha-late/analysis", params=AS_OF).json()
    assert analysis["status"] == "severely_overdue"
    assert analysis["risk_score"] == 80

    history = alpha.get("/api/finance/tenant-history", params={**AS_OF, "tenant_name": "Ahmed Ali"}).json()
    assert history["total_payments"] == 3
    assert history["missed_payments"] == 1


def test_finance_needs_one_company(as_user):
    root = as_user("root")
    response = root.get("/api/finance/health", params=AS_OF)
    assert response.status_code == 409

    scoped = root.get("/api/finance/health", params={**AS_OF, "company_id": "co-beta"})
    assert scoped.status_code == 200
    assert scoped.json()["payments_in_window"] == 1


def test_company_settings_change_finance(as_user):
    alpha = as_user("alpha-admin")
    assert alpha.patch("/api/companies/co-alpha/settings", json={"severe_overdue_days": 45}).status_code == 200

    body = alpha.get("/api/finance/issues", params=AS_OF).json()
    assert body["severely_overdue"] == []


# ==================== Automation ====================

def test_queue_preview_and_send_dedupes(as_user):
    alpha = as_user("alpha-admin")
    queue = alpha.get("/api/automation/queue", params=AS_OF).json()
    assert {m["trigger"] for m in queue} == {
        "payment_grace_period", "payment_escalation", "contract_expiry_soon",
    }
    assert len(queue) == 4

    first = alpha.post("/api/automation/send", params=AS_OF).json()
    assert first["success"] is True
    assert first["queued"] == 4

    second = alpha.post("/api/automation/send", params=AS_OF).json()
    assert second["queued"] == 0
    assert second["skipped_duplicates"] == 4


def test_send_requires_edit_permission(as_user):
    assert as_user("alpha-staff").post("/api/automation/send", params=AS_OF).status_code == 403


def test_sweep_and_deliver_are_operator_only(as_user):
    assert as_user("alpha-admin").post("/api/automation/sweep", params=AS_OF).status_code == 403

    root = as_user("root")
    reports = root.post("/api/automation/sweep", params=AS_OF).json()
    assert {r["company_id"]: r["status"] for r in reports} == {"co-alpha": "ok", "co-beta": "ok"}

    delivered = root.post("/api/automation/deliver").json()
    assert delivered["sent"] == 5


# ==================== Audit ====================

def test_audit_is_scoped_to_own_company(as_user):
    alpha = as_user("alpha-admin")
    alpha.post("/api/tenants", json={"full_name": "Khalid", "phone": "+966500000010"})

    entries = alpha.get("/api/audit").json()
    assert entries and {e["scope"] for e in entries} == {"co-alpha"}
    assert alpha.get("/api/audit", params={"scope": "co-beta"}).status_code == 403


def test_super_admin_reads_any_scope(as_user):
    as_user("beta-admin").post("/api/tenants", json={"full_name": "Mona", "phone": "+966500000011"})
    entries = as_user("root").get("/api/audit", params={"scope": "co-beta"}).json()
    assert [e["event_type"] for e in entries] == ["RECORD_CREATED"]


# ==================== Companies ====================

def test_company_lifecycle(as_user):
    root = as_user("root")
    created = root.post("/api/companies", json={"name": "Gamma Group", "email": "ops@gamma.sa"})
    assert created.status_code == 201
    assert created.json()["status"] == "trial"

    assert as_user("alpha-admin").get("/api/companies").status_code == 403

    suspended = root.patch("/api/companies/co-beta/status", json={"status": "suspended", "reason": "billing"})
    assert suspended.json()["status"] == "suspended"
    assert as_user("beta-admin").get("/api/context").status_code == 403


def test_settings_are_validated_and_scoped(as_user):
    alpha = as_user("alpha-admin")
    assert alpha.patch("/api/companies/co-alpha/settings", json={"grace_period_days": 10}).status_code == 200
    assert alpha.patch("/api/companies/co-beta/settings", json={"grace_period_days": 10}).status_code == 403
    # escalation and severity would both start after the grace period ends
    invalid = alpha.patch(
        "/api/companies/co-alpha/settings",
        json={"grace_period_days": 2, "escalation_interval_days": 10},
    )
    assert invalid.status_code == 422
    assert as_user("alpha-staff").patch(
        "/api/companies/co-alpha/settings", json={"grace_period_days": 5},
    ).status_code == 403


def test_clearing_a_setting_validates_the_stored_policy(as_user):
    alpha = as_user("alpha-admin")
    assert alpha.patch(
        "/api/companies/co-alpha/settings",
        json={"grace_period_days": 20, "escalation_interval_days": 21, "severe_overdue_days": 60},
    ).status_code == 200

    # Back to the default grace of 7 would leave days 8..20 unclassified
    cleared = alpha.patch("/api/companies/co-alpha/settings", json={"grace_period_days": None})
    assert cleared.status_code == 422
    assert alpha.get("/api/finance/issues", params=AS_OF).status_code == 200

    assert alpha.patch(
        "/api/companies/co-alpha/settings",
        json={"grace_period_days": None, "escalation_interval_days": None, "severe_overdue_days": None},
    ).status_code == 200


def test_incoherent_stored_policy_falls_back_to_defaults(as_user, db, audit_sink):
    company = db.get(Company, "co-alpha")
    company.grace_period_days = 2
    company.escalation_interval_days = 40
    company.severe_overdue_days = 50
    db.commit()

    response = as_user("alpha-admin").get("/api/finance/issues", params=AS_OF)
    assert response.status_code == 200
    assert [p["id"] for p in response.json()["within_grace"]] == ["p-alpha-grace"]
    assert any(e.event_type == "POLICY_INVALID" and e.scope == "co-alpha" for e in audit_sink.entries)


def test_add_member(as_user):
    alpha = as_user("alpha-admin")
    added = alpha.post("/api/companies/co-alpha/members", json={"principal_uid": "new-user", "role": "accountant"})
    assert added.status_code == 201
    assert added.json()["company_id"] == "co-alpha"
    assert as_user("new-user").get("/api/context").json()["role"] == "accountant"

    assert alpha.post(
        "/api/companies/co-alpha/members", json={"principal_uid": "new-user", "role": "staff"},
    ).status_code == 409
    assert alpha.post(
        "/api/companies/co-alpha/members", json={"principal_uid": "sneaky", "role": "SUPER_ADMIN"},
    ).status_code == 400


def test_company_metrics_are_operator_only(as_user):
    assert as_user("alpha-admin").get("/api/companies/metrics", params=AS_OF).status_code == 403

    metrics = as_user("root").get("/api/companies/metrics", params=AS_OF).json()
    by_id = {m["company_id"]: m for m in metrics}
    assert set(by_id) == {"co-alpha", "co-beta", "co-frozen"}
    assert by_id["co-alpha"]["overdue_payments"] == 2
    assert by_id["co-alpha"]["monthly_revenue"] == 5000.0
    assert by_id["co-frozen"]["status"] == "suspended"


def test_system_metrics_summary(as_user):
    summary = as_user("root").get("/api/companies/metrics/summary", params=AS_OF).json()
    assert summary["total_companies"] == 3
    assert summary["system_health"] == "risk"
    assert [m["company_id"] for m in summary["comparison"]["needs_attention"]] == ["co-alpha", "co-beta"]
