from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from arkan.core.deps import get_audit_logger, get_session_factory
from arkan.core.security import Principal, create_access_token
from arkan.database import get_db, init_db
from arkan.main import app
from arkan.models.company import Company, CompanyMember, CompanyStatus, UserRole
from arkan.models.contract import Contract, ContractStatus, PaymentFrequency
from arkan.models.maintenance import MaintenanceRequest
from arkan.models.payment import Payment, PaymentStatus
from arkan.models.tenant import Tenant
from arkan.services.audit_logger import AuditLogger, MemoryAuditSink
from arkan.services.tenant_context import SqlCompanyDirectory, TenantContextResolver
from arkan.services.tenant_middleware import TenantQueryMiddleware

NOW = datetime(2025, 3, 15, 9, 0)


@pytest.fixture
def engine(tmp_path):
    # File-backed so worker threads (sweep, TestClient) each get their own connection
    engine = create_engine(
        f"sqlite:///{tmp_path / 'arkan_test.db'}",
        connect_args={"check_same_thread": False},
    )
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def audit_sink():
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink):
    return AuditLogger(audit_sink)


@pytest.fixture
def middleware(audit):
    return TenantQueryMiddleware(audit)


@pytest.fixture
def resolver(db, audit):
    return TenantContextResolver(SqlCompanyDirectory(db), audit)


@pytest.fixture
def seeded(db):
    """Two active companies, one suspended, and a super admin."""
    alpha = Company(id="co-alpha", name="Alpha Estates", name_ar="ألفا", status=CompanyStatus.ACTIVE)
    beta = Company(id="co-beta", name="Beta Holdings", name_ar="بيتا", status=CompanyStatus.TRIAL)
    frozen = Company(id="co-frozen", name="Frozen Realty", status=CompanyStatus.SUSPENDED)
    db.add_all([alpha, beta, frozen])
    db.flush()

    db.add_all([
        CompanyMember(principal_uid="alpha-admin", email="admin@alpha.sa", company_id="co-alpha",
                      role=UserRole.COMPANY_ADMIN),
        CompanyMember(principal_uid="alpha-staff", email="staff@alpha.sa", company_id="co-alpha",
                      role=UserRole.STAFF),
        CompanyMember(principal_uid="beta-admin", email="admin@beta.sa", company_id="co-beta",
                      role=UserRole.COMPANY_ADMIN),
        CompanyMember(principal_uid="frozen-admin", email="admin@frozen.sa", company_id="co-frozen",
                      role=UserRole.COMPANY_ADMIN),
        CompanyMember(principal_uid="root", email="root@arkan.sa", role=UserRole.SUPER_ADMIN),
        CompanyMember(principal_uid="gone", company_id="co-alpha", role=UserRole.STAFF, is_active=False),
    ])

    db.add_all([
        Tenant(id="t-ahmed", company_id="co-alpha", full_name="Ahmed Ali", phone="+966500000001",
               email="ahmed@example.com"),
        Tenant(id="t-sara", company_id="co-beta", full_name="Sara Omar", phone="+966500000002"),
    ])
    db.flush()

    db.add_all([
        Contract(id="c-alpha", company_id="co-alpha", property_name="Palm Tower", unit_no="A-101",
                 tenant_id="t-ahmed", tenant_name="Ahmed Ali", start_date=date(2024, 4, 1),
                 end_date=date(2025, 4, 1), rent_amount=5000.0, payment_frequency=PaymentFrequency.MONTHLY,
                 status=ContractStatus.ACTIVE),
        Contract(id="c-beta", company_id="co-beta", property_name="Sea View", unit_no="B-7",
                 tenant_id="t-sara", tenant_name="Sara Omar", start_date=date(2024, 1, 1),
                 end_date=date(2025, 12, 31), rent_amount=3000.0, payment_frequency=PaymentFrequency.MONTHLY,
                 status=ContractStatus.ACTIVE),
    ])
    db.flush()

    db.add_all([
        # 5 days overdue: inside the 7-day grace period
        Payment(id="p-alpha-grace", company_id="co-alpha", contract_id="c-alpha", tenant_name="Ahmed Ali",
                unit_no="A-101", due_date=date(2025, 3, 10), amount=5000.0, status=PaymentStatus.DUE),
        # 30 days overdue: severe, escalation level 4
        Payment(id="p-alpha-late", company_id="co-alpha", contract_id="c-alpha", tenant_name="Ahmed Ali",
                unit_no="A-101", due_date=date(2025, 2, 13), amount=5000.0, status=PaymentStatus.OVERDUE),
        Payment(id="p-alpha-paid", company_id="co-alpha", contract_id="c-alpha", tenant_name="Ahmed Ali",
                unit_no="A-101", due_date=date(2025, 3, 1), amount=5000.0, status=PaymentStatus.PAID,
                paid_at=datetime(2025, 3, 2, 10, 0)),
        Payment(id="p-beta", company_id="co-beta", contract_id="c-beta", tenant_name="Sara Omar",
                unit_no="B-7", due_date=date(2025, 3, 12), amount=3000.0, status=PaymentStatus.DUE),
    ])
    db.add(MaintenanceRequest(id="m-alpha", company_id="co-alpha", unit_no="A-101", title="AC repair",
                              cost=750.0, created_at=datetime(2024, 4, 20)))
    db.commit()
    return {"alpha": alpha, "beta": beta, "frozen": frozen}


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def principal():
    def make(uid: str, email: str = None) -> Principal:
        return Principal(uid=uid, email=email)
    return make


@pytest.fixture
def auth_headers():
    def make(uid: str) -> dict:
        token = create_access_token({"sub": uid})
        return {"Authorization": f"Bearer {token}"}
    return make


@pytest.fixture
def client(session_factory, audit, seeded):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_audit_logger] = lambda: audit
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    yield TestClient(app)
    app.dependency_overrides.clear()
