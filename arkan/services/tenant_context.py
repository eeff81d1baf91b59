"""
Tenant Context Resolver

Turns an authenticated Principal into exactly one immutable CompanyContext.
Super admins may switch into any company; every switch attempt, successful
or not, is appended to the context-switch log before the call returns.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from arkan.core.exceptions import (
    AuthenticationError,
    PermissionDeniedError,
    SuspendedTenantError,
    TenantNotFoundError,
)
from arkan.core.security import Principal
from arkan.models.audit import ContextSwitchLog
from arkan.models.company import ACCESSIBLE_STATUSES, Company, CompanyMember, CompanyStatus, UserRole
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger, SYSTEM_SCOPE

logger = logging.getLogger(__name__)

ALL_ACTIONS = ("view", "create", "edit", "delete")
MODULES = (
    "properties", "units", "tenants", "contracts", "payments",
    "maintenance", "reports", "employees", "settings",
)


def _grants(**modules) -> FrozenSet[str]:
    return frozenset(f"{module}:{action}" for module, actions in modules.items() for action in actions)


ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[str]] = {
    UserRole.COMPANY_ADMIN: _grants(
        properties=ALL_ACTIONS, units=ALL_ACTIONS, tenants=ALL_ACTIONS,
        contracts=ALL_ACTIONS, payments=ALL_ACTIONS, maintenance=ALL_ACTIONS,
        reports=("view",), employees=ALL_ACTIONS, settings=("view", "edit"),
    ),
    UserRole.MANAGER: _grants(
        properties=("view", "create", "edit"), units=("view", "create", "edit"),
        tenants=("view", "create", "edit"), contracts=("view", "create", "edit"),
        payments=("view", "create", "edit"), maintenance=ALL_ACTIONS,
        reports=("view",), employees=("view",), settings=("view",),
    ),
    UserRole.STAFF: _grants(
        properties=("view",), units=("view",), tenants=("view", "create", "edit"),
        contracts=("view",), payments=("view",), maintenance=("view", "create"),
    ),
    UserRole.ACCOUNTANT: _grants(
        properties=("view",), units=("view",), tenants=("view",), contracts=("view",),
        payments=("view", "create", "edit"), maintenance=("view",), reports=("view",),
    ),
    UserRole.MAINTENANCE: _grants(
        properties=("view",), units=("view",), maintenance=("view", "create", "edit"),
    ),
    # Periodic sweep: read-only over the data it classifies
    UserRole.AUTOMATION: _grants(
        tenants=("view",), contracts=("view",), payments=("view",),
        maintenance=("view",), reports=("view",),
    ),
    UserRole.SUPER_ADMIN: frozenset(f"{m}:{a}" for m in MODULES for a in ALL_ACTIONS),
}

AUTOMATION_USER_ID = "automation"


@dataclass(frozen=True)
class CompanyContext:
    """
    Resolved execution context for one request or unit of work.

    company_id is None only for a super admin's system-wide view.
    Never mutated: switching produces a new object.
    """
    company_id: Optional[str]
    company_name: str
    user_id: str
    email: Optional[str]
    role: UserRole
    permissions: FrozenSet[str]
    is_super_admin: bool = False
    is_context_switch: bool = False

    @property
    def is_system_wide(self) -> bool:
        return self.is_super_admin and self.company_id is None

    @property
    def audit_scope(self) -> str:
        return self.company_id or SYSTEM_SCOPE

    def has_permission(self, module: str, action: str) -> bool:
        return self.is_super_admin or f"{module}:{action}" in self.permissions


def company_context(company: Company, user_id: str, email: Optional[str], role: UserRole) -> CompanyContext:
    return CompanyContext(
        company_id=company.id,
        company_name=company.name,
        user_id=user_id,
        email=email,
        role=role,
        permissions=ROLE_PERMISSIONS.get(role, frozenset()),
    )


def super_admin_context(user_id: str, email: Optional[str], company: Optional[Company] = None) -> CompanyContext:
    return CompanyContext(
        company_id=company.id if company else None,
        company_name=company.name if company else "System View",
        user_id=user_id,
        email=email,
        role=UserRole.SUPER_ADMIN,
        permissions=ROLE_PERMISSIONS[UserRole.SUPER_ADMIN],
        is_super_admin=True,
        is_context_switch=company is not None,
    )


# ── Store boundary ────────────────────────────────────────────────────────────

class CompanyDirectory(Protocol):
    def get_member(self, principal_uid: str) -> Optional[CompanyMember]: ...

    def get_company(self, company_id: str) -> Optional[Company]: ...

    def list_companies(self, statuses=None) -> List[Company]: ...

    def set_active_company(self, principal_uid: str, company_id: Optional[str]) -> None: ...

    def record_switch(self, **fields) -> ContextSwitchLog: ...

    def switch_history(self, principal_uid: Optional[str] = None, limit: int = 100) -> List[ContextSwitchLog]: ...


class SqlCompanyDirectory:
    """CompanyDirectory over the SQLAlchemy session of the current unit of work."""

    def __init__(self, db: Session):
        self.db = db

    def get_member(self, principal_uid: str) -> Optional[CompanyMember]:
        return self.db.execute(
            select(CompanyMember).where(CompanyMember.principal_uid == principal_uid)
        ).scalar_one_or_none()

    def get_company(self, company_id: str) -> Optional[Company]:
        if not company_id:
            return None
        return self.db.get(Company, company_id)

    def list_companies(self, statuses=None) -> List[Company]:
        stmt = select(Company).order_by(Company.created_at, Company.id)
        if statuses:
            stmt = stmt.where(Company.status.in_(list(statuses)))
        return list(self.db.execute(stmt).scalars().all())

    def set_active_company(self, principal_uid: str, company_id: Optional[str]) -> None:
        member = self.get_member(principal_uid)
        if member is None:
            return
        member.active_company_id = company_id
        self.db.commit()

    def record_switch(self, **fields) -> ContextSwitchLog:
        # Committed immediately: the log must survive a failed request
        entry = ContextSwitchLog(**fields)
        self.db.add(entry)
        self.db.commit()
        return entry

    def switch_history(self, principal_uid: Optional[str] = None, limit: int = 100) -> List[ContextSwitchLog]:
        stmt = select(ContextSwitchLog)
        if principal_uid is not None:
            stmt = stmt.where(ContextSwitchLog.principal_uid == principal_uid)
        stmt = stmt.order_by(ContextSwitchLog.created_at.desc()).limit(limit)
        return list(self.db.execute(stmt).scalars().all())


# ── Resolver ──────────────────────────────────────────────────────────────────

class TenantContextResolver:
    """Resolves and switches CompanyContext objects. Holds no per-request state."""

    def __init__(self, directory: CompanyDirectory, audit: AuditLogger):
        self.directory = directory
        self.audit = audit

    def resolve_context(self, principal: Principal) -> CompanyContext:
        """
        Resolve the principal's active context.

        Raises:
            AuthenticationError: no active membership, or membership points nowhere
            SuspendedTenantError: the member's company is suspended or inactive
        """
        member = self.directory.get_member(principal.uid)
        if member is None or not member.is_active:
            self.audit.log_warning(
                SYSTEM_SCOPE,
                AuditEvent.CONTEXT_RESOLVED,
                f"Principal {principal.uid} has no active company membership",
                f"المستخدم {principal.uid} ليس لديه عضوية نشطة",
                {"principal_uid": principal.uid, "outcome": "authentication_failed"},
                category=AuditCategory.SECURITY,
            )
            raise AuthenticationError()

        email = member.email or principal.email

        if member.role == UserRole.SUPER_ADMIN:
            company = None
            if member.active_company_id:
                company = self.directory.get_company(member.active_company_id)
                if company is None:
                    logger.warning(
                        f"[CONTEXT] Active company {member.active_company_id} for {principal.uid} "
                        f"no longer exists, falling back to system view"
                    )
            return super_admin_context(principal.uid, email, company)

        company = self.directory.get_company(member.company_id)
        if company is None:
            logger.warning(f"[CONTEXT] Member {principal.uid} references unknown company {member.company_id}")
            raise AuthenticationError()

        if company.status not in ACCESSIBLE_STATUSES:
            self.audit.log_warning(
                company.id,
                AuditEvent.ACCESS_SUSPENDED,
                f"Access refused for {principal.uid}: company is {company.status.value}",
                f"تم رفض وصول {principal.uid}: حالة الشركة {company.status.value}",
                {"principal_uid": principal.uid, "status": company.status.value},
                category=AuditCategory.SECURITY,
            )
            raise SuspendedTenantError()

        context = company_context(company, principal.uid, email, member.role)
        logger.debug(f"[CONTEXT] Resolved {principal.uid} -> {company.id} as {member.role.value}")
        return context

    def switch_context(
        self,
        principal: Principal,
        target_company_id: str,
        reason: Optional[str] = None,
        current: Optional[CompanyContext] = None,
    ) -> CompanyContext:
        """
        Switch a super admin into target_company_id.

        Exactly one switch-log entry is appended per call. On failure the
        previous context (and the stored active company) is left unchanged.

        Raises:
            PermissionDeniedError: principal is not an active super admin
            TenantNotFoundError: target company does not exist
        """
        member = self.directory.get_member(principal.uid)
        previous = current.company_id if current else (member.active_company_id if member else None)
        email = (member.email if member else None) or principal.email

        if member is None or not member.is_active or member.role != UserRole.SUPER_ADMIN:
            self._record(principal.uid, email, previous, target_company_id, "switch_in", reason,
                         success=False, failure_reason=PermissionDeniedError.code)
            self.audit.log_warning(
                SYSTEM_SCOPE,
                AuditEvent.CONTEXT_SWITCH_DENIED,
                f"Unauthorized context switch by {principal.uid} to {target_company_id}",
                f"محاولة تبديل سياق غير مصرح بها من {principal.uid} إلى {target_company_id}",
                {"principal_uid": principal.uid, "from_company_id": previous, "to_company_id": target_company_id},
                category=AuditCategory.SECURITY,
            )
            raise PermissionDeniedError(
                "Only a super admin can switch company context",
                "فقط المدير العام يمكنه تبديل سياق الشركة",
            )

        company = self.directory.get_company(target_company_id)
        if company is None:
            self._record(principal.uid, email, previous, target_company_id, "switch_in", reason,
                         success=False, failure_reason=TenantNotFoundError.code)
            self.audit.log_warning(
                SYSTEM_SCOPE,
                AuditEvent.CONTEXT_SWITCH_DENIED,
                f"Context switch by {principal.uid} to unknown company {target_company_id}",
                f"محاولة تبديل إلى شركة غير موجودة {target_company_id}",
                {"principal_uid": principal.uid, "from_company_id": previous, "to_company_id": target_company_id},
                category=AuditCategory.SECURITY,
            )
            raise TenantNotFoundError()

        self._record(principal.uid, email, previous, company.id, "switch_in", reason, success=True)
        self.directory.set_active_company(principal.uid, company.id)
        self.audit.log_info(
            company.id,
            AuditEvent.CONTEXT_SWITCH,
            f"Super admin {principal.uid} switched into {company.name}",
            f"المدير العام {principal.uid} انتقل إلى {company.name_ar or company.name}",
            {"principal_uid": principal.uid, "from_company_id": previous, "reason": reason},
            category=AuditCategory.SECURITY,
        )
        if company.status == CompanyStatus.SUSPENDED:
            logger.info(f"[CONTEXT] {principal.uid} inspecting suspended company {company.id}")

        return super_admin_context(principal.uid, email, company)

    def exit_context(
        self,
        principal: Principal,
        reason: Optional[str] = None,
        current: Optional[CompanyContext] = None,
    ) -> CompanyContext:
        """Return a super admin to the system-wide view (logged as switch_out)."""
        member = self.directory.get_member(principal.uid)
        previous = current.company_id if current else (member.active_company_id if member else None)
        email = (member.email if member else None) or principal.email

        if member is None or not member.is_active or member.role != UserRole.SUPER_ADMIN:
            self._record(principal.uid, email, previous, None, "switch_out", reason,
                         success=False, failure_reason=PermissionDeniedError.code)
            raise PermissionDeniedError(
                "Only a super admin can exit company context",
                "فقط المدير العام يمكنه الخروج من سياق الشركة",
            )

        self._record(principal.uid, email, previous, None, "switch_out", reason, success=True)
        self.directory.set_active_company(principal.uid, None)
        self.audit.log_info(
            previous or SYSTEM_SCOPE,
            AuditEvent.CONTEXT_EXIT,
            f"Super admin {principal.uid} returned to system view",
            f"المدير العام {principal.uid} عاد إلى عرض النظام",
            {"principal_uid": principal.uid, "from_company_id": previous, "reason": reason},
            category=AuditCategory.SECURITY,
        )
        return super_admin_context(principal.uid, email)

    def resolve_service_context(self, company_id: str) -> CompanyContext:
        """
        Non-privileged context for unattended work (the automation sweep)
        scoped to exactly one company.
        """
        company = self.directory.get_company(company_id)
        if company is None:
            raise TenantNotFoundError()
        if company.status not in ACCESSIBLE_STATUSES:
            raise SuspendedTenantError()
        return company_context(company, AUTOMATION_USER_ID, None, UserRole.AUTOMATION)

    def get_switch_history(self, principal_uid: Optional[str] = None, limit: int = 100) -> List[ContextSwitchLog]:
        return self.directory.switch_history(principal_uid, limit)

    def _record(self, principal_uid, email, from_company_id, to_company_id, action, reason,
                success: bool, failure_reason: Optional[str] = None) -> ContextSwitchLog:
        entry = self.directory.record_switch(
            principal_uid=principal_uid,
            principal_email=email,
            from_company_id=from_company_id,
            to_company_id=to_company_id,
            action=action,
            reason=reason,
            success=success,
            failure_reason=failure_reason,
        )
        status = "OK" if success else f"FAILED ({failure_reason})"
        logger.info(f"[CONTEXT] {action} {principal_uid}: {from_company_id} -> {to_company_id} {status}")
        return entry

