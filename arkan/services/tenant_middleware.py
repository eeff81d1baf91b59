"""
Tenant Query Middleware

Every data access goes through here. A non-privileged context always gets an
equality filter on its own company_id; a conflicting caller-supplied company_id
is rejected (CrossTenantAccessError), never silently narrowed. Each rejection
writes exactly one audit entry carrying both tenant ids.

Privileged (super admin) contexts:
  • switched into a company - reads default to that company, an explicit
    company_id is honored; writes go to that company
  • system-wide view - reads are unfiltered unless a company_id is supplied;
    writes must name a company_id explicitly
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Type, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from arkan.core.exceptions import CrossTenantAccessError, RecordNotFoundError, TenantScopeRequiredError
from arkan.services.audit_logger import AuditCategory, AuditEvent, AuditLogger
from arkan.services.tenant_context import CompanyContext

logger = logging.getLogger(__name__)

T = TypeVar("T")

TENANT_FIELD = "company_id"


def _company_of(record: Any) -> Optional[str]:
    if isinstance(record, dict):
        return record.get(TENANT_FIELD)
    return getattr(record, TENANT_FIELD, None)


@dataclass(frozen=True)
class TenantFilter:
    """Equality predicate on company_id, or 'all tenants' for a privileged system-wide view."""
    company_id: Optional[str] = None
    all_tenants: bool = False

    def matches(self, company_id: Optional[str]) -> bool:
        return self.all_tenants or (company_id is not None and company_id == self.company_id)

    def apply(self, stmt, model):
        if self.all_tenants:
            return stmt
        return stmt.where(getattr(model, TENANT_FIELD) == self.company_id)

    def as_filters(self) -> Dict[str, Any]:
        return {} if self.all_tenants else {TENANT_FIELD: self.company_id}


class TenantQueryMiddleware:
    """Stateless apart from the audit logger it writes rejections to."""

    def __init__(self, audit: AuditLogger):
        self.audit = audit

    # ==================== Reads ====================

    def tenant_filter(self, context: CompanyContext, requested_company_id: Optional[str] = None) -> TenantFilter:
        if context.is_super_admin:
            if requested_company_id:
                return TenantFilter(company_id=requested_company_id)
            if context.company_id:
                return TenantFilter(company_id=context.company_id)
            return TenantFilter(all_tenants=True)

        if not context.company_id:
            raise TenantScopeRequiredError()
        if requested_company_id and requested_company_id != context.company_id:
            self._reject(context, requested_company_id, "read")
        return TenantFilter(company_id=context.company_id)

    def scope_filters(self, context: CompanyContext, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Scope a plain equality-filter dict for any filter-and-fetch store."""
        scoped = dict(filters or {})
        tenant_filter = self.tenant_filter(context, scoped.pop(TENANT_FIELD, None))
        scoped.update(tenant_filter.as_filters())
        return scoped

    def scope_select(self, context: CompanyContext, stmt, model, requested_company_id: Optional[str] = None):
        """Apply the tenant filter to a SQLAlchemy select over a tenant-owned model."""
        return self.tenant_filter(context, requested_company_id).apply(stmt, model)

    def scope_records(
        self,
        context: CompanyContext,
        records: Iterable[T],
        requested_company_id: Optional[str] = None,
    ) -> List[T]:
        """Keep only in-memory records visible to the context."""
        tenant_filter = self.tenant_filter(context, requested_company_id)
        return [r for r in records if tenant_filter.matches(_company_of(r))]

    def ensure_records_in_scope(self, context: CompanyContext, records: Iterable[T], operation: str = "read") -> List[T]:
        """Reject the whole collection if any record belongs to another company."""
        records = list(records)
        for record in records:
            self.check_access(context, record, operation)
        return records

    def check_access(self, context: CompanyContext, record: Any, operation: str = "read") -> None:
        if context.is_super_admin:
            return
        owner = _company_of(record)
        if owner != context.company_id:
            self._reject(context, owner, operation, record)

    # ==================== Writes ====================

    def stamp_write(self, context: CompanyContext, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Return a copy of payload with the owning company_id stamped on."""
        data = dict(payload)
        supplied = data.get(TENANT_FIELD)

        if context.is_system_wide:
            if not supplied:
                raise TenantScopeRequiredError()
            return data

        if supplied and supplied != context.company_id:
            self._reject(context, supplied, "create")
        data[TENANT_FIELD] = context.company_id
        return data

    def validate_update(self, context: CompanyContext, record: Any, updates: Dict[str, Any]) -> Dict[str, Any]:
        """Check the record is in scope; company_id itself can never change."""
        self.check_access(context, record, "update")
        data = dict(updates)
        owner = _company_of(record)
        if TENANT_FIELD in data:
            if data[TENANT_FIELD] != owner:
                self._reject(context, data[TENANT_FIELD], "update", record)
            data.pop(TENANT_FIELD)
        return data

    def validate_delete(self, context: CompanyContext, record: Any) -> None:
        self.check_access(context, record, "delete")

    def stamp_writes(self, context: CompanyContext, payloads: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
        """Stamp a batch; one foreign payload rejects the whole batch."""
        return [self.stamp_write(context, payload) for payload in payloads]

    def validate_deletes(self, context: CompanyContext, records: Iterable[Any]) -> List[Any]:
        return self.ensure_records_in_scope(context, records, "delete")

    def _reject(self, context: CompanyContext, attempted: Optional[str], operation: str, record: Any = None):
        resource = type(record).__name__ if record is not None and not isinstance(record, dict) else None
        record_id = record.get("id") if isinstance(record, dict) else getattr(record, "id", None)
        self.audit.log_warning(
            context.audit_scope,
            AuditEvent.CROSS_TENANT_ACCESS,
            f"Cross-tenant {operation} blocked: {context.company_id} attempted {attempted}",
            f"تم منع عملية {operation} عبر الشركات: {context.company_id} حاول الوصول إلى {attempted}",
            {
                "attempted_company_id": attempted,
                "actual_company_id": context.company_id,
                "user_id": context.user_id,
                "operation": operation,
                "resource": resource,
                "record_id": record_id,
            },
            category=AuditCategory.SECURITY,
        )
        logger.warning(
            f"[SECURITY] Cross-tenant {operation} by {context.user_id}: "
            f"{context.company_id} -> {attempted}"
        )
        raise CrossTenantAccessError(attempted, context.company_id)


_CATEGORIES = {
    "payments": AuditCategory.PAYMENT,
    "contracts": AuditCategory.CONTRACT,
    "tenants": AuditCategory.TENANT,
    "maintenance_requests": AuditCategory.MAINTENANCE,
}


class ScopedRepository:
    """CRUD over tenant-owned models, every call routed through the middleware."""

    def __init__(self, db: Session, context: CompanyContext, middleware: TenantQueryMiddleware):
        self.db = db
        self.context = context
        self.middleware = middleware

    def list(self, model: Type[T], filters: Optional[Dict[str, Any]] = None, order_by=None) -> List[T]:
        self._require_tenant_owned(model)
        filters = dict(filters or {})
        requested = filters.pop(TENANT_FIELD, None)

        stmt = self.middleware.scope_select(self.context, select(model), model, requested)
        for field_name, value in filters.items():
            if value is not None:
                stmt = stmt.where(getattr(model, field_name) == value)
        if order_by is not None:
            stmt = stmt.order_by(order_by)
        return list(self.db.execute(stmt).scalars().all())

    def get(self, model: Type[T], record_id: str, operation: str = "read") -> T:
        self._require_tenant_owned(model)
        record = self.db.get(model, record_id)
        if record is None:
            raise RecordNotFoundError(f"{model.__name__} {record_id} not found")
        self.middleware.check_access(self.context, record, operation)
        return record

    def create(self, model: Type[T], payload: Dict[str, Any]) -> T:
        self._require_tenant_owned(model)
        data = self.middleware.stamp_write(self.context, payload)
        record = model(**data)
        self.db.add(record)
        self.db.commit()
        self.db.refresh(record)
        self._audit(model, AuditEvent.RECORD_CREATED, record, "created", "إنشاء")
        return record

    def create_many(self, model: Type[T], payloads: Iterable[Dict[str, Any]]) -> List[T]:
        """All or nothing: every payload is stamped before anything is written."""
        self._require_tenant_owned(model)
        records = [model(**data) for data in self.middleware.stamp_writes(self.context, payloads)]
        self.db.add_all(records)
        self.db.commit()
        for record in records:
            self.db.refresh(record)
            self._audit(model, AuditEvent.RECORD_CREATED, record, "created", "إنشاء")
        return records

    def update(self, model: Type[T], record_id: str, updates: Dict[str, Any]) -> T:
        record = self.get(model, record_id, "update")
        data = self.middleware.validate_update(self.context, record, updates)
        for key, value in data.items():
            setattr(record, key, value)
        self.db.commit()
        self.db.refresh(record)
        self._audit(model, AuditEvent.RECORD_UPDATED, record, "updated", "تحديث", {"fields": sorted(data)})
        return record

    def delete(self, model: Type[T], record_id: str) -> None:
        record = self.get(model, record_id, "delete")
        self.middleware.validate_delete(self.context, record)
        self.db.delete(record)
        self.db.commit()
        self._audit(model, AuditEvent.RECORD_DELETED, record, "deleted", "حذف")

    def delete_many(self, model: Type[T], record_ids: Iterable[str]) -> int:
        self._require_tenant_owned(model)
        ids = list(record_ids)
        records = self.db.execute(select(model).where(model.id.in_(ids))).scalars().all()
        missing = set(ids) - {r.id for r in records}
        if missing:
            raise RecordNotFoundError(f"{model.__name__} {sorted(missing)[0]} not found")
        self.middleware.validate_deletes(self.context, records)
        for record in records:
            self.db.delete(record)
        self.db.commit()
        for record in records:
            self._audit(model, AuditEvent.RECORD_DELETED, record, "deleted", "حذف")
        return len(records)

    def _audit(self, model, event_type, record, verb_en, verb_ar, extra=None):
        metadata = {"record_id": record.id, "user_id": self.context.user_id}
        metadata.update(extra or {})
        self.middleware.audit.log_info(
            record.company_id,
            event_type,
            f"{model.__name__} {record.id} {verb_en} by {self.context.user_id}",
            f"{verb_ar} {model.__name__} {record.id} بواسطة {self.context.user_id}",
            metadata,
            category=_CATEGORIES.get(model.__tablename__, AuditCategory.SYSTEM),
        )

    @staticmethod
    def _require_tenant_owned(model) -> None:
        if not hasattr(model, TENANT_FIELD):
            raise ValueError(f"{model.__name__} is not a tenant-owned model")
