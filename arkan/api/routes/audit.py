"""
Audit Routes
Read side of the audit trail. Super admins see any scope; company users
only their own company's scope.
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional

from arkan.core.deps import get_audit_logger, get_middleware, require_permission
from arkan.schemas.audit import AuditEntryResponse
from arkan.services.audit_logger import AuditLevel, AuditLogger
from arkan.services.tenant_context import CompanyContext
from arkan.services.tenant_middleware import TenantQueryMiddleware

router = APIRouter(prefix="/api/audit", tags=["audit"])


@router.get("", response_model=List[AuditEntryResponse])
def list_audit_entries(
    scope: Optional[str] = None,
    category: Optional[str] = None,
    level: Optional[AuditLevel] = None,
    limit: int = Query(100, ge=1, le=1000),
    context: CompanyContext = Depends(require_permission("settings", "view")),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
    audit: AuditLogger = Depends(get_audit_logger),
):
    if not context.is_super_admin:
        scope = middleware.tenant_filter(context, scope).company_id
    entries = audit.list_entries(scope=scope, category=category, level=level.value if level else None, limit=limit)
    return [AuditEntryResponse.from_entry(e) for e in entries]
