from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from functools import lru_cache
from datetime import date, datetime, time
from typing import Callable, Optional
import logging

from arkan.core.config import settings
from arkan.core.exceptions import AuthenticationError, PermissionDeniedError
from arkan.core.security import Principal, decode_principal
from arkan.database import SessionLocal, get_db
from arkan.db.base import utcnow
from arkan.services.audit_logger import AuditLogger, DatabaseAuditSink
from arkan.services.tenant_context import CompanyContext, SqlCompanyDirectory, TenantContextResolver
from arkan.services.tenant_middleware import ScopedRepository, TenantQueryMiddleware

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)


@lru_cache()
def get_audit_logger() -> AuditLogger:
    """Process-wide audit logger writing to the audit_log_entries table."""
    return AuditLogger(DatabaseAuditSink(SessionLocal), settings.AUDIT_FALLBACK_BUFFER_SIZE)


def get_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Principal:
    """
    Decode the bearer token into a Principal.
    Returns 401 if the header is missing or the token is invalid.
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Missing or invalid authorization header", "رأس التفويض مفقود أو غير صالح")
    return decode_principal(credentials.credentials)


def get_resolver(
    db: Session = Depends(get_db),
    audit: AuditLogger = Depends(get_audit_logger),
) -> TenantContextResolver:
    return TenantContextResolver(SqlCompanyDirectory(db), audit)


def get_middleware(audit: AuditLogger = Depends(get_audit_logger)) -> TenantQueryMiddleware:
    return TenantQueryMiddleware(audit)


def get_company_context(
    principal: Principal = Depends(get_principal),
    resolver: TenantContextResolver = Depends(get_resolver),
) -> CompanyContext:
    """Resolve the caller's context. 401 without membership, 403 when suspended."""
    return resolver.resolve_context(principal)


def get_repository(
    db: Session = Depends(get_db),
    context: CompanyContext = Depends(get_company_context),
    middleware: TenantQueryMiddleware = Depends(get_middleware),
) -> ScopedRepository:
    return ScopedRepository(db, context, middleware)


def require_permission(module: str, action: str):
    """Dependency factory: the resolved context must hold module:action."""

    def checker(context: CompanyContext = Depends(get_company_context)) -> CompanyContext:
        if not context.has_permission(module, action):
            logger.warning(f"Permission denied: {context.user_id} lacks {module}:{action}")
            raise PermissionDeniedError(
                f"Missing permission {module}:{action}",
                f"لا تملك صلاحية {module}:{action}",
            )
        return context

    return checker


def require_super_admin(context: CompanyContext = Depends(get_company_context)) -> CompanyContext:
    if not context.is_super_admin:
        raise PermissionDeniedError("Super admin access required", "يتطلب صلاحيات المدير العام")
    return context


def get_session_factory() -> Callable:
    """Session factory for work that opens its own sessions (the automation sweep)."""
    return SessionLocal


def get_now(as_of: Optional[date] = Query(None, description="Evaluate as of this date (default: now, UTC)")) -> datetime:
    if as_of is not None:
        return datetime.combine(as_of, time())
    return utcnow()
