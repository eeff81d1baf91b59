"""
Context Routes
Resolve the caller's company context; super admin context switching and its log.
"""
from fastapi import APIRouter, Depends, Query
from typing import List, Optional
import logging

from arkan.core.deps import get_company_context, get_principal, get_resolver, require_super_admin
from arkan.core.security import Principal
from arkan.schemas.company import (
    ContextExitRequest,
    ContextResponse,
    ContextSwitchLogResponse,
    ContextSwitchRequest,
)
from arkan.services.tenant_context import CompanyContext, TenantContextResolver

router = APIRouter(prefix="/api/context", tags=["context"])
logger = logging.getLogger(__name__)


@router.get("", response_model=ContextResponse)
def get_context(context: CompanyContext = Depends(get_company_context)):
    """Return the resolved context for the current principal."""
    return ContextResponse.from_context(context)


@router.post("/switch", response_model=ContextResponse)
def switch_context(
    body: ContextSwitchRequest,
    principal: Principal = Depends(get_principal),
    resolver: TenantContextResolver = Depends(get_resolver),
):
    """Super admin only. Every attempt is logged, including refused ones."""
    context = resolver.switch_context(principal, body.company_id, body.reason)
    logger.info(f"[CONTEXT] {principal.uid} now in {context.company_id}")
    return ContextResponse.from_context(context)


@router.post("/exit", response_model=ContextResponse)
def exit_context(
    body: Optional[ContextExitRequest] = None,
    principal: Principal = Depends(get_principal),
    resolver: TenantContextResolver = Depends(get_resolver),
):
    context = resolver.exit_context(principal, body.reason if body else None)
    return ContextResponse.from_context(context)


@router.get("/switch-log", response_model=List[ContextSwitchLogResponse])
def switch_log(
    principal_uid: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    context: CompanyContext = Depends(require_super_admin),
    resolver: TenantContextResolver = Depends(get_resolver),
):
    return resolver.get_switch_history(principal_uid, limit)
