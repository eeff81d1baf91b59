from arkan.api.routes.context import router as context_router
from arkan.api.routes.companies import router as companies_router
from arkan.api.routes.records import router as records_router
from arkan.api.routes.finance import router as finance_router
from arkan.api.routes.automation import router as automation_router
from arkan.api.routes.audit import router as audit_router

__all__ = [
    "context_router",
    "companies_router",
    "records_router",
    "finance_router",
    "automation_router",
    "audit_router",
]
