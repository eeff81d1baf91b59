"""Domain services: audit trail, tenant isolation, finance and notification automation."""

__all__ = [
    "audit_logger",
    "tenant_context",
    "tenant_middleware",
    "financial_engine",
    "portfolio",
    "notification_automation",
    "outbox",
    "delivery_worker",
    "automation_sweep",
    "company_metrics",
]
