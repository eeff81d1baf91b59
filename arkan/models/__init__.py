# Import all models in correct order so relationships resolve
from arkan.models.company import Company, CompanyMember, CompanyStatus, UserRole, ACCESSIBLE_STATUSES
from arkan.models.tenant import Tenant
from arkan.models.contract import Contract, ContractStatus, PaymentFrequency, FREQUENCY_MONTHS
from arkan.models.payment import Payment, PaymentStatus, PaymentMethod
from arkan.models.maintenance import MaintenanceRequest, MaintenanceStatus
from arkan.models.audit import AuditLogEntry, ContextSwitchLog
from arkan.models.outbox import OutboundMessage, DeliveryState

# Models that carry a company_id and must only be reached through the tenant middleware
TENANT_OWNED_MODELS = (Tenant, Contract, Payment, MaintenanceRequest, OutboundMessage)

__all__ = [
    "Company",
    "CompanyMember",
    "CompanyStatus",
    "UserRole",
    "ACCESSIBLE_STATUSES",
    "Tenant",
    "Contract",
    "ContractStatus",
    "PaymentFrequency",
    "FREQUENCY_MONTHS",
    "Payment",
    "PaymentStatus",
    "PaymentMethod",
    "MaintenanceRequest",
    "MaintenanceStatus",
    "AuditLogEntry",
    "ContextSwitchLog",
    "OutboundMessage",
    "DeliveryState",
    "TENANT_OWNED_MODELS",
]
