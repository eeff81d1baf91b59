"""
Error taxonomy for the tenant-isolation, finance and automation core.

Every error carries an HTTP status, a stable machine code and a bilingual
message so the API layer can render it without further translation.
"""
from typing import Any, Dict, Optional


class ArkanError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "error"
    default_en: str = "Request failed"
    default_ar: str = "فشل الطلب"

    def __init__(
        self,
        message_en: Optional[str] = None,
        message_ar: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message_en = message_en or self.default_en
        self.message_ar = message_ar or self.default_ar
        self.details = details or {}
        super().__init__(self.message_en)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "code": self.code,
            "detail": self.message_en,
            "detail_ar": self.message_ar,
            "details": self.details,
        }


class AuthenticationError(ArkanError):
    """Principal cannot be resolved to any tenant membership."""

    status_code = 401
    code = "authentication_failed"
    default_en = "Could not resolve an active company membership"
    default_ar = "تعذر تحديد عضوية نشطة في شركة"


class SuspendedTenantError(ArkanError):
    """Tenant exists but access is administratively disabled."""

    status_code = 403
    code = "account_suspended"
    default_en = "This company account is suspended"
    default_ar = "حساب هذه الشركة موقوف"


class PermissionDeniedError(ArkanError):
    status_code = 403
    code = "permission_denied"
    default_en = "Permission denied"
    default_ar = "تم رفض الإذن"


class CrossTenantAccessError(ArkanError):
    """A scoped operation's declared tenant conflicts with the resolved context."""

    status_code = 403
    code = "cross_tenant_access"
    default_en = "Access to another company's data is not allowed"
    default_ar = "لا يسمح بالوصول إلى بيانات شركة أخرى"

    def __init__(
        self,
        attempted_company_id: Optional[str],
        actual_company_id: Optional[str],
        message_en: Optional[str] = None,
        message_ar: Optional[str] = None,
    ):
        self.attempted_company_id = attempted_company_id
        self.actual_company_id = actual_company_id
        super().__init__(
            message_en,
            message_ar,
            {
                "attempted_company_id": attempted_company_id,
                "actual_company_id": actual_company_id,
            },
        )


class TenantNotFoundError(ArkanError):
    status_code = 404
    code = "tenant_not_found"
    default_en = "Company not found"
    default_ar = "الشركة غير موجودة"


class TenantScopeRequiredError(ArkanError):
    """A privileged system-wide context tried to write without naming a tenant."""

    status_code = 409
    code = "tenant_scope_required"
    default_en = "Switch into a company or name one explicitly before writing"
    default_ar = "يجب اختيار شركة قبل إنشاء السجلات"


class RecordNotFoundError(ArkanError):
    status_code = 404
    code = "record_not_found"
    default_en = "Record not found"
    default_ar = "السجل غير موجود"


class MalformedRecordError(ArkanError):
    """A data record fails basic shape validation during financial classification."""

    status_code = 422
    code = "malformed_record"
    default_en = "Malformed record"
    default_ar = "سجل غير صالح"

    def __init__(self, record_id: Optional[str], reason: str):
        self.record_id = record_id
        self.reason = reason
        super().__init__(
            f"Malformed record {record_id}: {reason}",
            f"سجل غير صالح {record_id}: {reason}",
            {"record_id": record_id, "reason": reason},
        )


class TransportError(ArkanError):
    """External delivery sink rejected or failed a message."""

    status_code = 502
    code = "transport_failed"
    default_en = "Message transport failed"
    default_ar = "فشل إرسال الرسالة"
