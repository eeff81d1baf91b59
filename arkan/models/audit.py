"""
Audit Models
Append-only tables: the bilingual audit trail and the context-switch log.
Rows are never updated or deleted by the application.
"""
from datetime import datetime

from sqlalchemy import String, Integer, DateTime, Boolean, Text, Index
from sqlalchemy.orm import Mapped, mapped_column

from arkan.db.base import Base, utcnow
from arkan.models.company import new_id


class AuditLogEntry(Base):
    __tablename__ = "audit_log_entries"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    scope: Mapped[str] = mapped_column(String(64), nullable=False)    # company id or "system"
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    level: Mapped[str] = mapped_column(String(16), nullable=False)
    category: Mapped[str] = mapped_column(String(32), nullable=False)
    event_type: Mapped[str] = mapped_column(String(100), nullable=False)
    message_en: Mapped[str] = mapped_column(Text, nullable=False)
    message_ar: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[str] = mapped_column(Text, nullable=True)          # JSON metadata
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_audit_scope_order", "scope", "created_at", "sequence"),
    )


class ContextSwitchLog(Base):
    __tablename__ = "context_switch_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    principal_uid: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    principal_email: Mapped[str] = mapped_column(String(255), nullable=True)
    from_company_id: Mapped[str] = mapped_column(String(36), nullable=True)
    to_company_id: Mapped[str] = mapped_column(String(36), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)   # switch_in | switch_out
    reason: Mapped[str] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    failure_reason: Mapped[str] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False, index=True)
