"""
Company (tenant organisation) and membership models
"""
from datetime import datetime
from enum import Enum
import uuid

from sqlalchemy import String, Integer, DateTime, Boolean, ForeignKey, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from arkan.db.base import Base, TimestampMixin


def new_id() -> str:
    return str(uuid.uuid4())


class CompanyStatus(str, Enum):
    ACTIVE = "active"
    TRIAL = "trial"
    SUSPENDED = "suspended"
    INACTIVE = "inactive"


# Statuses whose members may resolve a context
ACCESSIBLE_STATUSES = (CompanyStatus.ACTIVE, CompanyStatus.TRIAL)


class UserRole(str, Enum):
    SUPER_ADMIN = "SUPER_ADMIN"
    COMPANY_ADMIN = "company_admin"
    MANAGER = "manager"
    STAFF = "staff"
    ACCOUNTANT = "accountant"
    MAINTENANCE = "maintenance"
    # Non-human role used by the periodic automation sweep
    AUTOMATION = "automation"


class Company(TimestampMixin, Base):
    """A tenant organisation. Never deleted, only status-transitioned."""
    __tablename__ = "companies"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    name_ar: Mapped[str] = mapped_column(String(255), nullable=True)
    email: Mapped[str] = mapped_column(String(255), nullable=True)
    country: Mapped[str] = mapped_column(String(2), default="SA")

    status: Mapped[CompanyStatus] = mapped_column(
        SQLEnum(CompanyStatus), default=CompanyStatus.TRIAL, nullable=False, index=True
    )

    # Policy settings; NULL falls back to the configured defaults
    grace_period_days: Mapped[int] = mapped_column(Integer, nullable=True)
    escalation_interval_days: Mapped[int] = mapped_column(Integer, nullable=True)
    severe_overdue_days: Mapped[int] = mapped_column(Integer, nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=True)
    locale: Mapped[str] = mapped_column(String(5), nullable=True)

    created_by: Mapped[str] = mapped_column(String(128), nullable=True)

    members = relationship(
        "CompanyMember",
        back_populates="company",
        foreign_keys="CompanyMember.company_id",
    )


class CompanyMember(TimestampMixin, Base):
    """
    Maps an authenticated principal (identity-provider uid) to a company and role.
    SUPER_ADMIN members have no company; active_company_id holds the tenant they
    have switched into, if any.
    """
    __tablename__ = "company_members"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    principal_uid: Mapped[str] = mapped_column(String(128), unique=True, nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), nullable=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=True)

    company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=True, index=True
    )
    role: Mapped[UserRole] = mapped_column(SQLEnum(UserRole), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    active_company_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("companies.id"), nullable=True
    )
    last_login: Mapped[datetime] = mapped_column(DateTime, nullable=True)

    company = relationship("Company", back_populates="members", foreign_keys=[company_id])

    __table_args__ = (
        Index("idx_company_members_company_role", "company_id", "role"),
    )
