"""
HRMS Core - User Model

Users carry a coarse role tag (admin, hr, finance, accounts, employee) used by
role checks, and any number of fine-grained Role assignments used by
permission checks. Super admins sit outside every company.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms.models.base import BaseModel

if TYPE_CHECKING:
    from hrms.models.company import Company
    from hrms.models.rbac import UserRoleAssignment


class UserRole(str, Enum):
    """Role tags carried in identity claims."""
    ADMIN = "admin"
    HR = "hr"
    FINANCE = "finance"
    ACCOUNTS = "accounts"
    MANAGER = "manager"
    EMPLOYEE = "employee"


class User(BaseModel):
    """User model for authentication and authorization."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        nullable=False,
        index=True,
    )
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Free-form so tenants can introduce tags beyond UserRole
    role: Mapped[str] = mapped_column(
        String(50),
        default=UserRole.EMPLOYEE.value,
        nullable=False,
    )

    company_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
    )
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_super_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    company: Mapped[Optional["Company"]] = relationship(
        "Company",
        back_populates="users",
    )
    role_assignments: Mapped[List["UserRoleAssignment"]] = relationship(
        "UserRoleAssignment",
        back_populates="user",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
