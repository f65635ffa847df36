"""
HRMS Core - Company Model

Tenant boundary. Roles, payroll cycles and reconciliations all hang off a company.
"""

from typing import TYPE_CHECKING, List

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms.models.base import BaseModel

if TYPE_CHECKING:
    from hrms.models.user import User


class Company(BaseModel):
    """A tenant of the platform."""

    __tablename__ = "companies"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    users: Mapped[List["User"]] = relationship(
        "User",
        back_populates="company",
    )
