"""
HRMS Core - Payroll Models

Only the parts of payroll the reconciliation pass reads: cycles and the
payslips whose net amounts are expected to leave the bank.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Date, ForeignKey, Numeric, String, Uuid, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms.models.base import BaseModel

if TYPE_CHECKING:
    from hrms.models.company import Company


class PayrollCycleStatus(str, Enum):
    """Lifecycle of a payroll cycle."""
    DRAFT = "draft"
    PROCESSING = "processing"
    APPROVED = "approved"
    PAID = "paid"
    CLOSED = "closed"


class PayslipStatus(str, Enum):
    """Lifecycle of a payslip."""
    DRAFT = "draft"
    APPROVED = "approved"
    PROCESSING = "processing"
    PAID = "paid"
    CANCELLED = "cancelled"


# Payslips that represent money expected to reach the bank
RECONCILABLE_PAYSLIP_STATUSES = (
    PayslipStatus.APPROVED,
    PayslipStatus.PROCESSING,
    PayslipStatus.PAID,
)


class PayrollCycle(BaseModel):
    """A pay period for one company."""

    __tablename__ = "payroll_cycles"

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PayrollCycleStatus] = mapped_column(
        SQLEnum(PayrollCycleStatus),
        default=PayrollCycleStatus.DRAFT,
        nullable=False,
    )

    company: Mapped["Company"] = relationship("Company")
    payslips: Mapped[List["Payslip"]] = relationship(
        "Payslip",
        back_populates="payroll_cycle",
        cascade="all, delete-orphan",
    )


class Payslip(BaseModel):
    """Net pay owed to one employee for one cycle."""

    __tablename__ = "payslips"

    company_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payroll_cycle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_cycles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    employee_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    net_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        nullable=False,
    )
    utr_number: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[PayslipStatus] = mapped_column(
        SQLEnum(PayslipStatus),
        default=PayslipStatus.DRAFT,
        nullable=False,
    )

    payroll_cycle: Mapped["PayrollCycle"] = relationship(
        "PayrollCycle",
        back_populates="payslips",
    )
