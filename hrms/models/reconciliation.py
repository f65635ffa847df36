"""
HRMS Core - Payment Reconciliation Models

A Reconciliation is one run of the matcher for a payroll cycle; its items are
the line-level outcomes.

Record lifecycle:
    pending -> in_progress -> completed
    pending | in_progress -> failed   (terminal, retry with a fresh run)

Item lifecycle:
    amount_mismatch | missing_in_bank | missing_in_erp | duplicate -> resolved
    matched items are never resolved.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrms.models.base import BaseModel

if TYPE_CHECKING:
    from hrms.models.company import Company
    from hrms.models.payroll import PayrollCycle


# =============================================================================
# ENUMS
# =============================================================================

class ReconciliationStatus(str, Enum):
    """Status of a reconciliation run."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


class ReconciliationItemStatus(str, Enum):
    """Classification of one bank/ERP pairing."""
    MATCHED = "matched"
    AMOUNT_MISMATCH = "amount_mismatch"
    MISSING_IN_BANK = "missing_in_bank"
    MISSING_IN_ERP = "missing_in_erp"
    DUPLICATE = "duplicate"
    RESOLVED = "resolved"


DISCREPANCY_STATUSES = (
    ReconciliationItemStatus.AMOUNT_MISMATCH,
    ReconciliationItemStatus.MISSING_IN_BANK,
    ReconciliationItemStatus.MISSING_IN_ERP,
    ReconciliationItemStatus.DUPLICATE,
)


class ResolutionCode(str, Enum):
    """How a discrepancy was settled."""
    ACCEPT_BANK_AMOUNT = "accept_bank_amount"
    ACCEPT_ERP_AMOUNT = "accept_erp_amount"
    MANUAL_ADJUSTMENT_REQUIRED = "manual_adjustment_required"
    DUPLICATE_REVERSED = "duplicate_reversed"


# =============================================================================
# MODELS
# =============================================================================

class Reconciliation(BaseModel):
    """One matching run of bank lines against expected payroll payments."""

    __tablename__ = "reconciliations"

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
    reconciliation_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[ReconciliationStatus] = mapped_column(
        SQLEnum(ReconciliationStatus),
        default=ReconciliationStatus.PENDING,
        nullable=False,
        index=True,
    )
    performed_by_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)

    # Summary counters
    total_bank_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_erp_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    matched_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount_mismatches: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    missing_in_bank: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    missing_in_erp: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    duplicate_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    resolved_records: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_discrepancy_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    company: Mapped["Company"] = relationship("Company")
    payroll_cycle: Mapped["PayrollCycle"] = relationship("PayrollCycle")
    items: Mapped[List["ReconciliationItem"]] = relationship(
        "ReconciliationItem",
        back_populates="reconciliation",
        cascade="all, delete-orphan",
        order_by="ReconciliationItem.sequence",
    )

    @property
    def open_items(self) -> int:
        """Discrepancies still waiting for a human decision."""
        return (
            self.amount_mismatches
            + self.missing_in_bank
            + self.missing_in_erp
            + self.duplicate_records
            - self.resolved_records
        )


class ReconciliationItem(BaseModel):
    """One line-level outcome of a reconciliation run."""

    __tablename__ = "reconciliation_items"

    reconciliation_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("reconciliations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    # classification is what the matcher decided and never changes;
    # status moves to resolved once a human settles the discrepancy
    classification: Mapped[ReconciliationItemStatus] = mapped_column(
        SQLEnum(ReconciliationItemStatus),
        nullable=False,
    )
    status: Mapped[ReconciliationItemStatus] = mapped_column(
        SQLEnum(ReconciliationItemStatus),
        nullable=False,
        index=True,
    )

    # ERP / payroll side
    payslip_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    erp_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=18, scale=2), nullable=True)
    erp_utr: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    erp_payment_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    # Bank side
    bank_line_no: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    bank_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=18, scale=2), nullable=True)
    bank_utr: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    bank_value_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    payee: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    variance_amount: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    low_confidence: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    match_score: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=5, scale=2), nullable=True)

    # Resolution
    resolution_code: Mapped[Optional[ResolutionCode]] = mapped_column(
        SQLEnum(ResolutionCode),
        nullable=True,
    )
    remarks: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    resolved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    resolved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    reconciliation: Mapped["Reconciliation"] = relationship(
        "Reconciliation",
        back_populates="items",
    )
