"""
HRMS Core - Reconciliation Schemas

Pydantic schemas for bank-vs-payroll payment reconciliation.

Request bodies accept both snake_case and the camelCase keys used by
existing clients (payrollCycleId, bankData, erpData).
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from hrms.models.reconciliation import (
    ReconciliationItemStatus,
    ReconciliationStatus,
    ResolutionCode,
)


# ===========================================
# LEDGER INPUT
# ===========================================

class BankLineIn(BaseModel):
    """One line of a bank statement."""
    model_config = ConfigDict(populate_by_name=True)

    line_no: Optional[int] = Field(None, alias="lineNo", ge=1)
    reference: Optional[str] = Field(None, max_length=64, description="UTR or equivalent bank reference")
    amount: Decimal
    value_date: date = Field(..., alias="valueDate")
    payee: Optional[str] = Field(None, max_length=255)


class ErpPaymentIn(BaseModel):
    """One payment the payroll ledger expects to see in the bank."""
    model_config = ConfigDict(populate_by_name=True)

    payslip_id: Optional[UUID] = Field(None, alias="payslipId")
    employee_id: Optional[UUID] = Field(None, alias="employeeId")
    amount: Decimal
    utr: Optional[str] = Field(None, max_length=64)
    payment_date: Optional[date] = Field(None, alias="paymentDate")
    payee: Optional[str] = Field(None, max_length=255)


# ===========================================
# REQUESTS
# ===========================================

class ReconciliationCreate(BaseModel):
    """
    Start a reconciliation run.

    When erp_data is omitted the cycle's approved, processing and paid
    payslips are used as the expected payments.
    """
    model_config = ConfigDict(populate_by_name=True)

    payroll_cycle_id: UUID = Field(..., alias="payrollCycleId")
    bank_data: List[BankLineIn] = Field(default_factory=list, alias="bankData")
    erp_data: Optional[List[ErpPaymentIn]] = Field(None, alias="erpData")
    reconciliation_date: Optional[date] = Field(None, alias="reconciliationDate")


class AutoMatchRequest(BaseModel):
    """Dry-run the matcher against a cycle's payslips."""
    model_config = ConfigDict(populate_by_name=True)

    payroll_cycle_id: UUID = Field(..., alias="payrollCycleId")
    bank_data: List[BankLineIn] = Field(default_factory=list, alias="bankData")


class ResolveRequest(BaseModel):
    """Settle one discrepancy."""
    resolution: ResolutionCode
    remarks: Optional[str] = Field(None, max_length=2000)


# ===========================================
# RESPONSES
# ===========================================

class ReconciliationItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    reconciliation_id: UUID
    sequence: int
    classification: ReconciliationItemStatus
    status: ReconciliationItemStatus
    payslip_id: Optional[UUID] = None
    employee_id: Optional[UUID] = None
    erp_amount: Optional[Decimal] = None
    erp_utr: Optional[str] = None
    erp_payment_date: Optional[date] = None
    bank_line_no: Optional[int] = None
    bank_amount: Optional[Decimal] = None
    bank_utr: Optional[str] = None
    bank_value_date: Optional[date] = None
    payee: Optional[str] = None
    variance_amount: Decimal
    low_confidence: bool
    match_score: Optional[Decimal] = None
    resolution_code: Optional[ResolutionCode] = None
    remarks: Optional[str] = None
    resolved_by_id: Optional[UUID] = None
    resolved_at: Optional[datetime] = None


class ReconciliationResponse(BaseModel):
    """Summary of a reconciliation run."""
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    company_id: UUID
    payroll_cycle_id: UUID
    reconciliation_date: date
    status: ReconciliationStatus
    performed_by_id: UUID
    total_bank_records: int
    total_erp_records: int
    matched_records: int
    amount_mismatches: int
    missing_in_bank: int
    missing_in_erp: int
    duplicate_records: int
    resolved_records: int
    total_discrepancy_amount: Decimal
    failure_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    created_at: datetime


class ReconciliationDetailResponse(ReconciliationResponse):
    """Reconciliation run with all of its items."""
    items: List[ReconciliationItemResponse] = []


class MatchPreviewItem(BaseModel):
    """A classified pairing that has not been persisted."""
    status: ReconciliationItemStatus
    payslip_id: Optional[UUID] = None
    employee_id: Optional[UUID] = None
    erp_amount: Optional[Decimal] = None
    erp_utr: Optional[str] = None
    bank_line_no: Optional[int] = None
    bank_amount: Optional[Decimal] = None
    bank_utr: Optional[str] = None
    bank_value_date: Optional[date] = None
    payee: Optional[str] = None
    variance_amount: Decimal
    low_confidence: bool = False
    match_score: Optional[Decimal] = None


class AutoMatchResponse(BaseModel):
    """Outcome of a dry run."""
    payroll_cycle_id: UUID
    status: ReconciliationStatus
    counts: Dict[str, int]
    total_bank_records: int
    total_erp_records: int
    total_discrepancy_amount: Decimal
    items: List[MatchPreviewItem]


class ReconciliationStatsResponse(BaseModel):
    """Aggregated counts across reconciliation runs."""
    total_reconciliations: int
    by_status: Dict[str, int]
    items_by_classification: Dict[str, int]
    items_by_status: Dict[str, int]
    total_discrepancy_amount: Decimal
