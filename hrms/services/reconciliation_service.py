"""
HRMS Core - Payment Reconciliation Service

Runs the matcher for a payroll cycle and persists the outcome, resolves
discrepancies, and reports on past runs.

Each run is written in a single transaction: either the record and all of
its items are stored, or nothing is. A malformed ledger instead stores a
`failed` record carrying the reason, in its own transaction, so the attempt
stays visible. Failed records are never retried in place; callers start a
fresh run.
"""

import csv
import io
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from hrms.models.payroll import PayrollCycle, Payslip, RECONCILABLE_PAYSLIP_STATUSES
from hrms.models.reconciliation import (
    Reconciliation,
    ReconciliationItem,
    ReconciliationItemStatus,
    ReconciliationStatus,
    ResolutionCode,
)
from hrms.schemas.reconciliation import BankLineIn, ErpPaymentIn
from hrms.services.authorization import RequestContext, ensure_company_access
from hrms.services.reconciliation_matcher import (
    BankLine,
    ExpectedPayment,
    MalformedLedgerError,
    MatchOutcome,
    MatchResult,
    ReconciliationMatcher,
    get_reconciliation_matcher,
)
from hrms.utils.error_handling import (
    InternalServerException,
    InvalidStateException,
    NotFoundException,
    ReconciliationFailedException,
    ValidationException,
)

logger = logging.getLogger(__name__)


EXPORT_COLUMNS = [
    "sequence",
    "classification",
    "status",
    "payslip_id",
    "employee_id",
    "erp_amount",
    "erp_utr",
    "erp_payment_date",
    "bank_line_no",
    "bank_amount",
    "bank_utr",
    "bank_value_date",
    "payee",
    "variance_amount",
    "low_confidence",
    "match_score",
    "resolution_code",
    "remarks",
    "resolved_by_id",
    "resolved_at",
]


def bank_lines_from_input(bank_data: Sequence[BankLineIn]) -> List[BankLine]:
    """Bank lines without an explicit line number are numbered by position."""
    return [
        BankLine(
            line_no=line.line_no if line.line_no is not None else index,
            reference=line.reference,
            amount=line.amount,
            value_date=line.value_date,
            payee=line.payee,
        )
        for index, line in enumerate(bank_data, start=1)
    ]


def expected_payments_from_input(erp_data: Sequence[ErpPaymentIn]) -> List[ExpectedPayment]:
    return [
        ExpectedPayment(
            amount=payment.amount,
            utr=payment.utr,
            payslip_id=payment.payslip_id,
            employee_id=payment.employee_id,
            payment_date=payment.payment_date,
            payee=payment.payee,
        )
        for payment in erp_data
    ]


class ReconciliationService:
    """Service for payroll payment reconciliation."""

    def __init__(self, db: AsyncSession, matcher: Optional[ReconciliationMatcher] = None):
        self.db = db
        self.matcher = matcher or get_reconciliation_matcher()

    # =========================================================================
    # LOOKUPS
    # =========================================================================

    async def get_payroll_cycle(self, context: RequestContext, payroll_cycle_id: uuid.UUID) -> PayrollCycle:
        cycle = await self.db.get(PayrollCycle, payroll_cycle_id)
        if cycle is None:
            raise NotFoundException("PayrollCycle", payroll_cycle_id)
        ensure_company_access(context, cycle.company_id)
        return cycle

    async def load_expected_payments(self, cycle: PayrollCycle) -> List[ExpectedPayment]:
        """Payslips of the cycle that represent money expected in the bank."""
        result = await self.db.execute(
            select(Payslip)
            .where(
                Payslip.payroll_cycle_id == cycle.id,
                Payslip.status.in_(RECONCILABLE_PAYSLIP_STATUSES),
            )
            .order_by(Payslip.employee_id, Payslip.id)
        )
        return [
            ExpectedPayment(
                amount=payslip.net_amount,
                utr=payslip.utr_number,
                payslip_id=payslip.id,
                employee_id=payslip.employee_id,
                payment_date=payslip.payment_date,
                payee=payslip.employee_name,
            )
            for payslip in result.scalars().all()
        ]

    async def check_erp_references(self, cycle: PayrollCycle, erp_data: Sequence[ErpPaymentIn]) -> None:
        """
        Caller-supplied payslip and employee ids must belong to the cycle.

        Raises:
            ValidationException: On a reference outside the cycle
        """
        result = await self.db.execute(
            select(Payslip.id, Payslip.employee_id).where(Payslip.payroll_cycle_id == cycle.id)
        )
        payslip_employees = dict(result.all())
        employees = set(payslip_employees.values())

        errors = []
        for index, payment in enumerate(erp_data):
            if payment.payslip_id is not None and payment.payslip_id not in payslip_employees:
                errors.append({
                    "field": f"erpData.{index}.payslipId",
                    "message": f"Payslip {payment.payslip_id} is not part of this payroll cycle",
                })
            elif payment.employee_id is not None and payment.employee_id not in employees:
                errors.append({
                    "field": f"erpData.{index}.employeeId",
                    "message": f"Employee {payment.employee_id} has no payslip in this payroll cycle",
                })
            elif (
                payment.payslip_id is not None
                and payment.employee_id is not None
                and payslip_employees[payment.payslip_id] != payment.employee_id
            ):
                errors.append({
                    "field": f"erpData.{index}.employeeId",
                    "message": f"Payslip {payment.payslip_id} belongs to another employee",
                })

        if errors:
            raise ValidationException("Expected payments reference records outside the payroll cycle", errors)

    async def get_reconciliation(self, context: RequestContext, reconciliation_id: uuid.UUID) -> Reconciliation:
        result = await self.db.execute(
            select(Reconciliation)
            .options(selectinload(Reconciliation.items))
            .where(Reconciliation.id == reconciliation_id)
            .execution_options(populate_existing=True)
        )
        record = result.scalar_one_or_none()
        if record is None:
            raise NotFoundException("Reconciliation", reconciliation_id)
        ensure_company_access(context, record.company_id)
        return record

    # =========================================================================
    # RUN
    # =========================================================================

    async def create_reconciliation(
        self,
        context: RequestContext,
        payroll_cycle_id: uuid.UUID,
        bank_data: Sequence[BankLineIn],
        erp_data: Optional[Sequence[ErpPaymentIn]] = None,
        reconciliation_date: Optional[date] = None,
    ) -> Reconciliation:
        """
        Match and persist a reconciliation run.

        Raises:
            NotFoundException: Unknown payroll cycle
            ValidationException: Expected payments reference another cycle
            ReconciliationFailedException: Malformed ledger; a failed record is stored
        """
        cycle = await self.get_payroll_cycle(context, payroll_cycle_id)
        bank_lines = bank_lines_from_input(bank_data)
        if erp_data is not None:
            await self.check_erp_references(cycle, erp_data)
            expected = expected_payments_from_input(erp_data)
        else:
            expected = await self.load_expected_payments(cycle)

        run_date = reconciliation_date or datetime.now(timezone.utc).date()

        try:
            outcome = self.matcher.match(bank_lines, expected)
        except MalformedLedgerError as e:
            record = await self._record_failure(
                context, cycle.company_id, cycle.id, run_date, len(bank_lines), len(expected), str(e)
            )
            raise ReconciliationFailedException(f"Reconciliation failed: {e}", record.id)

        record = Reconciliation(
            company_id=cycle.company_id,
            payroll_cycle_id=cycle.id,
            reconciliation_date=run_date,
            status=ReconciliationStatus.PENDING,
            performed_by_id=context.user_id,
        )
        try:
            self.db.add(record)
            await self.db.flush()
            for sequence, item in enumerate(outcome.items, start=1):
                self.db.add(self._build_item(record.id, sequence, item))
            self._apply_counters(record, outcome)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        logger.info(
            f"Reconciliation {record.id} for cycle {cycle.id}: {record.status.value} {outcome.counts()}"
        )
        return await self.get_reconciliation(context, record.id)

    async def _record_failure(
        self,
        context: RequestContext,
        company_id: uuid.UUID,
        payroll_cycle_id: uuid.UUID,
        run_date: date,
        bank_count: int,
        erp_count: int,
        reason: str,
    ) -> Reconciliation:
        record = Reconciliation(
            company_id=company_id,
            payroll_cycle_id=payroll_cycle_id,
            reconciliation_date=run_date,
            status=ReconciliationStatus.FAILED,
            performed_by_id=context.user_id,
            total_bank_records=bank_count,
            total_erp_records=erp_count,
            failure_reason=reason,
        )
        self.db.add(record)
        await self.db.commit()
        logger.error(f"Reconciliation {record.id} for cycle {payroll_cycle_id} failed: {reason}")
        return record

    @staticmethod
    def _build_item(reconciliation_id: uuid.UUID, sequence: int, outcome: MatchOutcome) -> ReconciliationItem:
        line = outcome.bank_line
        payment = outcome.expected
        return ReconciliationItem(
            reconciliation_id=reconciliation_id,
            sequence=sequence,
            classification=outcome.status,
            status=outcome.status,
            payslip_id=payment.payslip_id if payment else None,
            employee_id=payment.employee_id if payment else None,
            erp_amount=payment.amount if payment else None,
            erp_utr=payment.utr if payment else None,
            erp_payment_date=payment.payment_date if payment else None,
            bank_line_no=line.line_no if line else None,
            bank_amount=line.amount if line else None,
            bank_utr=line.reference if line else None,
            bank_value_date=line.value_date if line else None,
            payee=(line.payee if line and line.payee else payment.payee if payment else None),
            variance_amount=outcome.variance,
            low_confidence=outcome.low_confidence,
            match_score=outcome.score,
        )

    @staticmethod
    def _apply_counters(record: Reconciliation, outcome: MatchResult) -> None:
        counts = outcome.counts()
        record.total_bank_records = outcome.bank_count
        record.total_erp_records = outcome.erp_count
        record.matched_records = counts[ReconciliationItemStatus.MATCHED.value]
        record.amount_mismatches = counts[ReconciliationItemStatus.AMOUNT_MISMATCH.value]
        record.missing_in_bank = counts[ReconciliationItemStatus.MISSING_IN_BANK.value]
        record.missing_in_erp = counts[ReconciliationItemStatus.MISSING_IN_ERP.value]
        record.duplicate_records = counts[ReconciliationItemStatus.DUPLICATE.value]
        record.resolved_records = 0
        record.total_discrepancy_amount = outcome.total_discrepancy

        if outcome.needs_follow_up:
            record.status = ReconciliationStatus.IN_PROGRESS
        else:
            record.status = ReconciliationStatus.COMPLETED
            record.completed_at = datetime.now(timezone.utc)

    async def preview_auto_match(
        self,
        context: RequestContext,
        payroll_cycle_id: uuid.UUID,
        bank_data: Sequence[BankLineIn],
    ) -> Dict[str, Any]:
        """
        Classify bank lines against the cycle's payslips without storing anything.

        Raises:
            ValidationException: On a malformed ledger
        """
        cycle = await self.get_payroll_cycle(context, payroll_cycle_id)
        expected = await self.load_expected_payments(cycle)
        try:
            outcome = self.matcher.match(bank_lines_from_input(bank_data), expected)
        except MalformedLedgerError as e:
            raise ValidationException(str(e))

        return {
            "payroll_cycle_id": cycle.id,
            "status": (
                ReconciliationStatus.IN_PROGRESS if outcome.needs_follow_up else ReconciliationStatus.COMPLETED
            ),
            "counts": outcome.counts(),
            "total_bank_records": outcome.bank_count,
            "total_erp_records": outcome.erp_count,
            "total_discrepancy_amount": outcome.total_discrepancy,
            "items": [self._preview_item(item) for item in outcome.items],
        }

    @staticmethod
    def _preview_item(outcome: MatchOutcome) -> Dict[str, Any]:
        line = outcome.bank_line
        payment = outcome.expected
        return {
            "status": outcome.status,
            "payslip_id": payment.payslip_id if payment else None,
            "employee_id": payment.employee_id if payment else None,
            "erp_amount": payment.amount if payment else None,
            "erp_utr": payment.utr if payment else None,
            "bank_line_no": line.line_no if line else None,
            "bank_amount": line.amount if line else None,
            "bank_utr": line.reference if line else None,
            "bank_value_date": line.value_date if line else None,
            "payee": line.payee if line and line.payee else payment.payee if payment else None,
            "variance_amount": outcome.variance,
            "low_confidence": outcome.low_confidence,
            "match_score": outcome.score,
        }

    # =========================================================================
    # RESOLUTION
    # =========================================================================

    async def resolve_item(
        self,
        context: RequestContext,
        item_id: uuid.UUID,
        resolution: ResolutionCode,
        remarks: Optional[str] = None,
    ) -> ReconciliationItem:
        """
        Settle one discrepancy.

        Matched items never need resolution and resolved items are final;
        both are rejected rather than overwritten.

        Raises:
            NotFoundException: Unknown item
            InvalidStateException: Item is matched or already resolved
        """
        item = await self.db.scalar(
            select(ReconciliationItem)
            .where(ReconciliationItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if item is None:
            raise NotFoundException("ReconciliationItem", item_id)

        record = await self.db.scalar(
            select(Reconciliation)
            .where(Reconciliation.id == item.reconciliation_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        if record is None:
            raise InternalServerException(f"Reconciliation item {item.id} has no parent record")
        ensure_company_access(context, record.company_id)

        if item.status == ReconciliationItemStatus.RESOLVED:
            raise InvalidStateException("Item is already resolved", current_state=item.status.value)
        if item.status == ReconciliationItemStatus.MATCHED:
            raise InvalidStateException("Matched items do not need resolution", current_state=item.status.value)

        now = datetime.now(timezone.utc)
        item.status = ReconciliationItemStatus.RESOLVED
        item.resolution_code = resolution
        item.remarks = remarks
        item.resolved_by_id = context.user_id
        item.resolved_at = now

        record.resolved_records += 1
        if record.open_items <= 0:
            record.status = ReconciliationStatus.COMPLETED
            record.completed_at = now

        await self.db.commit()
        await self.db.refresh(item)

        logger.info(f"Resolved reconciliation item {item.id} as {resolution.value} by {context.user_id}")
        return item

    # =========================================================================
    # REPORTING
    # =========================================================================

    async def list_reconciliations(
        self,
        context: RequestContext,
        company_id: Optional[uuid.UUID] = None,
        payroll_cycle_id: Optional[uuid.UUID] = None,
        status: Optional[ReconciliationStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[Reconciliation], int]:
        query = select(Reconciliation)
        scoped_company = context.scoped_company_id(company_id)
        if scoped_company is not None or not context.is_super_admin:
            query = query.where(Reconciliation.company_id == scoped_company)
        if payroll_cycle_id:
            query = query.where(Reconciliation.payroll_cycle_id == payroll_cycle_id)
        if status:
            query = query.where(Reconciliation.status == status)
        if start_date:
            query = query.where(Reconciliation.reconciliation_date >= start_date)
        if end_date:
            query = query.where(Reconciliation.reconciliation_date <= end_date)

        total = await self.db.scalar(select(func.count()).select_from(query.subquery()))
        result = await self.db.execute(
            query.order_by(Reconciliation.reconciliation_date.desc(), Reconciliation.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total or 0

    async def get_stats(
        self,
        context: RequestContext,
        company_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> Dict[str, Any]:
        """Counts per record status and per item classification/status."""
        filters = []
        scoped_company = context.scoped_company_id(company_id)
        if scoped_company is not None or not context.is_super_admin:
            filters.append(Reconciliation.company_id == scoped_company)
        if start_date:
            filters.append(Reconciliation.reconciliation_date >= start_date)
        if end_date:
            filters.append(Reconciliation.reconciliation_date <= end_date)

        by_status = {status.value: 0 for status in ReconciliationStatus}
        result = await self.db.execute(
            select(Reconciliation.status, func.count(Reconciliation.id))
            .where(*filters)
            .group_by(Reconciliation.status)
        )
        for status, count in result.all():
            by_status[status.value] = count

        total_discrepancy = await self.db.scalar(
            select(func.coalesce(func.sum(Reconciliation.total_discrepancy_amount), 0)).where(*filters)
        )

        item_statuses = [status.value for status in ReconciliationItemStatus]
        by_classification = {status: 0 for status in item_statuses if status != "resolved"}
        by_item_status = {status: 0 for status in item_statuses}

        result = await self.db.execute(
            select(ReconciliationItem.classification, func.count(ReconciliationItem.id))
            .join(Reconciliation, Reconciliation.id == ReconciliationItem.reconciliation_id)
            .where(*filters)
            .group_by(ReconciliationItem.classification)
        )
        for classification, count in result.all():
            by_classification[classification.value] = count

        result = await self.db.execute(
            select(ReconciliationItem.status, func.count(ReconciliationItem.id))
            .join(Reconciliation, Reconciliation.id == ReconciliationItem.reconciliation_id)
            .where(*filters)
            .group_by(ReconciliationItem.status)
        )
        for status, count in result.all():
            by_item_status[status.value] = count

        return {
            "total_reconciliations": sum(by_status.values()),
            "by_status": by_status,
            "items_by_classification": by_classification,
            "items_by_status": by_item_status,
            "total_discrepancy_amount": Decimal(str(total_discrepancy or 0)).quantize(Decimal("0.01")),
        }

    # =========================================================================
    # EXPORT
    # =========================================================================

    @staticmethod
    def _item_row(item: ReconciliationItem) -> Dict[str, Any]:
        row = {}
        for column in EXPORT_COLUMNS:
            value = getattr(item, column)
            if hasattr(value, "value"):
                value = value.value
            row[column] = value
        return row

    def export_json(self, record: Reconciliation) -> Dict[str, Any]:
        return {
            "reconciliation_id": str(record.id),
            "company_id": str(record.company_id),
            "payroll_cycle_id": str(record.payroll_cycle_id),
            "reconciliation_date": record.reconciliation_date.isoformat(),
            "status": record.status.value,
            "summary": {
                "total_bank_records": record.total_bank_records,
                "total_erp_records": record.total_erp_records,
                "matched_records": record.matched_records,
                "amount_mismatches": record.amount_mismatches,
                "missing_in_bank": record.missing_in_bank,
                "missing_in_erp": record.missing_in_erp,
                "duplicate_records": record.duplicate_records,
                "resolved_records": record.resolved_records,
                "total_discrepancy_amount": str(record.total_discrepancy_amount),
            },
            "items": [self._item_row(item) for item in record.items],
        }

    def export_csv(self, record: Reconciliation) -> Tuple[str, str]:
        """
        Render the items of a run as CSV.

        Returns:
            Tuple of (filename, csv_content)
        """
        output = io.StringIO()
        writer = csv.writer(output)
        writer.writerow(EXPORT_COLUMNS)
        for item in record.items:
            row = self._item_row(item)
            writer.writerow(["" if row[column] is None else row[column] for column in EXPORT_COLUMNS])

        filename = f"reconciliation_{record.reconciliation_date.isoformat()}_{record.id}.csv"
        return filename, output.getvalue()
