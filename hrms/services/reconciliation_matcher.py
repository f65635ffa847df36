"""
HRMS Core - Reconciliation Matcher

Pure matching pass of bank statement lines against the payments the payroll
ledger expects. No database access; the reconciliation service feeds it
ledgers and persists the outcome.

Matching order:
1. Exact reference: an expected payment carrying a UTR is paired with the
   first (chronologically) bank line holding that reference. Equal amounts
   are matched, different amounts are an amount mismatch. A second payment
   citing an already consumed UTR is a duplicate.
2. Secondary: each bank line left over is scored against every expected
   payment still unpaired, whether or not it carries a UTR. A single
   candidate at or above the minimum score is accepted with a low-confidence
   flag; otherwise the line is missing in ERP. Payments nobody claimed are
   missing in bank.
3. Bank lines repeating an already seen reference are duplicates.

Iteration order depends only on the input, so identical ledgers always yield
identical classifications.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from difflib import SequenceMatcher
from typing import Dict, List, Optional, Protocol, Sequence

from hrms.config import settings
from hrms.models.reconciliation import DISCREPANCY_STATUSES, ReconciliationItemStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

# Numeric(18, 2): sixteen integer digits
MAX_AMOUNT = Decimal("1e16")


class MalformedLedgerError(ValueError):
    """Input ledger cannot be matched."""


@dataclass(frozen=True)
class BankLine:
    """One bank statement line."""
    line_no: int
    reference: Optional[str]
    amount: Decimal
    value_date: date
    payee: Optional[str] = None


@dataclass(frozen=True)
class ExpectedPayment:
    """One payment the payroll ledger expects to leave the bank."""
    amount: Decimal
    utr: Optional[str] = None
    payslip_id: Optional[uuid.UUID] = None
    employee_id: Optional[uuid.UUID] = None
    payment_date: Optional[date] = None
    payee: Optional[str] = None


@dataclass(frozen=True)
class MatchOutcome:
    """Classification of one pairing (or non-pairing)."""
    status: ReconciliationItemStatus
    bank_line: Optional[BankLine] = None
    expected: Optional[ExpectedPayment] = None
    low_confidence: bool = False
    score: Optional[Decimal] = None
    variance: Decimal = Decimal("0.00")


@dataclass
class MatchResult:
    """Every outcome of one matching pass, in a stable order."""
    items: List[MatchOutcome] = field(default_factory=list)
    bank_count: int = 0
    erp_count: int = 0

    def counts(self) -> Dict[str, int]:
        counts = {
            status.value: 0
            for status in ReconciliationItemStatus
            if status != ReconciliationItemStatus.RESOLVED
        }
        for item in self.items:
            counts[item.status.value] += 1
        return counts

    @property
    def total_discrepancy(self) -> Decimal:
        return sum(
            (item.variance for item in self.items if item.status in DISCREPANCY_STATUSES),
            Decimal("0.00"),
        )

    @property
    def needs_follow_up(self) -> bool:
        return any(item.status in DISCREPANCY_STATUSES for item in self.items)


# =============================================================================
# SCORING
# =============================================================================

class MatchScorer(Protocol):
    """Secondary-match strategy. Returns None when the pair is not a candidate."""

    def score(self, line: BankLine, expected: ExpectedPayment) -> Optional[Decimal]:
        ...


class HeuristicScorer:
    """
    Amount + date window + payee text.

    Scoring:
    - Amount match: 40 points (different amounts are never candidates)
    - Date match: 30 points, decreasing by 10 per day (outside the window is
      not a candidate; an unknown payment date scores 0)
    - Payee similarity: up to 30 points
    """

    def __init__(self, date_window_days: int = 3):
        self.date_window_days = date_window_days

    def score(self, line: BankLine, expected: ExpectedPayment) -> Optional[Decimal]:
        if line.amount != expected.amount:
            return None

        score = 40.0

        if expected.payment_date is not None:
            days = abs((line.value_date - expected.payment_date).days)
            if days > self.date_window_days:
                return None
            score += max(0, 30 - days * 10)

        if line.payee and expected.payee:
            similarity = SequenceMatcher(
                None,
                line.payee.strip().lower(),
                expected.payee.strip().lower(),
            ).ratio()
            score += similarity * 30

        return Decimal(str(round(score, 2)))


@dataclass
class MatcherConfig:
    """Configuration for the matcher."""
    date_window_days: int = 3
    min_fuzzy_score: Decimal = Decimal("70.00")


# =============================================================================
# MATCHER
# =============================================================================

def normalize_reference(reference: Optional[str]) -> Optional[str]:
    if reference is None:
        return None
    reference = reference.strip().upper()
    return reference or None


def _to_amount(value, label: str) -> Decimal:
    """
    Validate a ledger amount.

    Amounts are never rounded: anything finer than a cent or beyond the
    stored Numeric(18, 2) range is rejected, so comparisons stay exact.
    """
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise MalformedLedgerError(f"{label}: amount {value!r} is not a number")
    if not amount.is_finite():
        raise MalformedLedgerError(f"{label}: amount must be finite")
    if amount < 0:
        raise MalformedLedgerError(f"{label}: amount must not be negative")
    if amount >= MAX_AMOUNT:
        raise MalformedLedgerError(f"{label}: amount {amount} is out of range")
    try:
        cents = amount.quantize(CENT)
    except InvalidOperation:
        raise MalformedLedgerError(f"{label}: amount {amount} is out of range")
    if cents != amount:
        raise MalformedLedgerError(f"{label}: amount {amount} has more than two decimal places")
    return cents


class ReconciliationMatcher:
    """Classifies bank lines against expected payments."""

    def __init__(
        self,
        config: Optional[MatcherConfig] = None,
        scorer: Optional[MatchScorer] = None,
    ):
        self.config = config or MatcherConfig()
        self.scorer = scorer or HeuristicScorer(self.config.date_window_days)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def prepare(
        self,
        bank_lines: Sequence[BankLine],
        expected: Sequence[ExpectedPayment],
    ) -> tuple:
        """
        Validate and normalise both ledgers.

        Raises:
            MalformedLedgerError: On invalid amounts, repeated bank line
                numbers or repeated payslip ids
        """
        lines: List[BankLine] = []
        seen_line_numbers = set()
        for line in bank_lines:
            if line.line_no in seen_line_numbers:
                raise MalformedLedgerError(f"Bank line {line.line_no} appears more than once")
            seen_line_numbers.add(line.line_no)
            lines.append(BankLine(
                line_no=line.line_no,
                reference=normalize_reference(line.reference),
                amount=_to_amount(line.amount, f"Bank line {line.line_no}"),
                value_date=line.value_date,
                payee=line.payee,
            ))

        payments: List[ExpectedPayment] = []
        seen_payslips = set()
        for index, payment in enumerate(expected, start=1):
            if payment.payslip_id is not None:
                if payment.payslip_id in seen_payslips:
                    raise MalformedLedgerError(f"Payslip {payment.payslip_id} appears more than once")
                seen_payslips.add(payment.payslip_id)
            payments.append(ExpectedPayment(
                amount=_to_amount(payment.amount, f"Expected payment {index}"),
                utr=normalize_reference(payment.utr),
                payslip_id=payment.payslip_id,
                employee_id=payment.employee_id,
                payment_date=payment.payment_date,
                payee=payment.payee,
            ))

        return lines, payments

    # -------------------------------------------------------------------------
    # Matching pass
    # -------------------------------------------------------------------------

    def match(
        self,
        bank_lines: Sequence[BankLine],
        expected: Sequence[ExpectedPayment],
    ) -> MatchResult:
        lines, payments = self.prepare(bank_lines, expected)
        result = MatchResult(bank_count=len(lines), erp_count=len(payments))

        # 1. Index bank lines by reference; the earliest posting is primary
        primary: Dict[str, BankLine] = {}
        duplicates: List[BankLine] = []
        unreferenced: List[BankLine] = []
        for line in sorted(lines, key=lambda bank_line: (bank_line.value_date, bank_line.line_no)):
            if line.reference is None:
                unreferenced.append(line)
            elif line.reference in primary:
                duplicates.append(line)
            else:
                primary[line.reference] = line

        # 2. Exact reference pass, in input order. Payments whose UTR has no
        # bank line stay candidates for the secondary pass.
        consumed_refs = set()
        fuzzy_pool: List[ExpectedPayment] = []
        for payment in payments:
            line = primary.get(payment.utr) if payment.utr is not None else None
            if line is None:
                fuzzy_pool.append(payment)
            elif payment.utr in consumed_refs:
                result.items.append(MatchOutcome(
                    status=ReconciliationItemStatus.DUPLICATE,
                    expected=payment,
                    variance=payment.amount,
                ))
            else:
                consumed_refs.add(payment.utr)
                result.items.append(self._pair(line, payment))

        # 3. Secondary pass over bank lines nobody claimed
        leftovers = [
            line for line in primary.values() if line.reference not in consumed_refs
        ] + unreferenced
        leftovers.sort(key=lambda bank_line: (bank_line.value_date, bank_line.line_no))

        for line in leftovers:
            candidates = []
            for payment in fuzzy_pool:
                score = self.scorer.score(line, payment)
                if score is not None and score >= self.config.min_fuzzy_score:
                    candidates.append((payment, score))

            if len(candidates) == 1:
                payment, score = candidates[0]
                fuzzy_pool.remove(payment)
                result.items.append(self._pair(line, payment, score=score))
            else:
                if len(candidates) > 1:
                    logger.debug(f"Bank line {line.line_no} has {len(candidates)} fuzzy candidates; left unmatched")
                result.items.append(MatchOutcome(
                    status=ReconciliationItemStatus.MISSING_IN_ERP,
                    bank_line=line,
                    variance=line.amount,
                ))

        for payment in fuzzy_pool:
            result.items.append(self._missing_in_bank(payment))

        # 4. Repeated postings
        for line in duplicates:
            result.items.append(MatchOutcome(
                status=ReconciliationItemStatus.DUPLICATE,
                bank_line=line,
                variance=line.amount,
            ))

        logger.debug(f"Matching pass produced {result.counts()}")
        return result

    @staticmethod
    def _pair(
        line: BankLine,
        payment: ExpectedPayment,
        score: Optional[Decimal] = None,
    ) -> MatchOutcome:
        if line.amount == payment.amount:
            status = ReconciliationItemStatus.MATCHED
            variance = Decimal("0.00")
        else:
            status = ReconciliationItemStatus.AMOUNT_MISMATCH
            variance = abs(line.amount - payment.amount)
        return MatchOutcome(
            status=status,
            bank_line=line,
            expected=payment,
            low_confidence=score is not None,
            score=score,
            variance=variance,
        )

    @staticmethod
    def _missing_in_bank(payment: ExpectedPayment) -> MatchOutcome:
        return MatchOutcome(
            status=ReconciliationItemStatus.MISSING_IN_BANK,
            expected=payment,
            variance=payment.amount,
        )


def get_reconciliation_matcher(
    date_window_days: Optional[int] = None,
    min_fuzzy_score: Optional[float] = None,
) -> ReconciliationMatcher:
    """Factory wiring the matcher to the configured thresholds."""
    config = MatcherConfig(
        date_window_days=date_window_days if date_window_days is not None else settings.reconciliation_date_window_days,
        min_fuzzy_score=Decimal(str(
            min_fuzzy_score if min_fuzzy_score is not None else settings.reconciliation_min_fuzzy_score
        )),
    )
    return ReconciliationMatcher(config)
