"""
Loan Lifecycle Module

Tracks loan principal, rate, tenure and outstanding balance. The
outstanding amount only ever decreases, and only through repayments;
interest accrual is recorded as explicit adjustment rows against a
separate accrued_interest figure.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .money import Money, to_decimal, add_months, whole_months_between
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import MemberRegistry
from .results import LoanResult, RepaymentResult
from .errors import (
    EngineError, LoanNotFound, BorrowerHasActiveLoan, BorrowerInactive,
    LoanAlreadyClosed, OverpaymentExceedsOutstanding, InvalidAmount,
    InvalidInputError, InvalidTransition
)
from .logging_config import get_logger, log_action, log_rejection


class LoanStatus(Enum):
    """Loan repayment states"""
    PENDING = "pending"        # Awaiting approval
    APPROVED = "approved"      # Approved, not yet active
    ACTIVE = "active"          # Accepting repayments
    CLOSED = "closed"          # Fully repaid
    DEFAULTED = "defaulted"    # Written off as in default


@dataclass
class Loan(StorageRecord):
    """Loan issued to a member"""
    loan_number: str
    borrower_id: str
    principal_amount: Money
    interest_rate: Decimal
    tenure_months: int
    outstanding_amount: Money
    repayment_status: LoanStatus
    accrued_interest: Money = field(default_factory=Money.zero)
    start_date: Optional[date] = None
    interest_accrued_through: Optional[date] = None
    closed_at: Optional[datetime] = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.repayment_status == LoanStatus.ACTIVE

    @property
    def maturity_date(self) -> Optional[date]:
        if self.start_date is None:
            return None
        return add_months(self.start_date, self.tenure_months)


@dataclass
class Repayment(StorageRecord):
    """Immutable record of a repayment applied to a loan"""
    loan_id: str
    amount: Money
    payment_date: date
    outstanding_before: Money
    outstanding_after: Money


@dataclass
class LoanAdjustment(StorageRecord):
    """Explicit interest accrual entry; never touches outstanding_amount"""
    loan_id: str
    amount: Money
    period_start: date
    period_end: date
    months: int
    outstanding_basis: Money
    adjustment_type: str = "interest_accrual"


class LoanManager:
    """
    Issues loans and applies repayments
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 member_registry: MemberRegistry, approval_required: bool = False):
        self.storage = storage
        self.audit_trail = audit_trail
        self.members = member_registry
        self.approval_required = approval_required
        self.loans_table = "loans"
        self.repayments_table = "loan_repayments"
        self.adjustments_table = "loan_adjustments"
        self.logger = get_logger("coop_banking.loans")

    def issue(
        self,
        borrower_id: str,
        principal: Decimal,
        interest_rate: Decimal,
        tenure_months: int,
        start_date: Optional[date] = None
    ) -> Loan:
        """
        Issue a loan to a member

        The loan starts active with outstanding_amount equal to the principal,
        or pending when approval is required.

        Args:
            borrower_id: Borrowing member
            principal: Principal amount
            interest_rate: Annual rate in percent
            tenure_months: Term in months
            start_date: Start of the loan (defaults to today)

        Raises:
            MemberNotFound, BorrowerInactive, BorrowerHasActiveLoan, InvalidAmount
        """
        try:
            principal_amount = Money.of(to_decimal(principal))
            rate = to_decimal(interest_rate)
            if not principal_amount.is_positive():
                raise InvalidAmount("Principal must be positive", amount=principal_amount)
            if rate < 0:
                raise InvalidInputError("Interest rate cannot be negative")
            if tenure_months <= 0:
                raise InvalidInputError("Tenure must be at least one month")

            with self.storage.atomic():
                borrower = self.members.require_member(borrower_id)
                if not borrower.is_active:
                    raise BorrowerInactive(
                        f"Borrower {borrower_id} is not active (status: {borrower.status.value})",
                        entity_id=borrower_id
                    )

                open_loans = [loan for loan in self.get_borrower_loans(borrower_id)
                              if loan.repayment_status != LoanStatus.CLOSED]
                if open_loans:
                    raise BorrowerHasActiveLoan(
                        f"Borrower {borrower_id} already holds loan {open_loans[0].id} "
                        f"({open_loans[0].repayment_status.value})",
                        entity_id=borrower_id
                    )

                now = datetime.now(timezone.utc)
                loan_id = str(uuid.uuid4())
                status = LoanStatus.PENDING if self.approval_required else LoanStatus.ACTIVE
                loan = Loan(
                    id=loan_id,
                    created_at=now,
                    updated_at=now,
                    loan_number=f"LN{loan_id.replace('-', '')[:10].upper()}",
                    borrower_id=borrower_id,
                    principal_amount=principal_amount,
                    interest_rate=rate,
                    tenure_months=tenure_months,
                    outstanding_amount=principal_amount,
                    repayment_status=status,
                    start_date=(start_date or date.today()) if status == LoanStatus.ACTIVE else start_date
                )
                self.storage.save(self.loans_table, loan.id, loan.to_dict(), expected_version=0)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_ISSUED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "borrower_id": borrower_id,
                        "principal_amount": principal_amount,
                        "interest_rate": rate,
                        "tenure_months": tenure_months,
                        "status": status.value
                    }
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "issue_loan", f"member:{borrower_id}")

        log_action(
            self.logger, "info", f"Loan issued ({status.value})",
            action="issue_loan", resource=f"loan:{loan.id}",
            extra={"borrower_id": borrower_id, "principal_amount": str(principal_amount)}
        )
        return loan

    def approve(self, loan_id: str) -> Loan:
        """Move a pending loan to approved"""
        return self._transition(loan_id, LoanStatus.PENDING, LoanStatus.APPROVED,
                                AuditEventType.LOAN_APPROVED, "approve_loan")

    def activate(self, loan_id: str, start_date: Optional[date] = None) -> Loan:
        """Move an approved loan to active; repayments are accepted from here"""
        return self._transition(loan_id, LoanStatus.APPROVED, LoanStatus.ACTIVE,
                                AuditEventType.LOAN_ACTIVATED, "activate_loan",
                                start_date=start_date or date.today())

    def mark_defaulted(self, loan_id: str, reason: str) -> Loan:
        """Move an active loan to defaulted"""
        return self._transition(loan_id, LoanStatus.ACTIVE, LoanStatus.DEFAULTED,
                                AuditEventType.LOAN_DEFAULTED, "default_loan", reason=reason)

    def apply_repayment(
        self,
        loan_id: str,
        amount: Decimal,
        payment_date: Optional[date] = None
    ) -> RepaymentResult:
        """
        Apply a repayment against a loan's outstanding amount

        The overpayment check and the decrement happen in one atomic scope.
        Reaching zero closes the loan.

        Raises:
            LoanNotFound, LoanAlreadyClosed, OverpaymentExceedsOutstanding, InvalidAmount
        """
        try:
            value = Money.of(to_decimal(amount))
            if not value.is_positive():
                raise InvalidAmount("Repayment amount must be positive", entity_id=loan_id, amount=value)

            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                if loan.repayment_status in (LoanStatus.CLOSED, LoanStatus.DEFAULTED):
                    raise LoanAlreadyClosed(
                        f"Loan {loan_id} is {loan.repayment_status.value}", entity_id=loan_id
                    )
                if not loan.is_active:
                    raise InvalidTransition(
                        f"Loan {loan_id} is not active (status: {loan.repayment_status.value})",
                        entity_id=loan_id
                    )
                if value > loan.outstanding_amount:
                    raise OverpaymentExceedsOutstanding(
                        f"Payment amount exceeds outstanding balance of {loan.outstanding_amount}",
                        entity_id=loan_id, amount=value
                    )

                now = datetime.now(timezone.utc)
                before = loan.outstanding_amount
                repayment = Repayment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    amount=value,
                    payment_date=payment_date or date.today(),
                    outstanding_before=before,
                    outstanding_after=before - value
                )
                self.storage.save(self.repayments_table, repayment.id, repayment.to_dict())

                loan.outstanding_amount = repayment.outstanding_after
                if loan.outstanding_amount.is_zero():
                    loan.repayment_status = LoanStatus.CLOSED
                    loan.closed_at = now
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_REPAYMENT_APPLIED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "repayment_id": repayment.id,
                        "amount": value,
                        "outstanding_before": before,
                        "outstanding_after": loan.outstanding_amount
                    }
                )
                if loan.repayment_status == LoanStatus.CLOSED:
                    self.audit_trail.log_event(
                        event_type=AuditEventType.LOAN_CLOSED,
                        entity_type="loan",
                        entity_id=loan.id,
                        metadata={"final_repayment_id": repayment.id}
                    )
        except EngineError as e:
            raise log_rejection(self.logger, e, "apply_repayment", f"loan:{loan_id}")

        status = ("Loan fully repaid and closed" if loan.repayment_status == LoanStatus.CLOSED
                  else f"Repayment of {value} applied")
        log_action(
            self.logger, "info", status,
            action="apply_repayment", resource=f"loan:{loan_id}",
            extra={"amount": str(value), "outstanding_amount": str(loan.outstanding_amount)}
        )
        return RepaymentResult(
            loan=loan,
            repayment=repayment,
            outstanding_amount=loan.outstanding_amount,
            status=status
        )

    def accrue_interest(self, loan_id: str, as_of: Optional[date] = None) -> LoanResult:
        """
        Accrue simple monthly interest on the outstanding amount

        Interest for each whole month since the last accrual (or the start
        date) is recorded as a LoanAdjustment and added to accrued_interest.
        """
        as_of = as_of or date.today()
        try:
            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                if not loan.is_active:
                    raise InvalidTransition(
                        f"Loan {loan_id} is not active (status: {loan.repayment_status.value})",
                        entity_id=loan_id
                    )

                period_start = loan.interest_accrued_through or loan.start_date
                months = whole_months_between(period_start, as_of)
                if months == 0:
                    return LoanResult(loan=loan, status="No interest due")

                period_end = add_months(period_start, months)
                interest = Money(
                    loan.outstanding_amount.amount * loan.interest_rate / Decimal('100')
                    / Decimal('12') * months
                )

                now = datetime.now(timezone.utc)
                adjustment = LoanAdjustment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    amount=interest,
                    period_start=period_start,
                    period_end=period_end,
                    months=months,
                    outstanding_basis=loan.outstanding_amount
                )
                self.storage.save(self.adjustments_table, adjustment.id, adjustment.to_dict())

                loan.accrued_interest = loan.accrued_interest + interest
                loan.interest_accrued_through = period_end
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=AuditEventType.LOAN_INTEREST_ACCRUED,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={
                        "adjustment_id": adjustment.id,
                        "amount": interest,
                        "months": months,
                        "period_end": period_end
                    }
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "accrue_interest", f"loan:{loan_id}")

        log_action(
            self.logger, "info", f"Accrued interest of {interest}",
            action="accrue_interest", resource=f"loan:{loan_id}",
            extra={"months": months, "accrued_interest": str(loan.accrued_interest)}
        )
        return LoanResult(loan=loan, status=f"Accrued {interest} for {months} month(s)",
                          adjustment=adjustment)

    def get_loan(self, loan_id: str) -> Optional[Loan]:
        """Get loan by ID"""
        data = self.storage.load(self.loans_table, loan_id)
        if data:
            return self._loan_from_dict(data)
        return None

    def get_borrower_loans(self, borrower_id: str) -> List[Loan]:
        """Get all loans for a borrower"""
        return [self._loan_from_dict(data)
                for data in self.storage.find(self.loans_table, {"borrower_id": borrower_id})]

    def get_repayments(self, loan_id: str) -> List[Repayment]:
        """Repayments for a loan in the order they were applied"""
        self._require_loan(loan_id)
        return [self._repayment_from_dict(data)
                for data in self.storage.find(self.repayments_table, {"loan_id": loan_id})]

    def get_adjustments(self, loan_id: str) -> List[LoanAdjustment]:
        self._require_loan(loan_id)
        return [self._adjustment_from_dict(data)
                for data in self.storage.find(self.adjustments_table, {"loan_id": loan_id})]

    def _transition(self, loan_id: str, from_status: LoanStatus, to_status: LoanStatus,
                    event_type: AuditEventType, action: str,
                    start_date: Optional[date] = None, reason: Optional[str] = None) -> Loan:
        try:
            with self.storage.atomic():
                loan = self._require_loan(loan_id)
                if loan.repayment_status != from_status:
                    raise InvalidTransition(
                        f"Loan {loan_id} is {loan.repayment_status.value}, expected {from_status.value}",
                        entity_id=loan_id
                    )
                loan.repayment_status = to_status
                if start_date is not None:
                    loan.start_date = start_date
                self._save_loan(loan)

                self.audit_trail.log_event(
                    event_type=event_type,
                    entity_type="loan",
                    entity_id=loan.id,
                    metadata={"old_status": from_status.value, "new_status": to_status.value,
                              "reason": reason}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, action, f"loan:{loan_id}")

        log_action(
            self.logger, "info", f"Loan moved to {to_status.value}",
            action=action, resource=f"loan:{loan_id}",
            extra={"reason": reason} if reason else None
        )
        return loan

    def _require_loan(self, loan_id: str) -> Loan:
        loan = self.get_loan(loan_id)
        if not loan:
            raise LoanNotFound(f"Loan {loan_id} not found", entity_id=loan_id)
        return loan

    def _save_loan(self, loan: Loan) -> None:
        loan.updated_at = datetime.now(timezone.utc)
        loan.version += 1
        self.storage.save(self.loans_table, loan.id, loan.to_dict(),
                          expected_version=loan.version - 1)

    def _loan_from_dict(self, data: Dict) -> Loan:
        return Loan(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_number=data['loan_number'],
            borrower_id=data['borrower_id'],
            principal_amount=Money(Decimal(data['principal_amount'])),
            interest_rate=Decimal(data['interest_rate']),
            tenure_months=data['tenure_months'],
            outstanding_amount=Money(Decimal(data['outstanding_amount'])),
            repayment_status=LoanStatus(data['repayment_status']),
            accrued_interest=Money(Decimal(data.get('accrued_interest', '0'))),
            start_date=date.fromisoformat(data['start_date']) if data.get('start_date') else None,
            interest_accrued_through=(date.fromisoformat(data['interest_accrued_through'])
                                      if data.get('interest_accrued_through') else None),
            closed_at=datetime.fromisoformat(data['closed_at']) if data.get('closed_at') else None,
            version=data.get('version', 1)
        )

    def _repayment_from_dict(self, data: Dict) -> Repayment:
        return Repayment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount=Money(Decimal(data['amount'])),
            payment_date=date.fromisoformat(data['payment_date']),
            outstanding_before=Money(Decimal(data['outstanding_before'])),
            outstanding_after=Money(Decimal(data['outstanding_after']))
        )

    def _adjustment_from_dict(self, data: Dict) -> LoanAdjustment:
        return LoanAdjustment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_id=data['loan_id'],
            amount=Money(Decimal(data['amount'])),
            period_start=date.fromisoformat(data['period_start']),
            period_end=date.fromisoformat(data['period_end']),
            months=data['months'],
            outstanding_basis=Money(Decimal(data['outstanding_basis'])),
            adjustment_type=data.get('adjustment_type', "interest_accrual")
        )
