"""
Test suite for loan lifecycle management
"""

import pytest
from datetime import date
from decimal import Decimal

from coop_banking.money import Money
from coop_banking.storage import InMemoryStorage
from coop_banking.audit import AuditTrail, AuditEventType
from coop_banking.members import MemberRegistry, MemberStatus
from coop_banking.loans import LoanManager, LoanStatus
from coop_banking.errors import (
    LoanNotFound, LoanAlreadyClosed, OverpaymentExceedsOutstanding, BorrowerHasActiveLoan,
    BorrowerInactive, MemberNotFound, InvalidAmount, InvalidInputError, InvalidTransition,
    ErrorKind
)


class TestLoanManager:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.members = MemberRegistry(self.storage, self.audit_trail)
        self.loans = LoanManager(self.storage, self.audit_trail, self.members)
        self.borrower = self.members.register("Meera Iyer")

    def _issue(self, principal=Decimal('10000'), rate=Decimal('12'), tenure=12, start=date(2024, 1, 15)):
        return self.loans.issue(self.borrower.id, principal, rate, tenure, start_date=start)

    def test_issue_loan(self):
        loan = self._issue()

        assert loan.repayment_status == LoanStatus.ACTIVE
        assert loan.outstanding_amount == Money(Decimal('10000'))
        assert loan.principal_amount == loan.outstanding_amount
        assert loan.loan_number.startswith("LN")
        assert loan.maturity_date == date(2025, 1, 15)

        stored = self.loans.get_loan(loan.id)
        assert stored.outstanding_amount == Money(Decimal('10000'))

    def test_issue_validation(self):
        with pytest.raises(InvalidAmount):
            self._issue(principal=Decimal('0'))
        with pytest.raises(InvalidInputError):
            self._issue(rate=Decimal('-1'))
        with pytest.raises(InvalidInputError):
            self._issue(tenure=0)
        with pytest.raises(MemberNotFound):
            self.loans.issue("nobody", Decimal('100'), Decimal('10'), 12)

    def test_inactive_borrower_rejected(self):
        self.members.update_status(self.borrower.id, MemberStatus.INACTIVE, "left")
        with pytest.raises(BorrowerInactive):
            self._issue()

    def test_one_open_loan_per_borrower(self):
        self._issue()
        with pytest.raises(BorrowerHasActiveLoan):
            self._issue(principal=Decimal('500'))
        assert len(self.loans.get_borrower_loans(self.borrower.id)) == 1

    def test_new_loan_allowed_after_closure(self):
        first = self._issue(principal=Decimal('100'))
        self.loans.apply_repayment(first.id, Decimal('100'))

        second = self._issue(principal=Decimal('200'))
        assert second.repayment_status == LoanStatus.ACTIVE

    def test_overpayment_then_full_repayment(self):
        loan = self._issue(principal=Decimal('10000'))

        with pytest.raises(OverpaymentExceedsOutstanding) as exc_info:
            self.loans.apply_repayment(loan.id, Decimal('12000'))
        assert exc_info.value.kind == ErrorKind.INSUFFICIENT_RESOURCE
        assert "Payment amount exceeds outstanding balance of 10000.00" in str(exc_info.value)
        assert self.loans.get_loan(loan.id).outstanding_amount == Money(Decimal('10000'))
        assert self.loans.get_repayments(loan.id) == []

        result = self.loans.apply_repayment(loan.id, Decimal('10000'))
        assert result.outstanding_amount == Money.zero()
        assert result.loan.repayment_status == LoanStatus.CLOSED
        assert result.loan.closed_at is not None
        assert result.status == "Loan fully repaid and closed"

        closed_events = [e for e in self.audit_trail.get_events_for_entity("loan", loan.id)
                         if e.event_type == AuditEventType.LOAN_CLOSED]
        assert len(closed_events) == 1

    def test_repayment_on_closed_loan(self):
        loan = self._issue(principal=Decimal('100'))
        self.loans.apply_repayment(loan.id, Decimal('100'))

        with pytest.raises(LoanAlreadyClosed):
            self.loans.apply_repayment(loan.id, Decimal('1'))

    def test_outstanding_decreases_monotonically(self):
        loan = self._issue(principal=Decimal('1000'))
        payments = [Decimal('250'), Decimal('0.01'), Decimal('300.99'), Decimal('449')]

        previous = Money(Decimal('1000'))
        for amount in payments:
            result = self.loans.apply_repayment(loan.id, amount)
            assert result.outstanding_amount == previous - amount
            assert result.repayment.outstanding_before == previous
            previous = result.outstanding_amount

        repayments = self.loans.get_repayments(loan.id)
        assert sum((r.amount.amount for r in repayments), Decimal('0')) == Decimal('1000')
        assert self.loans.get_loan(loan.id).repayment_status == LoanStatus.CLOSED

    def test_invalid_repayment_amount(self):
        loan = self._issue()
        with pytest.raises(InvalidAmount):
            self.loans.apply_repayment(loan.id, Decimal('0'))
        with pytest.raises(LoanNotFound):
            self.loans.apply_repayment("missing", Decimal('10'))

    def test_approval_flow(self):
        loans = LoanManager(self.storage, self.audit_trail, self.members, approval_required=True)
        loan = loans.issue(self.borrower.id, Decimal('5000'), Decimal('10'), 6)
        assert loan.repayment_status == LoanStatus.PENDING

        with pytest.raises(InvalidTransition):
            loans.apply_repayment(loan.id, Decimal('100'))
        with pytest.raises(InvalidTransition):
            loans.activate(loan.id)

        loans.approve(loan.id)
        activated = loans.activate(loan.id, start_date=date(2024, 3, 1))
        assert activated.repayment_status == LoanStatus.ACTIVE
        assert activated.start_date == date(2024, 3, 1)

        result = loans.apply_repayment(loan.id, Decimal('100'))
        assert result.outstanding_amount == Money(Decimal('4900'))

    def test_pending_loan_blocks_second_loan(self):
        loans = LoanManager(self.storage, self.audit_trail, self.members, approval_required=True)
        loans.issue(self.borrower.id, Decimal('5000'), Decimal('10'), 6)
        with pytest.raises(BorrowerHasActiveLoan):
            loans.issue(self.borrower.id, Decimal('1000'), Decimal('10'), 6)

    def test_accrue_interest(self):
        loan = self._issue(principal=Decimal('12000'), rate=Decimal('12'), start=date(2024, 1, 15))

        result = self.loans.accrue_interest(loan.id, as_of=date(2024, 4, 20))
        # 12000 * 1% * 3 months
        assert result.adjustment.amount == Money(Decimal('360'))
        assert result.adjustment.months == 3
        assert result.loan.accrued_interest == Money(Decimal('360'))
        assert result.loan.interest_accrued_through == date(2024, 4, 15)
        assert result.loan.outstanding_amount == Money(Decimal('12000'))

        again = self.loans.accrue_interest(loan.id, as_of=date(2024, 5, 1))
        assert again.status == "No interest due"
        assert again.adjustment is None
        assert len(self.loans.get_adjustments(loan.id)) == 1

    def test_default_blocks_repayment(self):
        loan = self._issue()
        defaulted = self.loans.mark_defaulted(loan.id, "90 days overdue")
        assert defaulted.repayment_status == LoanStatus.DEFAULTED

        with pytest.raises(LoanAlreadyClosed):
            self.loans.apply_repayment(loan.id, Decimal('10'))
        with pytest.raises(InvalidTransition):
            self.loans.accrue_interest(loan.id)
