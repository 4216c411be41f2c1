"""
Test suite for dividend declaration and distribution
"""

import pytest
from datetime import datetime, date, timezone
from decimal import Decimal

from coop_banking.money import Money
from coop_banking.storage import InMemoryStorage
from coop_banking.audit import AuditTrail
from coop_banking.members import MemberRegistry, MemberStatus
from coop_banking.shares import ShareRegistry, ShareType
from coop_banking.dividends import DividendEngine, DividendType, DividendStatus, PaymentStatus
from coop_banking.errors import (
    DuplicateDividend, DividendNotFound, InvalidInputError, InvalidTransition, ErrorKind
)


class TestDividendEngine:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.members = MemberRegistry(self.storage, self.audit_trail)
        self.shares = ShareRegistry(self.storage, self.audit_trail, self.members)
        self.engine = DividendEngine(self.storage, self.audit_trail, self.members, self.shares,
                                     bank_id="coop-001")

        self.alice = self.members.register("Alice")
        self.bob = self.members.register("Bob")
        self.carol = self.members.register("Carol")
        allotted = datetime(2024, 1, 5, tzinfo=timezone.utc)
        self.shares.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'), transaction_date=allotted)
        self.shares.allocate(self.bob.id, ShareType.ORDINARY, 33, Decimal('10'), transaction_date=allotted)
        self.shares.allocate(self.carol.id, ShareType.ORDINARY, 7, Decimal('25'), transaction_date=allotted)

    def _declare(self, year=2024, dividend_type=DividendType.ANNUAL, rate=Decimal('7.5'), **kwargs):
        return self.engine.declare(year, dividend_type, rate, date(2024, 3, 31), date(2024, 4, 30), **kwargs)

    def _approved(self, **kwargs):
        dividend = self._declare(**kwargs)
        return self.engine.approve(dividend.id)

    def test_declare(self):
        dividend = self._declare(description="FY2024 annual dividend")

        assert dividend.status == DividendStatus.DECLARED
        assert dividend.dividend_number.startswith("DIV2024")
        assert dividend.bank_id == "coop-001"
        assert dividend.total_amount == Money.zero()

    def test_duplicate_declaration_rejected(self):
        first = self._declare()

        with pytest.raises(DuplicateDividend) as exc_info:
            self._declare(rate=Decimal('5'))
        assert exc_info.value.kind == ErrorKind.DUPLICATE_RESOURCE
        assert exc_info.value.entity_id == first.id

        interim = self._declare(dividend_type=DividendType.INTERIM)
        assert interim.id != first.id
        assert len(self.engine.list_dividends(year=2024)) == 2

    def test_cancelled_dividend_can_be_redeclared(self):
        first = self._declare()
        self.engine.cancel(first.id, "board reversed")

        second = self._declare()
        assert second.status == DividendStatus.DECLARED

    @pytest.mark.parametrize("rate", [Decimal('-1'), Decimal('100.01')])
    def test_rate_bounds(self, rate):
        with pytest.raises(InvalidInputError):
            self._declare(rate=rate)

    def test_payment_before_record_date_rejected(self):
        with pytest.raises(InvalidInputError):
            self.engine.declare(2024, DividendType.ANNUAL, Decimal('5'), date(2024, 3, 31), date(2024, 3, 1))

    def test_lifecycle_order_enforced(self):
        draft = self._declare(draft=True)
        assert draft.status == DividendStatus.PENDING

        with pytest.raises(InvalidTransition):
            self.engine.approve(draft.id)
        with pytest.raises(InvalidTransition):
            self.engine.distribute(draft.id)

        self.engine.confirm_declaration(draft.id)
        approved = self.engine.approve(draft.id)
        assert approved.status == DividendStatus.APPROVED
        assert approved.approved_at is not None

    def test_distribute_pays_each_shareholder(self):
        dividend = self._approved()

        result = self.engine.distribute(dividend.id)

        payouts = {d.member_id: d.payout_amount for d in result.distributions}
        assert payouts == {
            self.alice.id: Money(Decimal('75.00')),
            self.bob.id: Money(Decimal('24.75')),
            self.carol.id: Money(Decimal('13.13')),
        }
        assert result.total_amount == Money(Decimal('112.88'))
        assert all(d.payment_status == PaymentStatus.PENDING for d in result.distributions)

        stored = self.engine.get_dividend(dividend.id)
        assert stored.status == DividendStatus.PAID
        assert stored.total_members == 3
        assert stored.paid_at is not None

        rows = self.engine.get_distributions(dividend.id)
        assert sum((row.payout_amount.amount for row in rows), Decimal('0')) == stored.total_amount.amount

    def test_second_distribution_rejected_without_new_rows(self):
        dividend = self._approved()
        self.engine.distribute(dividend.id)
        rows = self.storage.count("dividend_distributions")

        with pytest.raises(InvalidTransition):
            self.engine.distribute(dividend.id)

        assert self.storage.count("dividend_distributions") == rows

    def test_inactive_members_excluded(self):
        self.members.update_status(self.bob.id, MemberStatus.SUSPENDED, "arrears")
        dividend = self._approved()

        result = self.engine.distribute(dividend.id)

        assert {d.member_id for d in result.distributions} == {self.alice.id, self.carol.id}
        assert result.dividend.total_members == 2

    def test_shares_bought_after_record_date_not_paid(self):
        dave = self.members.register("Dave")
        self.shares.allocate(dave.id, ShareType.ORDINARY, 50, Decimal('10'),
                             transaction_date=datetime(2024, 4, 1, tzinfo=timezone.utc))
        dividend = self._approved()

        result = self.engine.distribute(dividend.id)
        assert dave.id not in {d.member_id for d in result.distributions}

    def test_backdated_transfer_cannot_create_dividend_entitlement(self):
        dave = self.members.register("Dave")
        self.shares.allocate(dave.id, ShareType.ORDINARY, 100, Decimal('10'),
                             transaction_date=datetime(2024, 6, 1, tzinfo=timezone.utc))
        with pytest.raises(InvalidInputError):
            self.shares.transfer(dave.id, self.alice.id, 100, Decimal('1000'),
                                 transaction_date=datetime(2024, 2, 1, tzinfo=timezone.utc))
        dividend = self._approved()

        result = self.engine.distribute(dividend.id)

        assert result.total_amount == Money(Decimal('112.88'))
        assert dave.id not in {d.member_id for d in result.distributions}

    def test_cancel(self):
        dividend = self._declare()
        cancelled = self.engine.cancel(dividend.id, "error in rate")
        assert cancelled.status == DividendStatus.CANCELLED
        assert cancelled.cancellation_reason == "error in rate"

        with pytest.raises(InvalidTransition):
            self.engine.cancel(dividend.id, "again")

    def test_paid_dividend_cannot_be_cancelled(self):
        dividend = self._approved()
        self.engine.distribute(dividend.id)

        with pytest.raises(InvalidTransition):
            self.engine.cancel(dividend.id, "too late")

    def test_list_filters(self):
        annual = self._declare()
        self._declare(dividend_type=DividendType.SPECIAL)
        self.engine.approve(annual.id)

        approved = self.engine.list_dividends(status=DividendStatus.APPROVED)
        assert [d.id for d in approved] == [annual.id]
        assert len(self.engine.list_dividends(dividend_type=DividendType.SPECIAL)) == 1
        assert self.engine.list_dividends(year=2023) == []

    def test_stats(self):
        annual = self._approved()
        self.engine.distribute(annual.id)
        self._declare(dividend_type=DividendType.SPECIAL)

        stats = self.engine.get_stats()
        assert stats["total_dividends"] == 2
        assert stats["total_amount"] == Money(Decimal('112.88'))
        assert stats["by_status"] == {
            "paid": {"count": 1, "total_amount": Money(Decimal('112.88'))},
            "declared": {"count": 1, "total_amount": Money.zero()},
        }
        assert stats["by_type"]["special"]["count"] == 1
        assert stats["by_year"][2024]["count"] == 2
        assert self.engine.get_stats(year=2023)["total_dividends"] == 0

    def test_unknown_dividend(self):
        with pytest.raises(DividendNotFound):
            self.engine.distribute("missing")
