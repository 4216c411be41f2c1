"""
Test suite for the share registry

Covers allocation, lot-by-lot transfers, redemption and record-date
positions. The total number of shares outstanding changes only through
allocation, bonus issues and redemption.
"""

import pytest
from datetime import datetime, date, timedelta, timezone
from decimal import Decimal

from coop_banking.money import Money
from coop_banking.storage import InMemoryStorage
from coop_banking.audit import AuditTrail
from coop_banking.members import MemberRegistry, MemberStatus
from coop_banking.shares import ShareRegistry, ShareType, ShareStatus, ShareTransactionType
from coop_banking.errors import (
    InsufficientShares, SameParty, MemberInactive, MemberNotFound, InvalidInputError, InvalidAmount
)


def at(year, month, day):
    return datetime(year, month, day, 12, 0, tzinfo=timezone.utc)


class TestShareRegistry:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.members = MemberRegistry(self.storage, self.audit_trail)
        self.registry = ShareRegistry(self.storage, self.audit_trail, self.members)
        self.alice = self.members.register("Alice")
        self.bob = self.members.register("Bob")

    def test_allocate_shares(self):
        result = self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'))

        assert result.balance == 100
        assert result.holding.total_amount == Money(Decimal('1000'))
        assert result.holding.certificate_number.startswith("SH")
        assert result.transaction.transaction_type == ShareTransactionType.PURCHASE
        assert result.transaction.amount == Money(Decimal('1000'))
        assert self.registry.get_share_balance(self.alice.id) == 100

    @pytest.mark.parametrize("count", [0, -5, 2.5, True])
    def test_allocate_rejects_bad_counts(self, count):
        with pytest.raises(InvalidInputError):
            self.registry.allocate(self.alice.id, ShareType.ORDINARY, count, Decimal('10'))

    def test_allocate_requires_positive_value(self):
        with pytest.raises(InvalidAmount):
            self.registry.allocate(self.alice.id, ShareType.ORDINARY, 10, Decimal('0'))

    def test_allocate_requires_active_member(self):
        self.members.update_status(self.alice.id, MemberStatus.SUSPENDED, "review")
        with pytest.raises(MemberInactive):
            self.registry.allocate(self.alice.id, ShareType.ORDINARY, 10, Decimal('10'))
        with pytest.raises(MemberNotFound):
            self.registry.allocate("nobody", ShareType.ORDINARY, 10, Decimal('10'))

    def test_transfer_more_than_held_then_all(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'))

        with pytest.raises(InsufficientShares):
            self.registry.transfer(self.alice.id, self.bob.id, 150, Decimal('1500'))
        assert self.registry.get_share_balance(self.alice.id) == 100
        assert self.registry.get_share_balance(self.bob.id) == 0

        result = self.registry.transfer(self.alice.id, self.bob.id, 100, Decimal('1200'))

        assert result.from_balance == 0
        assert result.to_balance == 100
        assert self.registry.get_share_balance(self.alice.id) == 0
        assert self.registry.get_share_balance(self.bob.id) == 100
        assert self.registry.get_holdings(self.alice.id) == []
        alice_lots = self.registry.get_holdings(self.alice.id, include_inactive=True)
        assert alice_lots[0].status == ShareStatus.TRANSFERRED

    def test_transfer_writes_matching_pairs(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 30, Decimal('10'))
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 30, Decimal('20'))

        result = self.registry.transfer(self.alice.id, self.bob.id, 45, Decimal('100'))

        assert len(result.transactions) == 4
        assert sum(t.number_of_shares for t in result.transactions) == 0
        assert sum((t.amount.amount for t in result.transactions), Decimal('0')) == Decimal('0')
        assert {t.transfer_id for t in result.transactions} == {result.transactions[0].transfer_id}

        incoming = [t for t in result.transactions if t.member_id == self.bob.id]
        assert [t.number_of_shares for t in incoming] == [30, 15]
        assert sum((t.amount.amount for t in incoming), Decimal('0')) == Decimal('100')

        bob_lots = self.registry.get_holdings(self.bob.id)
        assert sorted(lot.share_value.amount for lot in bob_lots) == [Decimal('10'), Decimal('20')]

    def test_total_shares_conserved_by_transfers(self):
        carol = self.members.register("Carol")
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'))
        self.registry.allocate(self.bob.id, ShareType.PREFERENCE, 40, Decimal('25'))
        total = self.registry.total_shares_outstanding()

        self.registry.transfer(self.alice.id, self.bob.id, 60, Decimal('700'))
        self.registry.transfer(self.bob.id, carol.id, 75, Decimal('900'))
        with pytest.raises(InsufficientShares):
            self.registry.transfer(carol.id, self.alice.id, 76, Decimal('1'))

        assert self.registry.total_shares_outstanding() == total
        balances = [self.registry.get_share_balance(m) for m in (self.alice.id, self.bob.id, carol.id)]
        assert sum(balances) == total
        assert all(balance >= 0 for balance in balances)

    def test_transfer_restricted_to_share_type(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 10, Decimal('10'))
        self.registry.allocate(self.alice.id, ShareType.PREFERENCE, 10, Decimal('10'))

        with pytest.raises(InsufficientShares):
            self.registry.transfer(self.alice.id, self.bob.id, 15, Decimal('150'),
                                   share_type=ShareType.PREFERENCE)
        self.registry.transfer(self.alice.id, self.bob.id, 10, Decimal('150'),
                               share_type=ShareType.PREFERENCE)
        assert self.registry.get_share_balance(self.alice.id, ShareType.ORDINARY) == 10
        assert self.registry.get_share_balance(self.bob.id, ShareType.PREFERENCE) == 10

    def test_transfer_to_self_or_inactive_member(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 10, Decimal('10'))
        with pytest.raises(SameParty):
            self.registry.transfer(self.alice.id, self.alice.id, 5, Decimal('50'))

        self.members.update_status(self.bob.id, MemberStatus.INACTIVE, "left")
        with pytest.raises(MemberInactive):
            self.registry.transfer(self.alice.id, self.bob.id, 5, Decimal('50'))
        assert self.registry.get_share_balance(self.alice.id) == 10

    def test_redeem(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 20, Decimal('10'))
        before = self.registry.total_shares_outstanding()

        result = self.registry.redeem(self.alice.id, 5)

        assert result.balance == 15
        assert result.transaction.amount == Money(Decimal('-50'))
        assert self.registry.total_shares_outstanding() == before - 5
        with pytest.raises(InsufficientShares):
            self.registry.redeem(self.alice.id, 16)

    def test_bonus_issue_is_free(self):
        result = self.registry.issue_bonus(self.alice.id, 10, Decimal('10'))
        assert result.transaction.transaction_type == ShareTransactionType.BONUS_ISSUE
        assert result.transaction.amount == Money.zero()
        assert result.holding.share_type == ShareType.BONUS

    def test_shareholders_as_of(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'),
                               transaction_date=at(2024, 1, 10))
        self.registry.transfer(self.alice.id, self.bob.id, 100, Decimal('1000'),
                               transaction_date=at(2024, 6, 1))

        before_transfer = self.registry.shareholders_as_of(date(2024, 3, 31))
        assert [(p.member_id, p.number_of_shares) for p in before_transfer] == [(self.alice.id, 100)]
        assert before_transfer[0].nominal_value == Money(Decimal('1000'))

        after_transfer = self.registry.shareholders_as_of(date(2024, 6, 1))
        assert [(p.member_id, p.number_of_shares) for p in after_transfer] == [(self.bob.id, 100)]

        assert self.registry.shareholders_as_of(date(2023, 12, 31)) == []

    def test_transfer_cannot_predate_the_shares_it_moves(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'),
                               transaction_date=at(2024, 6, 1))

        with pytest.raises(InvalidInputError):
            self.registry.transfer(self.alice.id, self.bob.id, 100, Decimal('1000'),
                                   transaction_date=at(2024, 2, 1))
        with pytest.raises(InvalidInputError):
            self.registry.redeem(self.alice.id, 40, transaction_date=at(2024, 5, 31))

        assert self.registry.shareholders_as_of(date(2024, 3, 31)) == []
        assert self.registry.get_share_balance(self.alice.id) == 100
        assert self.registry.get_share_balance(self.bob.id) == 0
        assert len(self.registry.get_holdings(self.alice.id)) == 1

    def test_movements_follow_the_source_members_latest_transaction(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'),
                               transaction_date=at(2024, 1, 10))
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 50, Decimal('10'),
                               transaction_date=at(2024, 5, 1))

        # the January lot is old enough, but the May allocation is later
        with pytest.raises(InvalidInputError):
            self.registry.transfer(self.alice.id, self.bob.id, 10, Decimal('100'),
                                   transaction_date=at(2024, 3, 1))

        self.registry.transfer(self.alice.id, self.bob.id, 10, Decimal('100'),
                               transaction_date=at(2024, 5, 1))
        with pytest.raises(InvalidInputError):
            self.registry.redeem(self.bob.id, 10, transaction_date=at(2024, 4, 30))
        self.registry.redeem(self.bob.id, 10, transaction_date=at(2024, 7, 1))

        positions = {p.member_id: p.number_of_shares
                     for p in self.registry.shareholders_as_of(date(2024, 5, 31))}
        assert positions == {self.alice.id: 140, self.bob.id: 10}

    def test_future_dated_movements_rejected(self):
        future = datetime.now(timezone.utc) + timedelta(days=30)
        with pytest.raises(InvalidInputError):
            self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'),
                                   transaction_date=future)
        with pytest.raises(InvalidInputError):
            self.registry.issue_bonus(self.alice.id, 5, Decimal('10'), transaction_date=future)

        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'))
        with pytest.raises(InvalidInputError):
            self.registry.transfer(self.alice.id, self.bob.id, 10, Decimal('100'),
                                   transaction_date=future)
        assert self.registry.get_share_balance(self.alice.id) == 100

    def test_naive_transaction_date_is_treated_as_utc(self):
        result = self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'),
                                        transaction_date=datetime(2024, 1, 10, 12, 0))
        assert result.transaction.transaction_date == at(2024, 1, 10)
        self.registry.transfer(self.alice.id, self.bob.id, 10, Decimal('100'),
                               transaction_date=at(2024, 2, 1))

    def test_transactions_filtered_by_type(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'))
        self.registry.issue_bonus(self.alice.id, 10, Decimal('10'))
        self.registry.redeem(self.alice.id, 5)

        purchases = self.registry.get_transactions(self.alice.id, ShareTransactionType.PURCHASE)
        assert [t.number_of_shares for t in purchases] == [100]
        redemptions = self.registry.get_transactions(self.alice.id, ShareTransactionType.REDEMPTION)
        assert [t.number_of_shares for t in redemptions] == [-5]
        assert len(self.registry.get_transactions(self.alice.id)) == 3

    def test_stats(self):
        self.registry.allocate(self.alice.id, ShareType.ORDINARY, 100, Decimal('10'))
        self.registry.allocate(self.alice.id, ShareType.PREFERENCE, 20, Decimal('50'))
        self.registry.transfer(self.alice.id, self.bob.id, 100, Decimal('900'), share_type=ShareType.ORDINARY)
        self.registry.redeem(self.alice.id, 5, share_type=ShareType.PREFERENCE)

        stats = self.registry.get_stats()

        assert stats["total_shares"] == 115
        assert stats["total_shares"] == self.registry.total_shares_outstanding()
        assert stats["active_shares"] == 115
        assert stats["total_value"] == Money(Decimal('1750'))
        assert stats["total_members"] == 2
        assert stats["by_type"]["ordinary"] == {
            "count": 2, "total_shares": 100, "total_value": Money(Decimal('1000'))
        }
        assert stats["by_type"]["preference"]["total_value"] == Money(Decimal('750'))
        assert stats["by_status"]["transferred"] == {"count": 1, "total_shares": 0}
        assert stats["by_status"]["active"] == {"count": 2, "total_shares": 115}
