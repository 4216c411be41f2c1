"""
Test suite for the account ledger

Balance conservation, minimum-balance enforcement, transfer atomicity and
the append-only ledger history.
"""

import pytest
from decimal import Decimal

from coop_banking.money import Money
from coop_banking.storage import InMemoryStorage
from coop_banking.audit import AuditTrail
from coop_banking.members import MemberRegistry, MemberStatus
from coop_banking.accounts import AccountLedger, AccountType, AccountStatus, EntryType
from coop_banking.errors import (
    AccountNotFound, AccountNotActive, InvalidAmount, InsufficientFunds,
    SameParty, MemberInactive, InvalidTransition, InvalidInputError, ErrorKind
)


class TestAccountLedger:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.members = MemberRegistry(self.storage, self.audit_trail)
        self.ledger = AccountLedger(self.storage, self.audit_trail, self.members)
        self.member = self.members.register("Asha Rao")

    def _open(self, initial=Decimal('1000'), minimum=Decimal('0')):
        return self.ledger.open_account(
            self.member.id, AccountType.SAVINGS,
            minimum_balance=minimum, initial_deposit=initial
        )

    def test_open_account_with_initial_deposit(self):
        account = self._open(Decimal('1000'))

        assert account.balance == Money(Decimal('1000'))
        assert account.account_number.startswith("SAV")
        history = self.ledger.get_history(account.id)
        assert len(history) == 1
        assert history[0].entry_type == EntryType.CREDIT
        assert history[0].balance_before == Money.zero()
        assert history[0].balance_after == Money(Decimal('1000'))

    def test_open_account_requires_active_member(self):
        self.members.update_status(self.member.id, MemberStatus.SUSPENDED, "review")
        with pytest.raises(MemberInactive):
            self._open()
        assert self.storage.count("accounts") == 0

    def test_open_account_below_minimum_rejected(self):
        with pytest.raises(InsufficientFunds):
            self._open(initial=Decimal('100'), minimum=Decimal('500'))

    def test_credit_and_debit(self):
        account = self._open()

        credit = self.ledger.credit(account.id, Decimal('250.50'))
        assert credit.balance == Money(Decimal('1250.50'))
        assert credit.entry.balance_before == Money(Decimal('1000'))
        assert "Credit" in credit.status

        debit = self.ledger.debit(account.id, Decimal('0.50'))
        assert debit.balance == Money(Decimal('1250.00'))
        assert self.ledger.get_balance(account.id) == Money(Decimal('1250.00'))

    def test_overdraw_fails_and_balance_unchanged(self):
        account = self._open(Decimal('1000'))

        with pytest.raises(InsufficientFunds) as exc_info:
            self.ledger.debit(account.id, Decimal('1500'))

        error = exc_info.value
        assert error.kind == ErrorKind.INSUFFICIENT_RESOURCE
        assert error.entity_id == account.id
        assert error.amount == Money(Decimal('1500'))
        assert self.ledger.get_balance(account.id) == Money(Decimal('1000'))
        assert len(self.ledger.get_history(account.id)) == 1

    def test_minimum_balance_enforced(self):
        account = self._open(Decimal('1000'), minimum=Decimal('500'))

        self.ledger.debit(account.id, Decimal('500'))
        with pytest.raises(InsufficientFunds):
            self.ledger.debit(account.id, Decimal('0.01'))
        assert self.ledger.get_balance(account.id) == Money(Decimal('500'))

    @pytest.mark.parametrize("amount", [Decimal('0'), Decimal('-5'), Decimal('0.001'), "abc"])
    def test_invalid_amounts(self, amount):
        account = self._open()
        with pytest.raises(InvalidAmount):
            self.ledger.credit(account.id, amount)

    def test_unknown_account(self):
        with pytest.raises(AccountNotFound):
            self.ledger.credit("missing", Decimal('10'))
        with pytest.raises(AccountNotFound):
            self.ledger.get_history("missing")

    def test_inactive_account_rejects_transactions(self):
        account = self._open()
        self.ledger.update_status(account.id, AccountStatus.SUSPENDED, "fraud review")

        with pytest.raises(AccountNotActive):
            self.ledger.credit(account.id, Decimal('10'))

    def test_balance_conservation(self):
        account = self._open(Decimal('1000'))
        credits = [Decimal('100'), Decimal('0.33'), Decimal('59.67')]
        debits = [Decimal('200'), Decimal('10.10')]

        for amount in credits:
            self.ledger.credit(account.id, amount)
        for amount in debits:
            self.ledger.debit(account.id, amount)

        expected = Decimal('1000') + sum(credits) - sum(debits)
        assert self.ledger.get_balance(account.id) == Money(expected)

        history = self.ledger.get_history(account.id)
        assert [e.sequence for e in history] == [1, 2, 3, 4, 5, 6]
        for previous, current in zip(history, history[1:]):
            assert current.balance_before == previous.balance_after

    def test_transfer(self):
        source = self._open(Decimal('1000'))
        other = self.members.register("Ravi")
        destination = self.ledger.open_account(other.id, AccountType.CURRENT)

        result = self.ledger.transfer(source.id, destination.id, Decimal('400'))

        assert result.balance == Money(Decimal('600'))
        assert result.counterpart_balance == Money(Decimal('400'))
        assert result.entry.entry_type == EntryType.TRANSFER
        assert result.entry.is_outgoing
        assert not result.counterpart_entry.is_outgoing
        assert result.entry.transfer_id == result.counterpart_entry.transfer_id
        assert result.entry.counterparty_account_id == destination.id

        total = self.ledger.get_balance(source.id) + self.ledger.get_balance(destination.id)
        assert total == Money(Decimal('1000'))

    def test_failed_transfer_writes_nothing(self):
        source = self._open(Decimal('100'))
        other = self.members.register("Ravi")
        destination = self.ledger.open_account(other.id, AccountType.SAVINGS)
        entries_before = self.storage.count("ledger_entries")

        with pytest.raises(InsufficientFunds):
            self.ledger.transfer(source.id, destination.id, Decimal('100.01'))

        assert self.ledger.get_balance(source.id) == Money(Decimal('100'))
        assert self.ledger.get_balance(destination.id) == Money.zero()
        assert self.storage.count("ledger_entries") == entries_before

    def test_transfer_to_inactive_destination_rolls_back(self):
        source = self._open(Decimal('100'))
        other = self.members.register("Ravi")
        destination = self.ledger.open_account(other.id, AccountType.SAVINGS)
        self.ledger.update_status(destination.id, AccountStatus.INACTIVE, "dormant")

        with pytest.raises(AccountNotActive):
            self.ledger.transfer(source.id, destination.id, Decimal('50'))
        assert self.ledger.get_balance(source.id) == Money(Decimal('100'))

    def test_transfer_to_same_account(self):
        account = self._open()
        with pytest.raises(SameParty):
            self.ledger.transfer(account.id, account.id, Decimal('10'))

    def test_transfer_requires_destination(self):
        account = self._open()
        with pytest.raises(InvalidInputError):
            self.ledger.apply_transaction(account.id, EntryType.TRANSFER, Decimal('10'))

    def test_close_account_requires_zero_balance(self):
        account = self._open(Decimal('50'))
        with pytest.raises(InvalidTransition):
            self.ledger.close_account(account.id, "member request")

        self.ledger.debit(account.id, Decimal('50'))
        closed = self.ledger.close_account(account.id, "member request")
        assert closed.status == AccountStatus.CLOSED
        assert closed.closed_at is not None

        with pytest.raises(InvalidTransition):
            self.ledger.update_status(account.id, AccountStatus.ACTIVE, "reopen")

    def test_version_increments_per_change(self):
        account = self._open(Decimal('0'))
        assert account.version == 1
        self.ledger.credit(account.id, Decimal('10'))
        self.ledger.credit(account.id, Decimal('10'))
        assert self.ledger.get_account(account.id).version == 3

    def test_member_accounts(self):
        first = self._open()
        second = self._open(Decimal('0'))
        assert {a.id for a in self.ledger.get_member_accounts(self.member.id)} == {first.id, second.id}

    def test_audit_chain_valid_after_activity(self):
        account = self._open()
        self.ledger.debit(account.id, Decimal('10'))
        with pytest.raises(InsufficientFunds):
            self.ledger.debit(account.id, Decimal('10000'))
        assert self.audit_trail.verify_integrity()["valid"]
