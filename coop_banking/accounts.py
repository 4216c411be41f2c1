"""
Account Ledger Module

Owns account balances and the append-only ledger of balance-changing
entries. Balance is an authoritative stored field; every change to it is
written together with its LedgerEntry inside one atomic storage scope and
guarded by the account's version.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from enum import Enum
import uuid

from .money import Money, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import MemberRegistry
from .results import TransactionResult
from .errors import (
    EngineError, AccountNotFound, AccountNotActive, InvalidAmount,
    InsufficientFunds, SameParty, InvalidInputError, InvalidTransition
)
from .logging_config import get_logger, log_action, log_rejection


class AccountType(Enum):
    """Cooperative account products"""
    SAVINGS = "savings"
    CURRENT = "current"
    FIXED_DEPOSIT = "fixed_deposit"
    RECURRING_DEPOSIT = "recurring_deposit"
    LOAN = "loan"
    DEMAT = "demat"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"
    CLOSED = "closed"      # Terminal


class EntryType(Enum):
    """Ledger entry types"""
    CREDIT = "credit"
    DEBIT = "debit"
    TRANSFER = "transfer"


@dataclass
class Account(StorageRecord):
    """Member account with a stored balance"""
    account_number: str
    owner_id: str
    account_type: AccountType
    balance: Money
    minimum_balance: Money
    interest_rate: Decimal = Decimal('0')
    status: AccountStatus = AccountStatus.ACTIVE
    entry_count: int = 0
    version: int = 1
    closed_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == AccountStatus.ACTIVE


@dataclass
class LedgerEntry(StorageRecord):
    """
    Immutable record of one balance change.

    Transfers produce two entries of type TRANSFER sharing a transfer_id;
    the direction shows in balance_before/balance_after.
    """
    account_id: str
    entry_type: EntryType
    amount: Money
    balance_before: Money
    balance_after: Money
    sequence: int
    description: Optional[str] = None
    transfer_id: Optional[str] = None
    counterparty_account_id: Optional[str] = None

    @property
    def is_outgoing(self) -> bool:
        return self.balance_after < self.balance_before


class AccountLedger:
    """
    Applies credits, debits and transfers to accounts
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 member_registry: MemberRegistry):
        self.storage = storage
        self.audit_trail = audit_trail
        self.members = member_registry
        self.table_name = "accounts"
        self.entries_table = "ledger_entries"
        self.logger = get_logger("coop_banking.accounts")

    def open_account(
        self,
        owner_id: str,
        account_type: AccountType,
        minimum_balance: Decimal = Decimal('0'),
        interest_rate: Decimal = Decimal('0'),
        initial_deposit: Decimal = Decimal('0'),
        account_number: Optional[str] = None
    ) -> Account:
        """
        Open an account for an active member

        Args:
            owner_id: Member who owns the account
            account_type: Product type
            minimum_balance: Floor the balance may not go below through debits
            interest_rate: Annual rate in percent
            initial_deposit: Optional opening credit
            account_number: Specific account number (generated if not provided)

        Returns:
            The opened Account, reflecting any initial deposit
        """
        minimum = Money.of(to_decimal(minimum_balance))
        opening = Money.of(to_decimal(initial_deposit))
        if minimum.is_negative():
            raise log_rejection(self.logger, InvalidAmount(
                "Minimum balance cannot be negative", amount=minimum), "open_account")
        if opening.is_negative():
            raise log_rejection(self.logger, InvalidAmount(
                "Initial deposit cannot be negative", amount=opening), "open_account")
        if opening < minimum:
            raise log_rejection(self.logger, InsufficientFunds(
                f"Initial deposit {opening} is below minimum balance {minimum}", amount=opening),
                "open_account")

        now = datetime.now(timezone.utc)
        account_id = str(uuid.uuid4())
        account = Account(
            id=account_id,
            created_at=now,
            updated_at=now,
            account_number=account_number or self._generate_account_number(account_type, account_id),
            owner_id=owner_id,
            account_type=account_type,
            balance=Money.zero(),
            minimum_balance=minimum,
            interest_rate=to_decimal(interest_rate)
        )

        with self.storage.atomic():
            self.members.require_active(owner_id)
            self.storage.save(self.table_name, account.id, account.to_dict(), expected_version=0)
            self.audit_trail.log_event(
                event_type=AuditEventType.ACCOUNT_OPENED,
                entity_type="account",
                entity_id=account.id,
                metadata={
                    "owner_id": owner_id,
                    "account_type": account_type.value,
                    "minimum_balance": minimum
                }
            )
            if opening.is_positive():
                account, _ = self._post(account, EntryType.CREDIT, opening, "Initial deposit")

        log_action(
            self.logger, "info", "Account opened",
            action="open_account", resource=f"account:{account.id}",
            extra={"owner_id": owner_id, "account_type": account_type.value}
        )
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.table_name, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def get_member_accounts(self, owner_id: str) -> List[Account]:
        """Get all accounts owned by a member"""
        return [self._account_from_dict(data)
                for data in self.storage.find(self.table_name, {"owner_id": owner_id})]

    def get_balance(self, account_id: str) -> Money:
        return self._require_account(account_id).balance

    def apply_transaction(
        self,
        account_id: str,
        entry_type: EntryType,
        amount: Decimal,
        destination_account_id: Optional[str] = None,
        description: Optional[str] = None
    ) -> TransactionResult:
        """
        Apply a credit, debit or transfer to an account as one atomic unit

        For TRANSFER, account_id is the source and destination_account_id
        receives the funds; both entries commit or neither does.

        Raises:
            AccountNotFound, AccountNotActive, InvalidAmount, InsufficientFunds, SameParty
        """
        action = f"apply_{entry_type.value}"
        try:
            value = self._validate_amount(amount)

            with self.storage.atomic():
                account = self._require_account(account_id)
                self._require_transactable(account)

                if entry_type == EntryType.TRANSFER:
                    result = self._transfer(account, destination_account_id, value, description)
                else:
                    if destination_account_id is not None:
                        raise InvalidInputError(
                            "Only transfers take a destination account", entity_id=account_id)
                    account, entry = self._post(account, entry_type, value, description)
                    result = TransactionResult(
                        entry=entry,
                        balance=account.balance,
                        status=f"{entry_type.value.capitalize()} of {value} applied"
                    )
        except EngineError as e:
            raise log_rejection(self.logger, e, action, f"account:{account_id}")

        log_action(
            self.logger, "info", result.status,
            action=action, resource=f"account:{account_id}",
            extra={"amount": str(value), "balance": str(result.balance)}
        )
        return result

    def credit(self, account_id: str, amount: Decimal, description: Optional[str] = None) -> TransactionResult:
        return self.apply_transaction(account_id, EntryType.CREDIT, amount, description=description)

    def debit(self, account_id: str, amount: Decimal, description: Optional[str] = None) -> TransactionResult:
        return self.apply_transaction(account_id, EntryType.DEBIT, amount, description=description)

    def transfer(self, source_account_id: str, destination_account_id: str, amount: Decimal,
                 description: Optional[str] = None) -> TransactionResult:
        """Move funds between two accounts"""
        return self.apply_transaction(
            source_account_id, EntryType.TRANSFER, amount,
            destination_account_id=destination_account_id, description=description
        )

    def get_history(self, account_id: str) -> List[LedgerEntry]:
        """
        Ledger entries for an account, oldest first

        Raises:
            AccountNotFound
        """
        self._require_account(account_id)
        entries = [self._entry_from_dict(data)
                   for data in self.storage.find(self.entries_table, {"account_id": account_id})]
        entries.sort(key=lambda e: e.sequence)
        return entries

    def update_status(self, account_id: str, new_status: AccountStatus, reason: str) -> Account:
        """Change account status; closed accounts stay closed"""
        try:
            with self.storage.atomic():
                account = self._require_account(account_id)
                if account.status == AccountStatus.CLOSED:
                    raise InvalidTransition(f"Account {account_id} is closed", entity_id=account_id)
                if new_status == AccountStatus.CLOSED and not account.balance.is_zero():
                    raise InvalidTransition(
                        f"Account {account_id} has a non-zero balance and cannot be closed",
                        entity_id=account_id, amount=account.balance
                    )

                old_status = account.status
                account.status = new_status
                if new_status == AccountStatus.CLOSED:
                    account.closed_at = datetime.now(timezone.utc)
                self._save_account(account)

                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_STATUS_CHANGED,
                    entity_type="account",
                    entity_id=account.id,
                    metadata={"old_status": old_status.value, "new_status": new_status.value,
                              "reason": reason}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "update_account_status", f"account:{account_id}")

        log_action(
            self.logger, "info", f"Account status changed to {new_status.value}",
            action="update_account_status", resource=f"account:{account_id}",
            extra={"old_status": old_status.value, "reason": reason}
        )
        return account

    def close_account(self, account_id: str, reason: str) -> Account:
        """Close an account; the balance must be zero"""
        return self.update_status(account_id, AccountStatus.CLOSED, reason)

    def _transfer(self, source: Account, destination_account_id: Optional[str], value: Money,
                  description: Optional[str]) -> TransactionResult:
        if not destination_account_id:
            raise InvalidInputError("Transfer requires a destination account", entity_id=source.id)
        if destination_account_id == source.id:
            raise SameParty("Cannot transfer to the same account", entity_id=source.id, amount=value)

        destination = self._require_account(destination_account_id)
        self._require_transactable(destination)

        transfer_id = str(uuid.uuid4())
        source, outgoing = self._post(source, EntryType.TRANSFER, value, description,
                            transfer_id=transfer_id, counterparty=destination.id, outgoing=True)
        destination, incoming = self._post(destination, EntryType.TRANSFER, value, description,
                                 transfer_id=transfer_id, counterparty=source.id, outgoing=False)

        return TransactionResult(
            entry=outgoing,
            balance=source.balance,
            status=f"Transfer of {value} to {destination.id} applied",
            counterpart_entry=incoming,
            counterpart_balance=destination.balance
        )

    def _post(self, account: Account, entry_type: EntryType, value: Money,
              description: Optional[str], transfer_id: Optional[str] = None,
              counterparty: Optional[str] = None, outgoing: bool = False) -> Tuple[Account, LedgerEntry]:
        """Write the new balance and its entry; caller holds the atomic scope"""
        before = account.balance
        is_debit = entry_type == EntryType.DEBIT or (entry_type == EntryType.TRANSFER and outgoing)

        if is_debit:
            after = before - value
            if after < account.minimum_balance:
                raise InsufficientFunds(
                    f"Insufficient funds in account {account.id}: balance {before}, "
                    f"requested {value}, minimum balance {account.minimum_balance}",
                    entity_id=account.id, amount=value
                )
        else:
            after = before + value

        now = datetime.now(timezone.utc)
        account.entry_count += 1
        entry = LedgerEntry(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            account_id=account.id,
            entry_type=entry_type,
            amount=value,
            balance_before=before,
            balance_after=after,
            sequence=account.entry_count,
            description=description,
            transfer_id=transfer_id,
            counterparty_account_id=counterparty
        )

        account.balance = after
        self._save_account(account)
        self.storage.save(self.entries_table, entry.id, entry.to_dict())

        self.audit_trail.log_event(
            event_type=AuditEventType.LEDGER_ENTRY_POSTED,
            entity_type="account",
            entity_id=account.id,
            metadata={
                "entry_id": entry.id,
                "entry_type": entry_type.value,
                "amount": value,
                "balance_before": before,
                "balance_after": after,
                "transfer_id": transfer_id
            }
        )
        return account, entry

    def _validate_amount(self, amount) -> Money:
        try:
            raw = to_decimal(amount)
        except (TypeError, ValueError):
            raise InvalidAmount(f"Invalid amount: {amount!r}")
        if not raw.is_finite() or raw <= 0:
            raise InvalidAmount("Amount must be positive", amount=raw)
        value = Money(raw)
        if not value.is_positive():
            raise InvalidAmount("Amount rounds to zero", amount=raw)
        return value

    def _require_account(self, account_id: str) -> Account:
        account = self.get_account(account_id)
        if not account:
            raise AccountNotFound(f"Account {account_id} not found", entity_id=account_id)
        return account

    def _require_transactable(self, account: Account) -> None:
        if not account.is_active:
            raise AccountNotActive(
                f"Account {account.id} is not active (status: {account.status.value})",
                entity_id=account.id
            )

    def _generate_account_number(self, account_type: AccountType, account_id: str) -> str:
        prefix = {
            AccountType.SAVINGS: "SAV",
            AccountType.CURRENT: "CUR",
            AccountType.FIXED_DEPOSIT: "FDA",
            AccountType.RECURRING_DEPOSIT: "RDA",
            AccountType.LOAN: "LNA",
            AccountType.DEMAT: "DMT",
        }[account_type]
        return f"{prefix}{account_id.replace('-', '')[:12].upper()}"

    def _save_account(self, account: Account) -> None:
        """Persist with an optimistic version check"""
        account.updated_at = datetime.now(timezone.utc)
        account.version += 1
        self.storage.save(self.table_name, account.id, account.to_dict(),
                          expected_version=account.version - 1)

    def _account_from_dict(self, data: Dict) -> Account:
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_number=data['account_number'],
            owner_id=data['owner_id'],
            account_type=AccountType(data['account_type']),
            balance=Money(Decimal(data['balance'])),
            minimum_balance=Money(Decimal(data['minimum_balance'])),
            interest_rate=Decimal(data['interest_rate']),
            status=AccountStatus(data['status']),
            entry_count=data.get('entry_count', 0),
            version=data.get('version', 1),
            closed_at=datetime.fromisoformat(data['closed_at']) if data.get('closed_at') else None
        )

    def _entry_from_dict(self, data: Dict) -> LedgerEntry:
        return LedgerEntry(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            entry_type=EntryType(data['entry_type']),
            amount=Money(Decimal(data['amount'])),
            balance_before=Money(Decimal(data['balance_before'])),
            balance_after=Money(Decimal(data['balance_after'])),
            sequence=data['sequence'],
            description=data.get('description'),
            transfer_id=data.get('transfer_id'),
            counterparty_account_id=data.get('counterparty_account_id')
        )
