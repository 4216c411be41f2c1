"""
Share Registry Module

Records member share ownership. A member's share balance is the signed
sum of their ShareTransaction history. ShareHolding rows are face-value
lots kept in step with that history in the same atomic scope: transfers
and redemptions consume a member's lots oldest first.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple
from enum import Enum
import uuid

from .money import Money, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import MemberRegistry
from .results import ShareResult, ShareTransferResult
from .errors import (
    EngineError, InsufficientShares, InvalidAmount, InvalidInputError, SameParty
)
from .logging_config import get_logger, log_action, log_rejection


class ShareType(Enum):
    ORDINARY = "ordinary"
    PREFERENCE = "preference"
    BONUS = "bonus"
    RIGHTS = "rights"


class ShareStatus(Enum):
    """Holding lot states"""
    ACTIVE = "active"
    TRANSFERRED = "transferred"    # Fully moved to another member
    REDEEMED = "redeemed"          # Fully bought back
    SUSPENDED = "suspended"
    PENDING = "pending"


class ShareTransactionType(Enum):
    PURCHASE = "purchase"
    TRANSFER = "transfer"
    REDEMPTION = "redemption"
    DIVIDEND = "dividend"
    BONUS_ISSUE = "bonus_issue"


@dataclass
class ShareHolding(StorageRecord):
    """Lot of shares of one type and face value held by a member"""
    certificate_number: str
    member_id: str
    share_type: ShareType
    number_of_shares: int
    share_value: Money
    total_amount: Money
    status: ShareStatus = ShareStatus.ACTIVE
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == ShareStatus.ACTIVE


@dataclass
class ShareTransaction(StorageRecord):
    """Immutable signed share movement"""
    member_id: str
    holding_id: str
    share_type: ShareType
    transaction_type: ShareTransactionType
    number_of_shares: int
    amount: Money
    share_value: Money
    transaction_date: datetime
    counterparty_member_id: Optional[str] = None
    transfer_id: Optional[str] = None


@dataclass
class ShareholderPosition:
    """A member's net position as of a date"""
    member_id: str
    number_of_shares: int
    nominal_value: Money


class ShareRegistry:
    """
    Allocates, transfers and redeems member shares
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 member_registry: MemberRegistry):
        self.storage = storage
        self.audit_trail = audit_trail
        self.members = member_registry
        self.holdings_table = "share_holdings"
        self.transactions_table = "share_transactions"
        self.logger = get_logger("coop_banking.shares")

    def allocate(
        self,
        member_id: str,
        share_type: ShareType,
        number_of_shares: int,
        share_value: Decimal,
        transaction_date: Optional[datetime] = None
    ) -> ShareResult:
        """
        Allocate new shares to an active member

        Creates a holding lot and a purchase transaction for
        number_of_shares x share_value.

        Raises:
            MemberNotFound, MemberInactive, InvalidInputError
        """
        return self._issue(member_id, share_type, number_of_shares, share_value,
                           ShareTransactionType.PURCHASE, transaction_date)

    def issue_bonus(
        self,
        member_id: str,
        number_of_shares: int,
        share_value: Decimal,
        transaction_date: Optional[datetime] = None
    ) -> ShareResult:
        """Issue bonus shares; nothing is paid for them"""
        return self._issue(member_id, ShareType.BONUS, number_of_shares, share_value,
                           ShareTransactionType.BONUS_ISSUE, transaction_date)

    def transfer(
        self,
        from_member_id: str,
        to_member_id: str,
        number_of_shares: int,
        price: Decimal,
        share_type: Optional[ShareType] = None,
        transaction_date: Optional[datetime] = None
    ) -> ShareTransferResult:
        """
        Move shares between two active members

        Both sides commit together: for every source lot consumed the source
        gets a negative transfer transaction and the destination a positive
        one plus a new lot at the same face value. The price is apportioned
        across lots by share count.

        Args:
            from_member_id: Selling member
            to_member_id: Buying member
            number_of_shares: Shares to move
            price: Total consideration for the shares
            share_type: Restrict to one share type (all types when None)
            transaction_date: Date of the transfer (defaults to now). Must not be
                in the future or before the seller's latest share transaction.

        Raises:
            MemberNotFound, MemberInactive, SameParty, InsufficientShares, InvalidInputError
        """
        try:
            requested = self._movement_date(transaction_date)
            self._validate_count(number_of_shares)
            consideration = Money.of(to_decimal(price))
            if consideration.is_negative():
                raise InvalidAmount("Price cannot be negative", amount=consideration)
            if from_member_id == to_member_id:
                raise SameParty("Cannot transfer shares to the same member", entity_id=from_member_id)

            with self.storage.atomic():
                self.members.require_active(from_member_id)
                self.members.require_active(to_member_id)
                when = self._stamp_outgoing(from_member_id, requested)

                consumed = self._consume_lots(from_member_id, number_of_shares, share_type,
                                              ShareStatus.TRANSFERRED)
                transfer_id = str(uuid.uuid4())
                transactions = []
                apportioned = Money.zero()

                for index, (lot, taken) in enumerate(consumed):
                    if index == len(consumed) - 1:
                        lot_price = consideration - apportioned
                    else:
                        lot_price = Money(consideration.amount * taken / number_of_shares)
                    apportioned = apportioned + lot_price

                    incoming_lot = self._new_holding(to_member_id, lot.share_type, taken, lot.share_value)
                    transactions.append(self._record(
                        from_member_id, lot, ShareTransactionType.TRANSFER, -taken, -lot_price, when,
                        counterparty=to_member_id, transfer_id=transfer_id
                    ))
                    transactions.append(self._record(
                        to_member_id, incoming_lot, ShareTransactionType.TRANSFER, taken, lot_price, when,
                        counterparty=from_member_id, transfer_id=transfer_id
                    ))

                self.audit_trail.log_event(
                    event_type=AuditEventType.SHARES_TRANSFERRED,
                    entity_type="share_transfer",
                    entity_id=transfer_id,
                    metadata={
                        "from_member_id": from_member_id,
                        "to_member_id": to_member_id,
                        "number_of_shares": number_of_shares,
                        "price": consideration,
                        "lots": [lot.id for lot, _ in consumed]
                    }
                )
                from_balance = self.get_share_balance(from_member_id, share_type)
                to_balance = self.get_share_balance(to_member_id, share_type)
        except EngineError as e:
            raise log_rejection(self.logger, e, "transfer_shares", f"member:{from_member_id}")

        log_action(
            self.logger, "info", f"Transferred {number_of_shares} shares",
            action="transfer_shares", resource=f"share_transfer:{transfer_id}",
            extra={"from_member_id": from_member_id, "to_member_id": to_member_id,
                   "price": str(consideration)}
        )
        return ShareTransferResult(
            from_member_id=from_member_id,
            to_member_id=to_member_id,
            number_of_shares=number_of_shares,
            price=consideration,
            transactions=transactions,
            from_balance=from_balance,
            to_balance=to_balance,
            status=f"Transferred {number_of_shares} shares"
        )

    def redeem(
        self,
        member_id: str,
        number_of_shares: int,
        share_type: Optional[ShareType] = None,
        transaction_date: Optional[datetime] = None
    ) -> ShareResult:
        """
        Buy back shares from a member at face value

        Raises:
            MemberNotFound, InsufficientShares, InvalidInputError
        """
        try:
            requested = self._movement_date(transaction_date)
            self._validate_count(number_of_shares)
            with self.storage.atomic():
                self.members.require_member(member_id)
                when = self._stamp_outgoing(member_id, requested)
                consumed = self._consume_lots(member_id, number_of_shares, share_type,
                                              ShareStatus.REDEEMED)
                transactions = [
                    self._record(member_id, lot, ShareTransactionType.REDEMPTION, -taken,
                                 -(lot.share_value * taken), when)
                    for lot, taken in consumed
                ]
                self.audit_trail.log_event(
                    event_type=AuditEventType.SHARES_REDEEMED,
                    entity_type="member",
                    entity_id=member_id,
                    metadata={"number_of_shares": number_of_shares,
                              "lots": [lot.id for lot, _ in consumed]}
                )
                balance = self.get_share_balance(member_id, share_type)
        except EngineError as e:
            raise log_rejection(self.logger, e, "redeem_shares", f"member:{member_id}")

        log_action(
            self.logger, "info", f"Redeemed {number_of_shares} shares",
            action="redeem_shares", resource=f"member:{member_id}"
        )
        return ShareResult(
            holding=consumed[-1][0],
            transaction=transactions[-1],
            balance=balance,
            status=f"Redeemed {number_of_shares} shares"
        )

    def get_share_balance(self, member_id: str, share_type: Optional[ShareType] = None) -> int:
        """Net shares held: the signed sum of the member's transactions"""
        return sum(t.number_of_shares for t in self.get_transactions(member_id)
                   if share_type is None or t.share_type == share_type)

    def get_holdings(self, member_id: str, include_inactive: bool = False) -> List[ShareHolding]:
        """Holding lots for a member, oldest first"""
        holdings = [self._holding_from_dict(data) for data in
                    self.storage.find(self.holdings_table, {"member_id": member_id})]
        if not include_inactive:
            holdings = [h for h in holdings if h.is_active]
        return holdings

    def get_transactions(self, member_id: str,
                         transaction_type: Optional[ShareTransactionType] = None) -> List[ShareTransaction]:
        """Share transactions for a member in recording order"""
        filters = {"member_id": member_id}
        if transaction_type is not None:
            filters["transaction_type"] = transaction_type.value
        return [self._transaction_from_dict(data) for data in
                self.storage.find(self.transactions_table, filters)]

    def shareholders_as_of(self, record_date: date) -> List[ShareholderPosition]:
        """
        Members holding shares at the end of record_date

        Positions are rebuilt from the transactions dated on or before
        record_date. nominal_value is the face value of the position.
        """
        shares: Dict[str, int] = {}
        nominal: Dict[str, Decimal] = {}
        for data in self.storage.load_all(self.transactions_table):
            transaction = self._transaction_from_dict(data)
            if transaction.transaction_date.date() > record_date:
                continue
            member_id = transaction.member_id
            shares[member_id] = shares.get(member_id, 0) + transaction.number_of_shares
            nominal[member_id] = (nominal.get(member_id, Decimal('0'))
                                  + transaction.share_value.amount * transaction.number_of_shares)

        return [
            ShareholderPosition(member_id=member_id, number_of_shares=count,
                                nominal_value=Money(nominal[member_id]))
            for member_id, count in shares.items()
            if count > 0
        ]

    def total_shares_outstanding(self) -> int:
        return sum(data['number_of_shares'] for data in self.storage.load_all(self.transactions_table))

    def get_stats(self) -> Dict:
        """
        Register-wide statistics over every holding lot

        Exhausted lots count towards by_status with zero shares.
        total_members counts members with shares in an active lot.
        """
        stats = {
            "total_shares": 0,
            "total_value": Money.zero(),
            "active_shares": 0,
            "total_members": 0,
            "by_type": {},
            "by_status": {}
        }
        holders = set()

        for data in self.storage.load_all(self.holdings_table):
            holding = self._holding_from_dict(data)
            stats["total_shares"] += holding.number_of_shares
            stats["total_value"] = stats["total_value"] + holding.total_amount
            if holding.is_active:
                stats["active_shares"] += holding.number_of_shares
                if holding.number_of_shares > 0:
                    holders.add(holding.member_id)

            by_type = stats["by_type"].setdefault(
                holding.share_type.value, {"count": 0, "total_shares": 0, "total_value": Money.zero()})
            by_type["count"] += 1
            by_type["total_shares"] += holding.number_of_shares
            by_type["total_value"] = by_type["total_value"] + holding.total_amount

            by_status = stats["by_status"].setdefault(holding.status.value, {"count": 0, "total_shares": 0})
            by_status["count"] += 1
            by_status["total_shares"] += holding.number_of_shares

        stats["total_members"] = len(holders)
        return stats

    def _issue(self, member_id: str, share_type: ShareType, number_of_shares: int,
               share_value: Decimal, transaction_type: ShareTransactionType,
               transaction_date: Optional[datetime]) -> ShareResult:
        try:
            when = self._movement_date(transaction_date) or datetime.now(timezone.utc)
            self._validate_count(number_of_shares)
            face_value = Money.of(to_decimal(share_value))
            if not face_value.is_positive():
                raise InvalidAmount("Share value must be positive", amount=face_value)

            with self.storage.atomic():
                self.members.require_active(member_id)
                holding = self._new_holding(member_id, share_type, number_of_shares, face_value)
                amount = (face_value * number_of_shares
                          if transaction_type == ShareTransactionType.PURCHASE else Money.zero())
                transaction = self._record(member_id, holding, transaction_type,
                                           number_of_shares, amount, when)
                self.audit_trail.log_event(
                    event_type=AuditEventType.SHARES_ALLOCATED,
                    entity_type="member",
                    entity_id=member_id,
                    metadata={
                        "holding_id": holding.id,
                        "share_type": share_type.value,
                        "number_of_shares": number_of_shares,
                        "share_value": face_value,
                        "transaction_type": transaction_type.value
                    }
                )
                balance = self.get_share_balance(member_id)
        except EngineError as e:
            raise log_rejection(self.logger, e, "allocate_shares", f"member:{member_id}")

        log_action(
            self.logger, "info", f"Allocated {number_of_shares} {share_type.value} shares",
            action="allocate_shares", resource=f"share_holding:{holding.id}",
            extra={"member_id": member_id, "transaction_type": transaction_type.value}
        )
        return ShareResult(
            holding=holding,
            transaction=transaction,
            balance=balance,
            status=f"Allocated {number_of_shares} shares"
        )

    def _consume_lots(self, member_id: str, number_of_shares: int,
                      share_type: Optional[ShareType],
                      exhausted_status: ShareStatus) -> List[Tuple[ShareHolding, int]]:
        """Take shares from a member's active lots oldest first; caller holds the atomic scope"""
        lots = [lot for lot in self.get_holdings(member_id)
                if share_type is None or lot.share_type == share_type]
        available = sum(lot.number_of_shares for lot in lots)
        if available < number_of_shares:
            raise InsufficientShares(
                f"Member {member_id} holds {available} shares, {number_of_shares} requested",
                entity_id=member_id, amount=number_of_shares
            )

        consumed = []
        remaining = number_of_shares
        for lot in lots:
            if remaining == 0:
                break
            taken = min(lot.number_of_shares, remaining)
            lot.number_of_shares -= taken
            lot.total_amount = lot.share_value * lot.number_of_shares
            if lot.number_of_shares == 0:
                lot.status = exhausted_status
            self._save_holding(lot)
            consumed.append((lot, taken))
            remaining -= taken
        return consumed

    def _new_holding(self, member_id: str, share_type: ShareType, number_of_shares: int,
                     share_value: Money) -> ShareHolding:
        now = datetime.now(timezone.utc)
        holding_id = str(uuid.uuid4())
        holding = ShareHolding(
            id=holding_id,
            created_at=now,
            updated_at=now,
            certificate_number=f"SH{holding_id.replace('-', '')[:10].upper()}",
            member_id=member_id,
            share_type=share_type,
            number_of_shares=number_of_shares,
            share_value=share_value,
            total_amount=share_value * number_of_shares
        )
        self.storage.save(self.holdings_table, holding.id, holding.to_dict(), expected_version=0)
        return holding

    def _record(self, member_id: str, holding: ShareHolding,
                transaction_type: ShareTransactionType, number_of_shares: int,
                amount: Money, when: datetime, counterparty: Optional[str] = None,
                transfer_id: Optional[str] = None) -> ShareTransaction:
        now = datetime.now(timezone.utc)
        transaction = ShareTransaction(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            member_id=member_id,
            holding_id=holding.id,
            share_type=holding.share_type,
            transaction_type=transaction_type,
            number_of_shares=number_of_shares,
            amount=amount,
            share_value=holding.share_value,
            transaction_date=when,
            counterparty_member_id=counterparty,
            transfer_id=transfer_id
        )
        self.storage.save(self.transactions_table, transaction.id, transaction.to_dict())
        return transaction

    def _movement_date(self, transaction_date: Optional[datetime]) -> Optional[datetime]:
        if transaction_date is None:
            return None
        if transaction_date.tzinfo is None:
            transaction_date = transaction_date.replace(tzinfo=timezone.utc)
        if transaction_date > datetime.now(timezone.utc):
            raise InvalidInputError(
                f"Transaction date {transaction_date.isoformat()} is in the future")
        return transaction_date

    def _stamp_outgoing(self, member_id: str, when: Optional[datetime]) -> datetime:
        """
        Date an outgoing movement; caller holds the atomic scope

        Undated movements are stamped now. An explicit date may not precede
        the member's latest share transaction, which keeps every record-date
        position non-negative.
        """
        if when is None:
            return datetime.now(timezone.utc)
        dates = [t.transaction_date for t in self.get_transactions(member_id)]
        if dates and when < max(dates):
            raise InvalidInputError(
                f"Transaction date {when.isoformat()} precedes member {member_id}'s "
                f"latest share transaction on {max(dates).isoformat()}",
                entity_id=member_id
            )
        return when

    def _validate_count(self, number_of_shares: int) -> None:
        if not isinstance(number_of_shares, int) or isinstance(number_of_shares, bool) or number_of_shares <= 0:
            raise InvalidInputError(f"Number of shares must be a positive integer, got {number_of_shares!r}")

    def _save_holding(self, holding: ShareHolding) -> None:
        holding.updated_at = datetime.now(timezone.utc)
        holding.version += 1
        self.storage.save(self.holdings_table, holding.id, holding.to_dict(),
                          expected_version=holding.version - 1)

    def _holding_from_dict(self, data: Dict) -> ShareHolding:
        return ShareHolding(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            certificate_number=data['certificate_number'],
            member_id=data['member_id'],
            share_type=ShareType(data['share_type']),
            number_of_shares=data['number_of_shares'],
            share_value=Money(Decimal(data['share_value'])),
            total_amount=Money(Decimal(data['total_amount'])),
            status=ShareStatus(data['status']),
            version=data.get('version', 1)
        )

    def _transaction_from_dict(self, data: Dict) -> ShareTransaction:
        return ShareTransaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            member_id=data['member_id'],
            holding_id=data['holding_id'],
            share_type=ShareType(data['share_type']),
            transaction_type=ShareTransactionType(data['transaction_type']),
            number_of_shares=data['number_of_shares'],
            amount=Money(Decimal(data['amount'])),
            share_value=Money(Decimal(data['share_value'])),
            transaction_date=datetime.fromisoformat(data['transaction_date']),
            counterparty_member_id=data.get('counterparty_member_id'),
            transfer_id=data.get('transfer_id')
        )
