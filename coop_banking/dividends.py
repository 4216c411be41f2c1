"""
Dividend Engine

Declares dividends per (year, type) for the issuing bank, gates them
through approval, and distributes pro-rata payouts to every active member
holding shares on the record date.

State machine: pending -> declared -> approved -> paid, with cancellation
allowed from any state except paid.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .money import Money, to_decimal
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import MemberRegistry
from .shares import ShareRegistry
from .results import DistributionResult
from .errors import (
    EngineError, DividendNotFound, DuplicateDividend, InvalidInputError, InvalidTransition
)
from .logging_config import get_logger, log_action, log_rejection


class DividendType(Enum):
    ANNUAL = "annual"
    INTERIM = "interim"
    BONUS = "bonus"
    SPECIAL = "special"


class DividendStatus(Enum):
    PENDING = "pending"
    DECLARED = "declared"
    APPROVED = "approved"
    PAID = "paid"
    CANCELLED = "cancelled"


class PaymentStatus(Enum):
    PENDING = "pending"
    PAID = "paid"


@dataclass
class Dividend(StorageRecord):
    """Dividend declared for a period"""
    dividend_number: str
    bank_id: str
    year: int
    dividend_type: DividendType
    rate_percent: Decimal
    record_date: date
    payment_date: date
    status: DividendStatus
    total_amount: Money = field(default_factory=Money.zero)
    total_members: int = 0
    description: Optional[str] = None
    approved_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    version: int = 1


@dataclass
class DividendDistribution(StorageRecord):
    """One member's payout from a dividend"""
    dividend_id: str
    member_id: str
    number_of_shares_at_record_date: int
    nominal_value: Money
    payout_amount: Money
    payment_status: PaymentStatus = PaymentStatus.PENDING


class DividendEngine:
    """
    Declares, approves, distributes and cancels dividends
    """

    def __init__(self, storage: StorageInterface, audit_trail: AuditTrail,
                 member_registry: MemberRegistry, share_registry: ShareRegistry,
                 bank_id: str = "default"):
        self.storage = storage
        self.audit_trail = audit_trail
        self.members = member_registry
        self.shares = share_registry
        self.bank_id = bank_id
        self.table_name = "dividends"
        self.distributions_table = "dividend_distributions"
        self.logger = get_logger("coop_banking.dividends")

    def declare(
        self,
        year: int,
        dividend_type: DividendType,
        rate_percent: Decimal,
        record_date: date,
        payment_date: date,
        description: Optional[str] = None,
        draft: bool = False
    ) -> Dividend:
        """
        Declare a dividend for a period

        Args:
            year: Financial year
            dividend_type: Kind of dividend
            rate_percent: Payout as a percentage of share face value
            record_date: Shareholders on this date are eligible
            payment_date: Date the dividend is payable
            description: Free text
            draft: Create as pending; confirm_declaration() declares it

        Raises:
            DuplicateDividend: a non-cancelled dividend exists for (year, type)
        """
        try:
            rate = to_decimal(rate_percent)
            if rate < 0 or rate > 100:
                raise InvalidInputError(f"Dividend rate must be between 0 and 100, got {rate}")
            if payment_date < record_date:
                raise InvalidInputError("Payment date cannot precede the record date")

            with self.storage.atomic():
                existing = [d for d in self._find({"bank_id": self.bank_id, "year": year,
                                                   "dividend_type": dividend_type.value})
                            if d.status != DividendStatus.CANCELLED]
                if existing:
                    raise DuplicateDividend(
                        f"Dividend for {year} ({dividend_type.value}) already exists",
                        entity_id=existing[0].id
                    )

                now = datetime.now(timezone.utc)
                dividend_id = str(uuid.uuid4())
                dividend = Dividend(
                    id=dividend_id,
                    created_at=now,
                    updated_at=now,
                    dividend_number=f"DIV{year}{dividend_id.replace('-', '')[:8].upper()}",
                    bank_id=self.bank_id,
                    year=year,
                    dividend_type=dividend_type,
                    rate_percent=rate,
                    record_date=record_date,
                    payment_date=payment_date,
                    status=DividendStatus.PENDING if draft else DividendStatus.DECLARED,
                    description=description
                )
                self.storage.save(self.table_name, dividend.id, dividend.to_dict(), expected_version=0)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DIVIDEND_DECLARED,
                    entity_type="dividend",
                    entity_id=dividend.id,
                    metadata={
                        "year": year,
                        "dividend_type": dividend_type.value,
                        "rate_percent": rate,
                        "record_date": record_date,
                        "status": dividend.status.value
                    }
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "declare_dividend", f"dividend:{year}:{dividend_type.value}")

        log_action(
            self.logger, "info", f"Dividend {dividend.status.value}",
            action="declare_dividend", resource=f"dividend:{dividend.id}",
            extra={"year": year, "dividend_type": dividend_type.value}
        )
        return dividend

    def confirm_declaration(self, dividend_id: str) -> Dividend:
        """pending -> declared"""
        return self._transition(dividend_id, DividendStatus.PENDING, DividendStatus.DECLARED,
                                AuditEventType.DIVIDEND_DECLARED, "confirm_dividend")

    def approve(self, dividend_id: str) -> Dividend:
        """declared -> approved"""
        return self._transition(dividend_id, DividendStatus.DECLARED, DividendStatus.APPROVED,
                                AuditEventType.DIVIDEND_APPROVED, "approve_dividend")

    def distribute(self, dividend_id: str) -> DistributionResult:
        """
        Pay out an approved dividend

        The status check, every distribution row and the move to paid are
        one atomic write, so a second call (concurrent or later) finds the
        dividend paid and fails without writing rows.

        Raises:
            DividendNotFound, InvalidTransition
        """
        try:
            with self.storage.atomic():
                dividend = self._require_dividend(dividend_id)
                if dividend.status != DividendStatus.APPROVED:
                    raise InvalidTransition(
                        f"Dividend {dividend_id} is {dividend.status.value}, expected approved",
                        entity_id=dividend_id
                    )

                now = datetime.now(timezone.utc)
                distributions = []
                total = Money.zero()
                for position in self.shares.shareholders_as_of(dividend.record_date):
                    member = self.members.get_member(position.member_id)
                    if member is None or not member.is_active:
                        continue

                    payout = Money(position.nominal_value.amount * dividend.rate_percent / Decimal('100'))
                    distribution = DividendDistribution(
                        id=str(uuid.uuid4()),
                        created_at=now,
                        updated_at=now,
                        dividend_id=dividend.id,
                        member_id=position.member_id,
                        number_of_shares_at_record_date=position.number_of_shares,
                        nominal_value=position.nominal_value,
                        payout_amount=payout
                    )
                    self.storage.save(self.distributions_table, distribution.id, distribution.to_dict())
                    distributions.append(distribution)
                    total = total + payout

                dividend.status = DividendStatus.PAID
                dividend.total_amount = total
                dividend.total_members = len(distributions)
                dividend.paid_at = now
                self._save_dividend(dividend)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DIVIDEND_DISTRIBUTED,
                    entity_type="dividend",
                    entity_id=dividend.id,
                    metadata={"total_amount": total, "total_members": len(distributions)}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "distribute_dividend", f"dividend:{dividend_id}")

        log_action(
            self.logger, "info", f"Dividend distributed to {len(distributions)} members",
            action="distribute_dividend", resource=f"dividend:{dividend_id}",
            extra={"total_amount": str(total)}
        )
        return DistributionResult(
            dividend=dividend,
            distributions=distributions,
            total_amount=total,
            status=f"Distributed {total} to {len(distributions)} members"
        )

    def cancel(self, dividend_id: str, reason: str) -> Dividend:
        """Cancel a dividend that has not been paid"""
        try:
            with self.storage.atomic():
                dividend = self._require_dividend(dividend_id)
                if dividend.status in (DividendStatus.PAID, DividendStatus.CANCELLED):
                    raise InvalidTransition(
                        f"Dividend {dividend_id} is {dividend.status.value} and cannot be cancelled",
                        entity_id=dividend_id
                    )
                old_status = dividend.status
                dividend.status = DividendStatus.CANCELLED
                dividend.cancelled_at = datetime.now(timezone.utc)
                dividend.cancellation_reason = reason
                self._save_dividend(dividend)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DIVIDEND_CANCELLED,
                    entity_type="dividend",
                    entity_id=dividend.id,
                    metadata={"old_status": old_status.value, "reason": reason}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "cancel_dividend", f"dividend:{dividend_id}")

        log_action(
            self.logger, "info", "Dividend cancelled",
            action="cancel_dividend", resource=f"dividend:{dividend_id}",
            extra={"reason": reason}
        )
        return dividend

    def get_dividend(self, dividend_id: str) -> Optional[Dividend]:
        data = self.storage.load(self.table_name, dividend_id)
        if data:
            return self._dividend_from_dict(data)
        return None

    def get_distributions(self, dividend_id: str) -> List[DividendDistribution]:
        """Distribution rows for a dividend"""
        self._require_dividend(dividend_id)
        return [self._distribution_from_dict(data) for data in
                self.storage.find(self.distributions_table, {"dividend_id": dividend_id})]

    def list_dividends(
        self,
        year: Optional[int] = None,
        dividend_type: Optional[DividendType] = None,
        status: Optional[DividendStatus] = None
    ) -> List[Dividend]:
        """Dividends for the bank, optionally filtered"""
        filters = {"bank_id": self.bank_id}
        if year is not None:
            filters["year"] = year
        if dividend_type is not None:
            filters["dividend_type"] = dividend_type.value
        if status is not None:
            filters["status"] = status.value
        return self._find(filters)

    def get_stats(self, year: Optional[int] = None) -> Dict:
        """Dividend counts and declared amounts grouped by status, type and year"""
        stats = {
            "total_dividends": 0,
            "total_amount": Money.zero(),
            "by_status": {},
            "by_type": {},
            "by_year": {}
        }
        for dividend in self.list_dividends(year=year):
            stats["total_dividends"] += 1
            stats["total_amount"] = stats["total_amount"] + dividend.total_amount
            for group, key in ((stats["by_status"], dividend.status.value),
                               (stats["by_type"], dividend.dividend_type.value),
                               (stats["by_year"], dividend.year)):
                bucket = group.setdefault(key, {"count": 0, "total_amount": Money.zero()})
                bucket["count"] += 1
                bucket["total_amount"] = bucket["total_amount"] + dividend.total_amount
        return stats

    def _transition(self, dividend_id: str, from_status: DividendStatus, to_status: DividendStatus,
                    event_type: AuditEventType, action: str) -> Dividend:
        try:
            with self.storage.atomic():
                dividend = self._require_dividend(dividend_id)
                if dividend.status != from_status:
                    raise InvalidTransition(
                        f"Dividend {dividend_id} is {dividend.status.value}, expected {from_status.value}",
                        entity_id=dividend_id
                    )
                dividend.status = to_status
                if to_status == DividendStatus.APPROVED:
                    dividend.approved_at = datetime.now(timezone.utc)
                self._save_dividend(dividend)

                self.audit_trail.log_event(
                    event_type=event_type,
                    entity_type="dividend",
                    entity_id=dividend.id,
                    metadata={"old_status": from_status.value, "new_status": to_status.value}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, action, f"dividend:{dividend_id}")

        log_action(self.logger, "info", f"Dividend {to_status.value}",
                   action=action, resource=f"dividend:{dividend_id}")
        return dividend

    def _find(self, filters: Dict) -> List[Dividend]:
        return [self._dividend_from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def _require_dividend(self, dividend_id: str) -> Dividend:
        dividend = self.get_dividend(dividend_id)
        if not dividend:
            raise DividendNotFound(f"Dividend {dividend_id} not found", entity_id=dividend_id)
        return dividend

    def _save_dividend(self, dividend: Dividend) -> None:
        dividend.updated_at = datetime.now(timezone.utc)
        dividend.version += 1
        self.storage.save(self.table_name, dividend.id, dividend.to_dict(),
                          expected_version=dividend.version - 1)

    def _dividend_from_dict(self, data: Dict) -> Dividend:
        def _dt(key):
            return datetime.fromisoformat(data[key]) if data.get(key) else None

        return Dividend(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            dividend_number=data['dividend_number'],
            bank_id=data['bank_id'],
            year=data['year'],
            dividend_type=DividendType(data['dividend_type']),
            rate_percent=Decimal(data['rate_percent']),
            record_date=date.fromisoformat(data['record_date']),
            payment_date=date.fromisoformat(data['payment_date']),
            status=DividendStatus(data['status']),
            total_amount=Money(Decimal(data['total_amount'])),
            total_members=data.get('total_members', 0),
            description=data.get('description'),
            approved_at=_dt('approved_at'),
            paid_at=_dt('paid_at'),
            cancelled_at=_dt('cancelled_at'),
            cancellation_reason=data.get('cancellation_reason'),
            version=data.get('version', 1)
        )

    def _distribution_from_dict(self, data: Dict) -> DividendDistribution:
        return DividendDistribution(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            dividend_id=data['dividend_id'],
            member_id=data['member_id'],
            number_of_shares_at_record_date=data['number_of_shares_at_record_date'],
            nominal_value=Money(Decimal(data['nominal_value'])),
            payout_amount=Money(Decimal(data['payout_amount'])),
            payment_status=PaymentStatus(data['payment_status'])
        )
