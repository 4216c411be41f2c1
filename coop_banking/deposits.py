"""
Fixed Deposit Engine

Books fixed deposits with a quarterly-compounded maturity value and
drives them through maturity, premature closure and renewal. Every
status change is one-way.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .money import Money, to_decimal, compound_quarterly, add_months, whole_months_between
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import MemberRegistry
from .results import DepositResult
from .errors import (
    EngineError, DepositNotFound, NotActive, NotYetDue, InvalidAmount,
    InvalidInputError, InvalidTransition
)
from .logging_config import get_logger, log_action, log_rejection


class FixedDepositType(Enum):
    """Fixed deposit products"""
    REGULAR = "regular"
    SENIOR_CITIZEN = "senior_citizen"
    CUMULATIVE = "cumulative"
    NON_CUMULATIVE = "non_cumulative"


class DepositStatus(Enum):
    """Term deposit states"""
    PENDING = "pending"
    ACTIVE = "active"
    MATURED = "matured"
    PREMATURE_CLOSED = "premature_closed"
    RENEWED = "renewed"


@dataclass
class TermDeposit(StorageRecord):
    """
    Fixed deposit.

    maturity_date and maturity_amount are derived from principal, rate and
    tenure at booking. Premature closure overwrites maturity_amount with the
    amount actually disbursed.
    """
    deposit_number: str
    holder_id: str
    deposit_type: FixedDepositType
    principal_amount: Money
    interest_rate: Decimal
    tenure_months: int
    start_date: date
    maturity_date: date
    maturity_amount: Money
    status: DepositStatus
    auto_renewal: bool = False
    nominee_name: Optional[str] = None
    closed_on: Optional[date] = None
    penalty_rate_applied: Optional[Decimal] = None
    renewed_from_id: Optional[str] = None
    renewed_to_id: Optional[str] = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == DepositStatus.ACTIVE

    def is_due(self, as_of: date) -> bool:
        return as_of >= self.maturity_date


def maturity_value(principal: Decimal, rate_percent: Decimal, tenure_months: int) -> Money:
    """Full-term maturity value of a fixed deposit"""
    return compound_quarterly(principal, rate_percent, tenure_months)


class FixedDepositEngine:
    """
    Books and settles fixed deposits
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        member_registry: MemberRegistry,
        default_penalty_rate: Decimal = Decimal('1.00'),
        enforce_maturity_date: bool = True
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.members = member_registry
        self.default_penalty_rate = default_penalty_rate
        self.enforce_maturity_date = enforce_maturity_date
        self.table_name = "fixed_deposits"
        self.logger = get_logger("coop_banking.deposits")

    def book(
        self,
        holder_id: str,
        principal: Decimal,
        rate_percent: Decimal,
        tenure_months: int,
        start_date: Optional[date] = None,
        deposit_type: FixedDepositType = FixedDepositType.REGULAR,
        auto_renewal: bool = False,
        nominee_name: Optional[str] = None,
        activate: bool = True,
        renewed_from_id: Optional[str] = None
    ) -> TermDeposit:
        """
        Book a fixed deposit for an active member

        Args:
            holder_id: Depositing member
            principal: Amount deposited
            rate_percent: Annual rate in percent
            tenure_months: Term in months
            start_date: Start of the term (defaults to today)
            deposit_type: Product type
            auto_renewal: Renew automatically when processed at maturity
            nominee_name: Optional nominee
            activate: Book directly as active; otherwise pending until activate()

        Returns:
            The booked TermDeposit

        Raises:
            MemberNotFound, MemberInactive, InvalidAmount
        """
        try:
            principal_amount = Money.of(to_decimal(principal))
            rate = to_decimal(rate_percent)
            if not principal_amount.is_positive():
                raise InvalidAmount("Principal must be positive", amount=principal_amount)
            if rate < 0:
                raise InvalidInputError("Interest rate cannot be negative")
            if tenure_months <= 0:
                raise InvalidInputError("Tenure must be at least one month")

            start = start_date or date.today()
            now = datetime.now(timezone.utc)
            deposit_id = str(uuid.uuid4())
            deposit = TermDeposit(
                id=deposit_id,
                created_at=now,
                updated_at=now,
                deposit_number=f"FD{deposit_id.replace('-', '')[:12].upper()}",
                holder_id=holder_id,
                deposit_type=deposit_type,
                principal_amount=principal_amount,
                interest_rate=rate,
                tenure_months=tenure_months,
                start_date=start,
                maturity_date=add_months(start, tenure_months),
                maturity_amount=maturity_value(principal_amount.amount, rate, tenure_months),
                status=DepositStatus.ACTIVE if activate else DepositStatus.PENDING,
                auto_renewal=auto_renewal,
                nominee_name=nominee_name,
                renewed_from_id=renewed_from_id
            )

            with self.storage.atomic():
                self.members.require_active(holder_id)
                self.storage.save(self.table_name, deposit.id, deposit.to_dict(), expected_version=0)
                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_BOOKED,
                    entity_type="fixed_deposit",
                    entity_id=deposit.id,
                    metadata={
                        "holder_id": holder_id,
                        "principal_amount": principal_amount,
                        "interest_rate": rate,
                        "tenure_months": tenure_months,
                        "maturity_date": deposit.maturity_date,
                        "maturity_amount": deposit.maturity_amount,
                        "status": deposit.status.value
                    }
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "book_fixed_deposit", f"member:{holder_id}")

        log_action(
            self.logger, "info", "Fixed deposit booked",
            action="book_fixed_deposit", resource=f"fixed_deposit:{deposit.id}",
            extra={"deposit_number": deposit.deposit_number,
                   "maturity_amount": str(deposit.maturity_amount)}
        )
        return deposit

    def activate(self, deposit_id: str) -> TermDeposit:
        """Move a pending deposit to active"""
        try:
            with self.storage.atomic():
                deposit = self._require_deposit(deposit_id)
                if deposit.status != DepositStatus.PENDING:
                    raise InvalidTransition(
                        f"Deposit {deposit_id} is {deposit.status.value}, expected pending",
                        entity_id=deposit_id
                    )
                deposit.status = DepositStatus.ACTIVE
                self._save_deposit(deposit)
                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_ACTIVATED,
                    entity_type="fixed_deposit",
                    entity_id=deposit.id,
                    metadata={}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "activate_fixed_deposit", f"fixed_deposit:{deposit_id}")

        log_action(self.logger, "info", "Fixed deposit activated",
                   action="activate_fixed_deposit", resource=f"fixed_deposit:{deposit_id}")
        return deposit

    def mature(self, deposit_id: str, as_of: Optional[date] = None) -> DepositResult:
        """
        Mark an active deposit matured; the payout is the booked maturity amount

        Raises:
            DepositNotFound, NotActive, NotYetDue
        """
        as_of = as_of or date.today()
        try:
            with self.storage.atomic():
                deposit = self._require_active(deposit_id)
                if self.enforce_maturity_date and not deposit.is_due(as_of):
                    raise NotYetDue(
                        f"Deposit {deposit_id} matures on {deposit.maturity_date.isoformat()}",
                        entity_id=deposit_id
                    )
                deposit.status = DepositStatus.MATURED
                deposit.closed_on = as_of
                self._save_deposit(deposit)
                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_MATURED,
                    entity_type="fixed_deposit",
                    entity_id=deposit.id,
                    metadata={"maturity_amount": deposit.maturity_amount, "as_of": as_of}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "mature_fixed_deposit", f"fixed_deposit:{deposit_id}")

        log_action(
            self.logger, "info", "Fixed deposit matured",
            action="mature_fixed_deposit", resource=f"fixed_deposit:{deposit_id}",
            extra={"maturity_amount": str(deposit.maturity_amount)}
        )
        return DepositResult(
            deposit=deposit,
            payout=deposit.maturity_amount,
            status=f"Deposit matured; payout {deposit.maturity_amount}"
        )

    def close_prematurely(
        self,
        deposit_id: str,
        penalty_rate: Optional[Decimal] = None,
        as_of: Optional[date] = None
    ) -> DepositResult:
        """
        Close an active deposit before maturity

        The payout compounds the principal at max(0, rate - penalty_rate)
        over the whole months elapsed since start_date and replaces the
        deposit's maturity_amount.

        Args:
            deposit_id: Deposit to close
            penalty_rate: Percentage points taken off the rate (defaults to the configured rate)
            as_of: Closure date (defaults to today)

        Raises:
            DepositNotFound, NotActive, InvalidInputError
        """
        as_of = as_of or date.today()
        try:
            penalty = self._penalty_rate(penalty_rate, deposit_id)

            with self.storage.atomic():
                deposit = self._require_active(deposit_id)

                elapsed = min(whole_months_between(deposit.start_date, as_of), deposit.tenure_months)
                effective_rate = max(Decimal('0'), deposit.interest_rate - penalty)
                payout = compound_quarterly(deposit.principal_amount, effective_rate, elapsed)
                forfeited = compound_quarterly(deposit.principal_amount, deposit.interest_rate, elapsed) - payout

                deposit.status = DepositStatus.PREMATURE_CLOSED
                deposit.maturity_amount = payout
                deposit.penalty_rate_applied = penalty
                deposit.closed_on = as_of
                self._save_deposit(deposit)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_PREMATURE_CLOSED,
                    entity_type="fixed_deposit",
                    entity_id=deposit.id,
                    metadata={
                        "elapsed_months": elapsed,
                        "effective_rate": effective_rate,
                        "penalty_rate": penalty,
                        "payout": payout
                    }
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "close_fixed_deposit", f"fixed_deposit:{deposit_id}")

        log_action(
            self.logger, "info", "Fixed deposit closed prematurely",
            action="close_fixed_deposit", resource=f"fixed_deposit:{deposit_id}",
            extra={"elapsed_months": elapsed, "payout": str(payout)}
        )
        return DepositResult(
            deposit=deposit,
            payout=payout,
            penalty=forfeited,
            status=f"Deposit closed after {elapsed} month(s); payout {payout}"
        )

    def renew(
        self,
        deposit_id: str,
        as_of: Optional[date] = None,
        tenure_months: Optional[int] = None,
        rate_percent: Optional[Decimal] = None
    ) -> TermDeposit:
        """
        Roll a matured deposit into a new one

        The new deposit's principal is the old maturity amount; tenure and
        rate default to the old deposit's.
        """
        as_of = as_of or date.today()
        try:
            with self.storage.atomic():
                deposit = self._require_deposit(deposit_id)
                if deposit.status != DepositStatus.MATURED:
                    raise InvalidTransition(
                        f"Deposit {deposit_id} is {deposit.status.value}, expected matured",
                        entity_id=deposit_id
                    )

                renewal = self.book(
                    holder_id=deposit.holder_id,
                    principal=deposit.maturity_amount.amount,
                    rate_percent=deposit.interest_rate if rate_percent is None else rate_percent,
                    tenure_months=tenure_months or deposit.tenure_months,
                    start_date=as_of,
                    deposit_type=deposit.deposit_type,
                    auto_renewal=deposit.auto_renewal,
                    nominee_name=deposit.nominee_name,
                    renewed_from_id=deposit.id
                )

                deposit.status = DepositStatus.RENEWED
                deposit.renewed_to_id = renewal.id
                self._save_deposit(deposit)
                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_RENEWED,
                    entity_type="fixed_deposit",
                    entity_id=deposit.id,
                    metadata={"renewed_to_id": renewal.id, "principal_amount": renewal.principal_amount}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "renew_fixed_deposit", f"fixed_deposit:{deposit_id}")

        log_action(
            self.logger, "info", "Fixed deposit renewed",
            action="renew_fixed_deposit", resource=f"fixed_deposit:{deposit_id}",
            extra={"renewed_to_id": renewal.id}
        )
        return renewal

    def process_maturities(self, as_of: Optional[date] = None) -> Dict[str, int]:
        """
        Mature every active deposit due on or before as_of, renewing those
        flagged for auto-renewal

        Returns:
            Counts per outcome. A failing deposit is logged and the run
            moves on to the next one.
        """
        as_of = as_of or date.today()
        results = {"matured": 0, "renewed": 0, "failed": 0}

        for deposit in self.list_due(as_of):
            try:
                self.mature(deposit.id, as_of=as_of)
                results["matured"] += 1
                if deposit.auto_renewal:
                    self.renew(deposit.id, as_of=as_of)
                    results["renewed"] += 1
            except EngineError as e:
                results["failed"] += 1
                log_rejection(self.logger, e, "process_maturities", f"fixed_deposit:{deposit.id}")

        log_action(
            self.logger, "info", "Processed deposit maturities",
            action="process_maturities", extra={"as_of": as_of.isoformat(), **results}
        )
        return results

    def _penalty_rate(self, penalty_rate, deposit_id: str) -> Decimal:
        if penalty_rate is None:
            return self.default_penalty_rate
        try:
            penalty = to_decimal(penalty_rate)
        except (TypeError, ValueError):
            raise InvalidInputError(f"Invalid penalty rate: {penalty_rate!r}", entity_id=deposit_id)
        if not penalty.is_finite() or penalty < 0:
            raise InvalidInputError("Penalty rate cannot be negative", entity_id=deposit_id)
        return penalty

    def list_due(self, as_of: date) -> List[TermDeposit]:
        """Active deposits whose maturity date has arrived"""
        return [deposit for deposit in self._find({"status": DepositStatus.ACTIVE.value})
                if deposit.is_due(as_of)]

    def get_deposit(self, deposit_id: str) -> Optional[TermDeposit]:
        """Get deposit by ID"""
        data = self.storage.load(self.table_name, deposit_id)
        if data:
            return self._deposit_from_dict(data)
        return None

    def get_holder_deposits(self, holder_id: str) -> List[TermDeposit]:
        return self._find({"holder_id": holder_id})

    def get_stats(self) -> Dict:
        """Deposit counts with principal and maturity totals by product and status"""
        deposits = self._find({})
        stats = {
            "total_deposits": len(deposits),
            "active_deposits": sum(1 for d in deposits if d.status == DepositStatus.ACTIVE),
            "matured_deposits": sum(1 for d in deposits if d.status == DepositStatus.MATURED),
            "total_principal": Money.zero(),
            "total_maturity_value": Money.zero(),
            "by_type": {},
            "by_status": {}
        }
        for deposit in deposits:
            stats["total_principal"] = stats["total_principal"] + deposit.principal_amount
            stats["total_maturity_value"] = stats["total_maturity_value"] + deposit.maturity_amount
            by_type = stats["by_type"].setdefault(
                deposit.deposit_type.value,
                {"count": 0, "total_principal": Money.zero(), "total_maturity": Money.zero()}
            )
            by_type["count"] += 1
            by_type["total_principal"] = by_type["total_principal"] + deposit.principal_amount
            by_type["total_maturity"] = by_type["total_maturity"] + deposit.maturity_amount
            stats["by_status"][deposit.status.value] = stats["by_status"].get(deposit.status.value, 0) + 1
        return stats

    def _find(self, filters: Dict) -> List[TermDeposit]:
        return [self._deposit_from_dict(data) for data in self.storage.find(self.table_name, filters)]

    def _require_deposit(self, deposit_id: str) -> TermDeposit:
        deposit = self.get_deposit(deposit_id)
        if not deposit:
            raise DepositNotFound(f"Deposit {deposit_id} not found", entity_id=deposit_id)
        return deposit

    def _require_active(self, deposit_id: str) -> TermDeposit:
        deposit = self._require_deposit(deposit_id)
        if not deposit.is_active:
            raise NotActive(
                f"Deposit {deposit_id} is not active (status: {deposit.status.value})",
                entity_id=deposit_id
            )
        return deposit

    def _save_deposit(self, deposit: TermDeposit) -> None:
        deposit.updated_at = datetime.now(timezone.utc)
        deposit.version += 1
        self.storage.save(self.table_name, deposit.id, deposit.to_dict(),
                          expected_version=deposit.version - 1)

    def _deposit_from_dict(self, data: Dict) -> TermDeposit:
        return TermDeposit(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            deposit_number=data['deposit_number'],
            holder_id=data['holder_id'],
            deposit_type=FixedDepositType(data['deposit_type']),
            principal_amount=Money(Decimal(data['principal_amount'])),
            interest_rate=Decimal(data['interest_rate']),
            tenure_months=data['tenure_months'],
            start_date=date.fromisoformat(data['start_date']),
            maturity_date=date.fromisoformat(data['maturity_date']),
            maturity_amount=Money(Decimal(data['maturity_amount'])),
            status=DepositStatus(data['status']),
            auto_renewal=data.get('auto_renewal', False),
            nominee_name=data.get('nominee_name'),
            closed_on=date.fromisoformat(data['closed_on']) if data.get('closed_on') else None,
            penalty_rate_applied=(Decimal(data['penalty_rate_applied'])
                                  if data.get('penalty_rate_applied') is not None else None),
            renewed_from_id=data.get('renewed_from_id'),
            renewed_to_id=data.get('renewed_to_id'),
            version=data.get('version', 1)
        )
