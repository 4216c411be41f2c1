"""
Recurring Deposit Engine

Recurring deposits take a fixed installment every month. Each paid
installment compounds quarterly for the months it is held until
maturity. Missed installments carry a flat per-installment penalty, and
early closure charges a flat percentage of the total committed principal
instead of recomputing interest.
"""

from decimal import Decimal
from datetime import datetime, date, timezone
from dataclasses import dataclass
from typing import Dict, List, Optional
from enum import Enum
import uuid

from .money import Money, to_decimal, compound_quarterly, add_months
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditEventType
from .members import MemberRegistry
from .deposits import DepositStatus
from .results import DepositResult
from .errors import (
    EngineError, DepositNotFound, NotActive, NotYetDue, InvalidAmount,
    InvalidInputError
)
from .logging_config import get_logger, log_action, log_rejection


class InstallmentStatus(Enum):
    PAID = "paid"
    MISSED = "missed"


@dataclass
class RecurringDeposit(StorageRecord):
    """Recurring deposit; maturity_amount is the projected value if every installment is paid"""
    deposit_number: str
    holder_id: str
    installment_amount: Money
    total_installments: int
    interest_rate: Decimal
    start_date: date
    maturity_date: date
    maturity_amount: Money
    status: DepositStatus
    closed_on: Optional[date] = None
    version: int = 1

    @property
    def is_active(self) -> bool:
        return self.status == DepositStatus.ACTIVE

    @property
    def committed_principal(self) -> Money:
        return self.installment_amount * self.total_installments

    def due_date(self, installment_number: int) -> date:
        return add_months(self.start_date, installment_number - 1)

    def months_held(self, installment_number: int) -> int:
        """Months an installment earns interest before maturity"""
        return self.total_installments - installment_number + 1


@dataclass
class Installment(StorageRecord):
    """Paid or missed installment of a recurring deposit"""
    deposit_id: str
    installment_number: int
    due_date: date
    amount: Money
    status: InstallmentStatus
    paid_on: Optional[date] = None


def projected_maturity(installment: Money, rate_percent: Decimal, total_installments: int) -> Money:
    """Maturity value when every installment is paid on time"""
    total = Money.zero()
    for number in range(1, total_installments + 1):
        total = total + compound_quarterly(installment, rate_percent, total_installments - number + 1)
    return total


class RecurringDepositEngine:
    """
    Opens recurring deposits and tracks their installments
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: AuditTrail,
        member_registry: MemberRegistry,
        missed_installment_penalty_rate: Decimal = Decimal('0.01'),
        early_closure_penalty_rate: Decimal = Decimal('0.02'),
        enforce_maturity_date: bool = True
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.members = member_registry
        self.missed_installment_penalty_rate = missed_installment_penalty_rate
        self.early_closure_penalty_rate = early_closure_penalty_rate
        self.enforce_maturity_date = enforce_maturity_date
        self.table_name = "recurring_deposits"
        self.installments_table = "recurring_installments"
        self.logger = get_logger("coop_banking.recurring")

    def open(
        self,
        holder_id: str,
        installment_amount: Decimal,
        rate_percent: Decimal,
        tenure_months: int,
        start_date: Optional[date] = None
    ) -> RecurringDeposit:
        """
        Open a recurring deposit with one installment per month of tenure

        Raises:
            MemberNotFound, MemberInactive, InvalidAmount
        """
        try:
            installment = Money.of(to_decimal(installment_amount))
            rate = to_decimal(rate_percent)
            if not installment.is_positive():
                raise InvalidAmount("Installment must be positive", amount=installment)
            if rate < 0:
                raise InvalidInputError("Interest rate cannot be negative")
            if tenure_months <= 0:
                raise InvalidInputError("Tenure must be at least one month")

            start = start_date or date.today()
            now = datetime.now(timezone.utc)
            deposit_id = str(uuid.uuid4())
            deposit = RecurringDeposit(
                id=deposit_id,
                created_at=now,
                updated_at=now,
                deposit_number=f"RD{deposit_id.replace('-', '')[:12].upper()}",
                holder_id=holder_id,
                installment_amount=installment,
                total_installments=tenure_months,
                interest_rate=rate,
                start_date=start,
                maturity_date=add_months(start, tenure_months),
                maturity_amount=projected_maturity(installment, rate, tenure_months),
                status=DepositStatus.ACTIVE
            )

            with self.storage.atomic():
                self.members.require_active(holder_id)
                self.storage.save(self.table_name, deposit.id, deposit.to_dict(), expected_version=0)
                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_BOOKED,
                    entity_type="recurring_deposit",
                    entity_id=deposit.id,
                    metadata={
                        "holder_id": holder_id,
                        "installment_amount": installment,
                        "total_installments": tenure_months,
                        "interest_rate": rate,
                        "maturity_amount": deposit.maturity_amount
                    }
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "open_recurring_deposit", f"member:{holder_id}")

        log_action(
            self.logger, "info", "Recurring deposit opened",
            action="open_recurring_deposit", resource=f"recurring_deposit:{deposit.id}",
            extra={"deposit_number": deposit.deposit_number}
        )
        return deposit

    def record_installment(self, deposit_id: str, paid_on: Optional[date] = None) -> Installment:
        """Record the next installment as paid"""
        return self._record(deposit_id, InstallmentStatus.PAID, paid_on or date.today())

    def mark_missed(self, deposit_id: str) -> Installment:
        """Record the next installment as missed"""
        return self._record(deposit_id, InstallmentStatus.MISSED, None)

    def get_installments(self, deposit_id: str) -> List[Installment]:
        self._require_deposit(deposit_id)
        installments = [self._installment_from_dict(data) for data in
                        self.storage.find(self.installments_table, {"deposit_id": deposit_id})]
        installments.sort(key=lambda i: i.installment_number)
        return installments

    def calculate_penalty(self, deposit_id: str) -> Money:
        """Penalty accrued for missed installments: a fixed rate of each missed amount"""
        penalty = Money.zero()
        for installment in self.get_installments(deposit_id):
            if installment.status == InstallmentStatus.MISSED:
                penalty = penalty + installment.amount * self.missed_installment_penalty_rate
        return penalty

    def close_early(self, deposit_id: str, as_of: Optional[date] = None) -> DepositResult:
        """
        Close an active deposit before maturity

        Charges early_closure_penalty_rate of installment x total_installments,
        plus any missed-installment penalty, against the installments paid in.
        No interest is paid.
        """
        as_of = as_of or date.today()
        try:
            with self.storage.atomic():
                deposit = self._require_active(deposit_id)
                installments = self.get_installments(deposit_id)

                paid_in = Money.zero()
                for installment in installments:
                    if installment.status == InstallmentStatus.PAID:
                        paid_in = paid_in + installment.amount

                penalty = (deposit.committed_principal * self.early_closure_penalty_rate
                           + self.calculate_penalty(deposit_id))
                payout = paid_in - penalty
                if payout.is_negative():
                    payout = Money.zero()

                deposit.status = DepositStatus.PREMATURE_CLOSED
                deposit.maturity_amount = payout
                deposit.closed_on = as_of
                self._save_deposit(deposit)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_PREMATURE_CLOSED,
                    entity_type="recurring_deposit",
                    entity_id=deposit.id,
                    metadata={"paid_in": paid_in, "penalty": penalty, "payout": payout}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "close_recurring_deposit", f"recurring_deposit:{deposit_id}")

        log_action(
            self.logger, "info", "Recurring deposit closed early",
            action="close_recurring_deposit", resource=f"recurring_deposit:{deposit_id}",
            extra={"penalty": str(penalty), "payout": str(payout)}
        )
        return DepositResult(
            deposit=deposit,
            payout=payout,
            penalty=penalty,
            status=f"Recurring deposit closed early; penalty {penalty}, payout {payout}"
        )

    def mature(self, deposit_id: str, as_of: Optional[date] = None) -> DepositResult:
        """
        Mature an active deposit

        Each paid installment compounds for the months it was held; missed
        installment penalties are deducted.

        Raises:
            DepositNotFound, NotActive, NotYetDue
        """
        as_of = as_of or date.today()
        try:
            with self.storage.atomic():
                deposit = self._require_active(deposit_id)
                if self.enforce_maturity_date and as_of < deposit.maturity_date:
                    raise NotYetDue(
                        f"Deposit {deposit_id} matures on {deposit.maturity_date.isoformat()}",
                        entity_id=deposit_id
                    )

                gross = Money.zero()
                for installment in self.get_installments(deposit_id):
                    if installment.status == InstallmentStatus.PAID:
                        gross = gross + compound_quarterly(
                            installment.amount, deposit.interest_rate,
                            deposit.months_held(installment.installment_number)
                        )
                penalty = self.calculate_penalty(deposit_id)
                payout = gross - penalty
                if payout.is_negative():
                    payout = Money.zero()

                deposit.status = DepositStatus.MATURED
                deposit.maturity_amount = payout
                deposit.closed_on = as_of
                self._save_deposit(deposit)

                self.audit_trail.log_event(
                    event_type=AuditEventType.DEPOSIT_MATURED,
                    entity_type="recurring_deposit",
                    entity_id=deposit.id,
                    metadata={"gross": gross, "penalty": penalty, "payout": payout}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, "mature_recurring_deposit", f"recurring_deposit:{deposit_id}")

        log_action(
            self.logger, "info", "Recurring deposit matured",
            action="mature_recurring_deposit", resource=f"recurring_deposit:{deposit_id}",
            extra={"payout": str(payout)}
        )
        return DepositResult(
            deposit=deposit,
            payout=payout,
            penalty=penalty,
            status=f"Recurring deposit matured; payout {payout}"
        )

    def get_deposit(self, deposit_id: str) -> Optional[RecurringDeposit]:
        """Get recurring deposit by ID"""
        data = self.storage.load(self.table_name, deposit_id)
        if data:
            return self._deposit_from_dict(data)
        return None

    def get_holder_deposits(self, holder_id: str) -> List[RecurringDeposit]:
        return [self._deposit_from_dict(data)
                for data in self.storage.find(self.table_name, {"holder_id": holder_id})]

    def _record(self, deposit_id: str, status: InstallmentStatus,
                paid_on: Optional[date]) -> Installment:
        action = "record_installment" if status == InstallmentStatus.PAID else "mark_installment_missed"
        try:
            with self.storage.atomic():
                deposit = self._require_active(deposit_id)
                recorded = self.storage.find(self.installments_table, {"deposit_id": deposit_id})
                number = len(recorded) + 1
                if number > deposit.total_installments:
                    raise InvalidInputError(
                        f"All {deposit.total_installments} installments of deposit {deposit_id} are recorded",
                        entity_id=deposit_id
                    )

                now = datetime.now(timezone.utc)
                installment = Installment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    deposit_id=deposit_id,
                    installment_number=number,
                    due_date=deposit.due_date(number),
                    amount=deposit.installment_amount,
                    status=status,
                    paid_on=paid_on
                )
                self.storage.save(self.installments_table, installment.id, installment.to_dict())
                # Bump the deposit version so concurrent recorders conflict
                self._save_deposit(deposit)

                self.audit_trail.log_event(
                    event_type=(AuditEventType.INSTALLMENT_RECORDED if status == InstallmentStatus.PAID
                                else AuditEventType.INSTALLMENT_MISSED),
                    entity_type="recurring_deposit",
                    entity_id=deposit_id,
                    metadata={"installment_number": number, "amount": installment.amount}
                )
        except EngineError as e:
            raise log_rejection(self.logger, e, action, f"recurring_deposit:{deposit_id}")

        log_action(
            self.logger, "info", f"Installment {number} {status.value}",
            action=action, resource=f"recurring_deposit:{deposit_id}"
        )
        return installment

    def _require_deposit(self, deposit_id: str) -> RecurringDeposit:
        deposit = self.get_deposit(deposit_id)
        if not deposit:
            raise DepositNotFound(f"Recurring deposit {deposit_id} not found", entity_id=deposit_id)
        return deposit

    def _require_active(self, deposit_id: str) -> RecurringDeposit:
        deposit = self._require_deposit(deposit_id)
        if not deposit.is_active:
            raise NotActive(
                f"Recurring deposit {deposit_id} is not active (status: {deposit.status.value})",
                entity_id=deposit_id
            )
        return deposit

    def _save_deposit(self, deposit: RecurringDeposit) -> None:
        deposit.updated_at = datetime.now(timezone.utc)
        deposit.version += 1
        self.storage.save(self.table_name, deposit.id, deposit.to_dict(),
                          expected_version=deposit.version - 1)

    def _deposit_from_dict(self, data: Dict) -> RecurringDeposit:
        return RecurringDeposit(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            deposit_number=data['deposit_number'],
            holder_id=data['holder_id'],
            installment_amount=Money(Decimal(data['installment_amount'])),
            total_installments=data['total_installments'],
            interest_rate=Decimal(data['interest_rate']),
            start_date=date.fromisoformat(data['start_date']),
            maturity_date=date.fromisoformat(data['maturity_date']),
            maturity_amount=Money(Decimal(data['maturity_amount'])),
            status=DepositStatus(data['status']),
            closed_on=date.fromisoformat(data['closed_on']) if data.get('closed_on') else None,
            version=data.get('version', 1)
        )

    def _installment_from_dict(self, data: Dict) -> Installment:
        return Installment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            deposit_id=data['deposit_id'],
            installment_number=data['installment_number'],
            due_date=date.fromisoformat(data['due_date']),
            amount=Money(Decimal(data['amount'])),
            status=InstallmentStatus(data['status']),
            paid_on=date.fromisoformat(data['paid_on']) if data.get('paid_on') else None
        )
