"""
Operation Results

Every successful state-changing operation returns one of these objects:
the new authoritative state plus a human-readable status string. The HTTP
layer turns them into wire responses with to_dict().
"""

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, Dict, List, Optional

from .money import Money
from .storage import StorageRecord, _to_storable


def _plain(value: Any) -> Any:
    if isinstance(value, StorageRecord):
        return value.to_dict()
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if is_dataclass(value) and not isinstance(value, Money):
        return {f.name: _plain(getattr(value, f.name)) for f in fields(value)}
    return _to_storable(value)


@dataclass
class OperationResult:
    """Base for result objects"""

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: _plain(getattr(self, f.name)) for f in fields(self)}


@dataclass
class TransactionResult(OperationResult):
    """Outcome of a credit, debit or transfer on an account"""
    entry: Any
    balance: Money
    status: str
    counterpart_entry: Optional[Any] = None
    counterpart_balance: Optional[Money] = None


@dataclass
class RepaymentResult(OperationResult):
    loan: Any
    repayment: Any
    outstanding_amount: Money
    status: str


@dataclass
class LoanResult(OperationResult):
    loan: Any
    status: str
    adjustment: Optional[Any] = None


@dataclass
class DepositResult(OperationResult):
    """Outcome of a deposit lifecycle step; payout is what the holder receives"""
    deposit: Any
    payout: Money
    status: str
    penalty: Money = field(default_factory=Money.zero)


@dataclass
class ShareTransferResult(OperationResult):
    from_member_id: str
    to_member_id: str
    number_of_shares: int
    price: Money
    transactions: List[Any]
    from_balance: int
    to_balance: int
    status: str


@dataclass
class ShareResult(OperationResult):
    holding: Optional[Any]
    transaction: Any
    balance: int
    status: str


@dataclass
class DistributionResult(OperationResult):
    dividend: Any
    distributions: List[Any]
    total_amount: Money
    status: str
