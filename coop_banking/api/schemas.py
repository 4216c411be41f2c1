"""
Pydantic schemas for API requests
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field

from ..members import MemberStatus
from ..accounts import AccountType, AccountStatus, EntryType
from ..deposits import FixedDepositType
from ..shares import ShareType
from ..dividends import DividendType


# Member schemas
class RegisterMemberRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = None
    phone: Optional[str] = None
    member_number: Optional[str] = None


class MemberStatusRequest(BaseModel):
    status: MemberStatus
    reason: str = Field(..., min_length=1)


# Account schemas
class OpenAccountRequest(BaseModel):
    owner_id: str
    account_type: AccountType
    minimum_balance: Decimal = Field(Decimal('0'), ge=0)
    interest_rate: Decimal = Field(Decimal('0'), ge=0)
    initial_deposit: Decimal = Field(Decimal('0'), ge=0)


class TransactionRequest(BaseModel):
    entry_type: EntryType
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    destination_account_id: Optional[str] = None
    description: Optional[str] = None


class TransferRequest(BaseModel):
    source_account_id: str
    destination_account_id: str
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    description: Optional[str] = None


class AccountStatusRequest(BaseModel):
    status: AccountStatus
    reason: str = Field(..., min_length=1)


# Loan schemas
class IssueLoanRequest(BaseModel):
    borrower_id: str
    principal: Decimal = Field(..., gt=0, decimal_places=2)
    interest_rate: Decimal = Field(..., ge=0, le=100)
    tenure_months: int = Field(..., gt=0)
    start_date: Optional[date] = None


class RepaymentRequest(BaseModel):
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    payment_date: Optional[date] = None


class AccrueInterestRequest(BaseModel):
    as_of: Optional[date] = None


class DefaultLoanRequest(BaseModel):
    reason: str = Field(..., min_length=1)


# Deposit schemas
class BookFixedDepositRequest(BaseModel):
    holder_id: str
    principal: Decimal = Field(..., gt=0, decimal_places=2)
    rate_percent: Decimal = Field(..., ge=0, le=50)
    tenure_months: int = Field(..., ge=1, le=120)
    start_date: Optional[date] = None
    deposit_type: FixedDepositType = FixedDepositType.REGULAR
    auto_renewal: bool = False
    nominee_name: Optional[str] = Field(None, max_length=100)


class MatureRequest(BaseModel):
    as_of: Optional[date] = None


class PrematureCloseRequest(BaseModel):
    penalty_rate: Optional[Decimal] = Field(None, ge=0)
    as_of: Optional[date] = None


class RenewRequest(BaseModel):
    as_of: Optional[date] = None
    tenure_months: Optional[int] = Field(None, ge=1, le=120)
    rate_percent: Optional[Decimal] = Field(None, ge=0, le=50)


class OpenRecurringDepositRequest(BaseModel):
    holder_id: str
    installment_amount: Decimal = Field(..., gt=0, decimal_places=2)
    rate_percent: Decimal = Field(..., ge=0, le=50)
    tenure_months: int = Field(..., ge=1, le=120)
    start_date: Optional[date] = None


class InstallmentRequest(BaseModel):
    paid_on: Optional[date] = None


# Share schemas
class AllocateSharesRequest(BaseModel):
    member_id: str
    share_type: ShareType = ShareType.ORDINARY
    number_of_shares: int = Field(..., gt=0)
    share_value: Decimal = Field(..., gt=0, decimal_places=2)
    transaction_date: Optional[datetime] = None


class TransferSharesRequest(BaseModel):
    from_member_id: str
    to_member_id: str
    number_of_shares: int = Field(..., gt=0)
    price: Decimal = Field(..., ge=0, decimal_places=2)
    share_type: Optional[ShareType] = None


class RedeemSharesRequest(BaseModel):
    member_id: str
    number_of_shares: int = Field(..., gt=0)
    share_type: Optional[ShareType] = None


# Dividend schemas
class DeclareDividendRequest(BaseModel):
    year: int = Field(..., ge=1900, le=2200)
    dividend_type: DividendType
    rate_percent: Decimal = Field(..., ge=0, le=100, decimal_places=2)
    record_date: date
    payment_date: date
    description: Optional[str] = Field(None, max_length=500)
    draft: bool = False


class CancelDividendRequest(BaseModel):
    reason: str = Field(..., min_length=1)
