"""
Fixed and recurring deposit endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import get_banking_system
from .schemas import (
    BookFixedDepositRequest, MatureRequest, PrematureCloseRequest, RenewRequest,
    OpenRecurringDepositRequest, InstallmentRequest
)
from ..storage import _to_storable
from ..system import BankingSystem


router = APIRouter()


@router.post("/fixed", status_code=status.HTTP_201_CREATED)
async def book_fixed_deposit(
    request: BookFixedDepositRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Book a fixed deposit"""
    deposit = system.fixed_deposits.book(
        holder_id=request.holder_id,
        principal=request.principal,
        rate_percent=request.rate_percent,
        tenure_months=request.tenure_months,
        start_date=request.start_date,
        deposit_type=request.deposit_type,
        auto_renewal=request.auto_renewal,
        nominee_name=request.nominee_name
    )
    return deposit.to_dict()


@router.get("/fixed/stats")
async def get_fixed_deposit_stats(system: BankingSystem = Depends(get_banking_system)):
    """Fixed deposit statistics"""
    return _to_storable(system.fixed_deposits.get_stats())


@router.get("/fixed/{deposit_id}")
async def get_fixed_deposit(deposit_id: str, system: BankingSystem = Depends(get_banking_system)):
    deposit = system.fixed_deposits.get_deposit(deposit_id)
    if not deposit:
        raise HTTPException(status_code=404, detail="Deposit not found")
    return deposit.to_dict()


@router.post("/fixed/{deposit_id}/mature")
async def mature_fixed_deposit(
    deposit_id: str,
    request: MatureRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    return system.fixed_deposits.mature(deposit_id, request.as_of).to_dict()


@router.post("/fixed/{deposit_id}/close")
async def close_fixed_deposit(
    deposit_id: str,
    request: PrematureCloseRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Close a fixed deposit before maturity"""
    result = system.fixed_deposits.close_prematurely(
        deposit_id, penalty_rate=request.penalty_rate, as_of=request.as_of
    )
    return result.to_dict()


@router.post("/fixed/{deposit_id}/renew", status_code=status.HTTP_201_CREATED)
async def renew_fixed_deposit(
    deposit_id: str,
    request: RenewRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    renewal = system.fixed_deposits.renew(
        deposit_id, as_of=request.as_of,
        tenure_months=request.tenure_months, rate_percent=request.rate_percent
    )
    return renewal.to_dict()


@router.post("/recurring", status_code=status.HTTP_201_CREATED)
async def open_recurring_deposit(
    request: OpenRecurringDepositRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a recurring deposit"""
    deposit = system.recurring_deposits.open(
        holder_id=request.holder_id,
        installment_amount=request.installment_amount,
        rate_percent=request.rate_percent,
        tenure_months=request.tenure_months,
        start_date=request.start_date
    )
    return deposit.to_dict()


@router.get("/recurring/{deposit_id}")
async def get_recurring_deposit(deposit_id: str, system: BankingSystem = Depends(get_banking_system)):
    deposit = system.recurring_deposits.get_deposit(deposit_id)
    if not deposit:
        raise HTTPException(status_code=404, detail="Deposit not found")
    installments = system.recurring_deposits.get_installments(deposit_id)
    return {
        **deposit.to_dict(),
        "installments": [i.to_dict() for i in installments],
        "missed_penalty": str(system.recurring_deposits.calculate_penalty(deposit_id))
    }


@router.post("/recurring/{deposit_id}/installments", status_code=status.HTTP_201_CREATED)
async def record_installment(
    deposit_id: str,
    request: InstallmentRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    return system.recurring_deposits.record_installment(deposit_id, request.paid_on).to_dict()


@router.post("/recurring/{deposit_id}/missed", status_code=status.HTTP_201_CREATED)
async def mark_installment_missed(deposit_id: str, system: BankingSystem = Depends(get_banking_system)):
    return system.recurring_deposits.mark_missed(deposit_id).to_dict()


@router.post("/recurring/{deposit_id}/close")
async def close_recurring_deposit(
    deposit_id: str,
    request: MatureRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    return system.recurring_deposits.close_early(deposit_id, request.as_of).to_dict()


@router.post("/recurring/{deposit_id}/mature")
async def mature_recurring_deposit(
    deposit_id: str,
    request: MatureRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    return system.recurring_deposits.mature(deposit_id, request.as_of).to_dict()


@router.get("/members/{holder_id}")
async def get_holder_deposits(holder_id: str, system: BankingSystem = Depends(get_banking_system)):
    """Fixed and recurring deposits held by a member"""
    system.member_registry.require_member(holder_id)
    fixed = system.fixed_deposits.get_holder_deposits(holder_id)
    recurring = system.recurring_deposits.get_holder_deposits(holder_id)
    return {
        "holder_id": holder_id,
        "fixed_deposits": [d.to_dict() for d in fixed],
        "recurring_deposits": [d.to_dict() for d in recurring]
    }
