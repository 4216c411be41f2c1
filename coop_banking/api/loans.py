"""
Loan endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import get_banking_system
from .schemas import IssueLoanRequest, RepaymentRequest, AccrueInterestRequest, DefaultLoanRequest
from ..system import BankingSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def issue_loan(
    request: IssueLoanRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Issue a loan to a member"""
    loan = system.loan_manager.issue(
        borrower_id=request.borrower_id,
        principal=request.principal,
        interest_rate=request.interest_rate,
        tenure_months=request.tenure_months,
        start_date=request.start_date
    )
    return loan.to_dict()


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get loan details"""
    loan = system.loan_manager.get_loan(loan_id)
    if not loan:
        raise HTTPException(status_code=404, detail="Loan not found")
    return loan.to_dict()


@router.post("/{loan_id}/approve")
async def approve_loan(loan_id: str, system: BankingSystem = Depends(get_banking_system)):
    return system.loan_manager.approve(loan_id).to_dict()


@router.post("/{loan_id}/activate")
async def activate_loan(loan_id: str, system: BankingSystem = Depends(get_banking_system)):
    return system.loan_manager.activate(loan_id).to_dict()


@router.post("/{loan_id}/repayments", status_code=status.HTTP_201_CREATED)
async def apply_repayment(
    loan_id: str,
    request: RepaymentRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Apply a repayment against the outstanding amount"""
    result = system.loan_manager.apply_repayment(loan_id, request.amount, request.payment_date)
    return result.to_dict()


@router.get("/{loan_id}/repayments")
async def get_repayments(loan_id: str, system: BankingSystem = Depends(get_banking_system)):
    repayments = system.loan_manager.get_repayments(loan_id)
    return {"loan_id": loan_id, "repayments": [r.to_dict() for r in repayments], "count": len(repayments)}


@router.post("/{loan_id}/accrue-interest")
async def accrue_interest(
    loan_id: str,
    request: AccrueInterestRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Record interest accrued since the last accrual"""
    return system.loan_manager.accrue_interest(loan_id, request.as_of).to_dict()


@router.post("/{loan_id}/default")
async def mark_defaulted(
    loan_id: str,
    request: DefaultLoanRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    return system.loan_manager.mark_defaulted(loan_id, request.reason).to_dict()
