"""
Account ledger endpoints
"""

from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import get_banking_system
from .schemas import OpenAccountRequest, TransactionRequest, TransferRequest, AccountStatusRequest
from ..system import BankingSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def open_account(
    request: OpenAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Open an account for a member"""
    account = system.account_ledger.open_account(
        owner_id=request.owner_id,
        account_type=request.account_type,
        minimum_balance=request.minimum_balance,
        interest_rate=request.interest_rate,
        initial_deposit=request.initial_deposit
    )
    return account.to_dict()


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Transfer funds between two accounts"""
    result = system.account_ledger.transfer(
        request.source_account_id,
        request.destination_account_id,
        request.amount,
        description=request.description
    )
    return result.to_dict()


@router.get("/{account_id}")
async def get_account(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get account details"""
    account = system.account_ledger.get_account(account_id)
    if not account:
        raise HTTPException(status_code=404, detail="Account not found")
    return account.to_dict()


@router.post("/{account_id}/transactions", status_code=status.HTTP_201_CREATED)
async def apply_transaction(
    account_id: str,
    request: TransactionRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Apply a credit, debit or transfer"""
    result = system.account_ledger.apply_transaction(
        account_id,
        request.entry_type,
        request.amount,
        destination_account_id=request.destination_account_id,
        description=request.description
    )
    return result.to_dict()


@router.get("/{account_id}/history")
async def get_history(
    account_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Ledger entries for the account, oldest first"""
    entries = system.account_ledger.get_history(account_id)
    return {"account_id": account_id, "entries": [e.to_dict() for e in entries], "count": len(entries)}


@router.put("/{account_id}/status")
async def update_account_status(
    account_id: str,
    request: AccountStatusRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Change account status"""
    account = system.account_ledger.update_status(account_id, request.status, request.reason)
    return account.to_dict()
