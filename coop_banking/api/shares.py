"""
Share registry endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import get_banking_system
from .schemas import AllocateSharesRequest, TransferSharesRequest, RedeemSharesRequest
from ..shares import ShareType, ShareTransactionType
from ..storage import _to_storable
from ..system import BankingSystem


router = APIRouter()


@router.post("/allocate", status_code=status.HTTP_201_CREATED)
async def allocate_shares(
    request: AllocateSharesRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Allocate new shares to a member"""
    result = system.share_registry.allocate(
        member_id=request.member_id,
        share_type=request.share_type,
        number_of_shares=request.number_of_shares,
        share_value=request.share_value,
        transaction_date=request.transaction_date
    )
    return result.to_dict()


@router.post("/transfer")
async def transfer_shares(
    request: TransferSharesRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Transfer shares between members"""
    result = system.share_registry.transfer(
        from_member_id=request.from_member_id,
        to_member_id=request.to_member_id,
        number_of_shares=request.number_of_shares,
        price=request.price,
        share_type=request.share_type
    )
    return result.to_dict()


@router.post("/redeem")
async def redeem_shares(
    request: RedeemSharesRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    result = system.share_registry.redeem(
        member_id=request.member_id,
        number_of_shares=request.number_of_shares,
        share_type=request.share_type
    )
    return result.to_dict()


@router.get("/members/{member_id}")
async def get_member_shares(
    member_id: str,
    share_type: Optional[ShareType] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    """Share balance, holdings and transaction history for a member"""
    system.member_registry.require_member(member_id)
    registry = system.share_registry
    return {
        "member_id": member_id,
        "balance": registry.get_share_balance(member_id, share_type),
        "holdings": [h.to_dict() for h in registry.get_holdings(member_id)],
        "transactions": [t.to_dict() for t in registry.get_transactions(member_id)]
    }


@router.get("/members/{member_id}/transactions")
async def get_member_share_transactions(
    member_id: str,
    transaction_type: Optional[ShareTransactionType] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    system.member_registry.require_member(member_id)
    transactions = system.share_registry.get_transactions(member_id, transaction_type)
    return {
        "member_id": member_id,
        "transactions": [t.to_dict() for t in transactions],
        "count": len(transactions)
    }


@router.get("/stats")
async def get_share_stats(system: BankingSystem = Depends(get_banking_system)):
    """Share register statistics"""
    return _to_storable(system.share_registry.get_stats())
