"""
Member endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import get_banking_system
from .schemas import RegisterMemberRequest, MemberStatusRequest
from ..members import MemberStatus
from ..system import BankingSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def register_member(
    request: RegisterMemberRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Register a new member"""
    member = system.member_registry.register(
        name=request.name,
        email=request.email,
        phone=request.phone,
        member_number=request.member_number
    )
    return member.to_dict()


@router.get("")
async def list_members(
    member_status: Optional[MemberStatus] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    """List members, optionally by status"""
    members = system.member_registry.list_members(member_status)
    return {"members": [m.to_dict() for m in members], "count": len(members)}


@router.get("/{member_id}")
async def get_member(
    member_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    """Get member details"""
    member = system.member_registry.get_member(member_id)
    if not member:
        raise HTTPException(status_code=404, detail="Member not found")
    return member.to_dict()


@router.put("/{member_id}/status")
async def update_member_status(
    member_id: str,
    request: MemberStatusRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Change a member's status"""
    member = system.member_registry.update_status(member_id, request.status, request.reason)
    return member.to_dict()


@router.get("/{member_id}/accounts")
async def get_member_accounts(
    member_id: str,
    system: BankingSystem = Depends(get_banking_system)
):
    system.member_registry.require_member(member_id)
    accounts = system.account_ledger.get_member_accounts(member_id)
    return {"accounts": [a.to_dict() for a in accounts], "count": len(accounts)}
