"""
Dividend endpoints
"""

from typing import Optional
from fastapi import APIRouter, HTTPException, Depends, status

from .dependencies import get_banking_system
from .schemas import DeclareDividendRequest, CancelDividendRequest
from ..dividends import DividendType, DividendStatus
from ..storage import _to_storable
from ..system import BankingSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def declare_dividend(
    request: DeclareDividendRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    """Declare a dividend for a period"""
    dividend = system.dividend_engine.declare(
        year=request.year,
        dividend_type=request.dividend_type,
        rate_percent=request.rate_percent,
        record_date=request.record_date,
        payment_date=request.payment_date,
        description=request.description,
        draft=request.draft
    )
    return dividend.to_dict()


@router.get("")
async def list_dividends(
    year: Optional[int] = None,
    dividend_type: Optional[DividendType] = None,
    dividend_status: Optional[DividendStatus] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    dividends = system.dividend_engine.list_dividends(year, dividend_type, dividend_status)
    return {"dividends": [d.to_dict() for d in dividends], "count": len(dividends)}


@router.get("/stats")
async def get_dividend_stats(
    year: Optional[int] = None,
    system: BankingSystem = Depends(get_banking_system)
):
    return _to_storable(system.dividend_engine.get_stats(year))


@router.get("/{dividend_id}")
async def get_dividend(dividend_id: str, system: BankingSystem = Depends(get_banking_system)):
    dividend = system.dividend_engine.get_dividend(dividend_id)
    if not dividend:
        raise HTTPException(status_code=404, detail="Dividend not found")
    return dividend.to_dict()


@router.post("/{dividend_id}/confirm")
async def confirm_dividend(dividend_id: str, system: BankingSystem = Depends(get_banking_system)):
    return system.dividend_engine.confirm_declaration(dividend_id).to_dict()


@router.post("/{dividend_id}/approve")
async def approve_dividend(dividend_id: str, system: BankingSystem = Depends(get_banking_system)):
    return system.dividend_engine.approve(dividend_id).to_dict()


@router.post("/{dividend_id}/distribute")
async def distribute_dividend(dividend_id: str, system: BankingSystem = Depends(get_banking_system)):
    """Pay out an approved dividend to eligible shareholders"""
    return system.dividend_engine.distribute(dividend_id).to_dict()


@router.post("/{dividend_id}/cancel")
async def cancel_dividend(
    dividend_id: str,
    request: CancelDividendRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    return system.dividend_engine.cancel(dividend_id, request.reason).to_dict()


@router.get("/{dividend_id}/distributions")
async def get_distributions(dividend_id: str, system: BankingSystem = Depends(get_banking_system)):
    distributions = system.dividend_engine.get_distributions(dividend_id)
    return {
        "dividend_id": dividend_id,
        "distributions": [d.to_dict() for d in distributions],
        "count": len(distributions)
    }
