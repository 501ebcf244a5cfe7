"""
Batch endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import BankingSystem, get_banking_system, unwrap


router = APIRouter()


@router.post("/daily")
async def run_daily_sweeps(system: BankingSystem = Depends(get_banking_system)):
    """Overdue flags, RD auto-debit, FD interest payouts and FD maturities"""
    return unwrap(system.run_daily_sweeps())


@router.get("/audit/verify")
async def verify_audit_trail(system: BankingSystem = Depends(get_banking_system)):
    """Check the audit hash chain"""
    return system.verify_audit_trail()
