"""
Fixed deposit endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_customer_id, unwrap
from .schemas import CloseDepositRequest, CreateFixedDepositRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_fixed_deposit(
    request: CreateFixedDepositRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a fixed deposit funded from one of the caller's accounts"""
    return unwrap(system.create_fixed_deposit(
        request.source_account_number,
        request.principal,
        request.tenure,
        request.payout_mode,
        request.payout_account_number,
        request.nominee.model_dump() if request.nominee else None,
        customer_id
    ))


@router.get("")
async def list_fixed_deposits(
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.get_customer_fixed_deposits(customer_id))


@router.get("/rates")
async def get_fixed_deposit_rates(system: BankingSystem = Depends(get_banking_system)):
    """Tenure bands and their interest rates"""
    return unwrap(system.fixed_deposit_rates())


@router.get("/{fd_number}")
async def get_fixed_deposit(
    fd_number: str,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.get_fixed_deposit(fd_number, customer_id))


@router.post("/{fd_number}/payout")
async def process_interest_payout(
    fd_number: str,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.process_fd_payout(fd_number, customer_id))


@router.post("/{fd_number}/close")
async def close_fixed_deposit(
    fd_number: str,
    request: CloseDepositRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Premature closure with penalty"""
    return unwrap(system.close_fixed_deposit(fd_number, request.reason, customer_id))


@router.post("/{fd_number}/mature")
async def mature_fixed_deposit(
    fd_number: str,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.mature_fixed_deposit(fd_number, customer_id))
