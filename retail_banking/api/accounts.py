"""
Account management endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_customer_id, unwrap
from .schemas import DeactivateAccountRequest, FreezeAccountRequest, OpenAccountRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def open_account(
    request: OpenAccountRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a savings or current account"""
    return unwrap(system.open_account(
        customer_id, request.account_type, request.initial_deposit, request.channel
    ))


@router.get("")
async def list_accounts(
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """List the caller's accounts"""
    return unwrap(system.get_customer_accounts(customer_id))


@router.get("/{account_number}")
async def get_account(
    account_number: str,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.get_account(account_number, customer_id))


@router.get("/{account_number}/transactions")
async def get_account_transactions(
    account_number: str,
    status: Optional[str] = None,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Transaction history, newest first"""
    return unwrap(system.get_account_transactions(account_number, customer_id, status))


@router.post("/{account_number}/freeze")
async def freeze_account(
    account_number: str,
    request: FreezeAccountRequest,
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.freeze_account(account_number, request.reason))


@router.post("/{account_number}/unfreeze")
async def unfreeze_account(
    account_number: str,
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.unfreeze_account(account_number))


@router.post("/{account_number}/deactivate")
async def deactivate_account(
    account_number: str,
    request: DeactivateAccountRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Deactivate an account whose balance is at or below the minimum"""
    return unwrap(system.deactivate_account(account_number, customer_id, request.reason))
