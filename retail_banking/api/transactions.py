"""
Transaction endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import BankingSystem, get_banking_system, get_customer_id, unwrap
from .schemas import DepositRequest, ReverseTransactionRequest, TransferRequest, WithdrawRequest


router = APIRouter()


@router.post("/transfer")
async def transfer(
    request: TransferRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a transfer between accounts"""
    return unwrap(system.transfer(
        request.from_account_number, request.to_account_number, request.amount,
        request.description, customer_id, request.channel
    ))


@router.post("/deposit")
async def deposit(
    request: DepositRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a deposit"""
    return unwrap(system.deposit(
        request.account_number, request.amount, request.method, request.description,
        customer_id, request.channel
    ))


@router.post("/withdraw")
async def withdraw(
    request: WithdrawRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Make a withdrawal"""
    return unwrap(system.withdraw(
        request.account_number, request.amount, request.method, request.description,
        customer_id, request.channel
    ))


@router.get("/{transaction_id}")
async def get_transaction(
    transaction_id: str,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Get a transaction the caller is a party to"""
    return unwrap(system.get_transaction(transaction_id, customer_id))


@router.post("/{transaction_id}/reverse")
async def reverse_transaction(
    transaction_id: str,
    request: ReverseTransactionRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Reverse a completed transfer, deposit or withdrawal"""
    return unwrap(system.reverse_transaction(transaction_id, request.reason, customer_id))
