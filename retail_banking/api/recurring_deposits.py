"""
Recurring deposit endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import BankingSystem, get_banking_system, get_customer_id, unwrap
from .schemas import AutoDebitRequest, CloseDepositRequest, CreateRecurringDepositRequest, PayInstallmentRequest


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_recurring_deposit(
    request: CreateRecurringDepositRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Open a recurring deposit; the first installment is debited immediately"""
    return unwrap(system.create_recurring_deposit(
        request.source_account_number,
        request.monthly_amount,
        request.tenure,
        request.nominee.model_dump() if request.nominee else None,
        request.auto_debit_enabled,
        customer_id
    ))


@router.get("")
async def list_recurring_deposits(
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.get_customer_recurring_deposits(customer_id))


@router.get("/rates")
async def get_recurring_deposit_rates(system: BankingSystem = Depends(get_banking_system)):
    return unwrap(system.recurring_deposit_rates())


@router.get("/overdue")
async def get_overdue_recurring_deposits(
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.get_overdue_recurring_deposits(customer_id))


@router.get("/{rd_number}")
async def get_recurring_deposit(
    rd_number: str,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.get_recurring_deposit(rd_number, customer_id))


@router.get("/{rd_number}/installments")
async def get_installments(
    rd_number: str,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.get_installments(rd_number, customer_id))


@router.post("/{rd_number}/installments")
async def pay_installment(
    rd_number: str,
    request: PayInstallmentRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    """Pay the next installment manually"""
    return unwrap(system.pay_rd_installment(rd_number, request.method, customer_id))


@router.post("/{rd_number}/close")
async def close_recurring_deposit(
    rd_number: str,
    request: CloseDepositRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.close_recurring_deposit(rd_number, request.reason, customer_id))


@router.put("/{rd_number}/auto-debit")
async def toggle_auto_debit(
    rd_number: str,
    request: AutoDebitRequest,
    customer_id: str = Depends(get_customer_id),
    system: BankingSystem = Depends(get_banking_system)
):
    return unwrap(system.toggle_rd_auto_debit(rd_number, request.enabled, customer_id))
