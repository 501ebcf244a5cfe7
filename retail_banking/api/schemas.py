"""
Pydantic schemas for API requests
"""

from datetime import date
from typing import Optional

from pydantic import BaseModel, Field


class OpenAccountRequest(BaseModel):
    account_type: str = Field(..., description="Account type (savings, current)")
    initial_deposit: str = Field("0", description="Decimal amount as string")
    channel: str = "web"


class FreezeAccountRequest(BaseModel):
    reason: str = Field(..., description="suspicious_activity, customer_request, admin_action or legal_hold")


class DeactivateAccountRequest(BaseModel):
    reason: Optional[str] = None


class TransferRequest(BaseModel):
    from_account_number: str
    to_account_number: str
    amount: str = Field(..., description="Decimal amount as string")
    description: str = ""
    channel: str = "web"


class DepositRequest(BaseModel):
    account_number: str
    amount: str = Field(..., description="Decimal amount as string")
    method: str = "cash"
    description: str = ""
    channel: str = "web"


class WithdrawRequest(BaseModel):
    account_number: str
    amount: str = Field(..., description="Decimal amount as string")
    method: str = "cash"
    description: str = ""
    channel: str = "web"


class ReverseTransactionRequest(BaseModel):
    reason: str


class NomineeModel(BaseModel):
    name: str
    relationship: str
    date_of_birth: Optional[date] = None
    share: int = 100


class CreateFixedDepositRequest(BaseModel):
    source_account_number: str
    principal: str = Field(..., description="Decimal amount as string")
    tenure: int = Field(..., description="Tenure in months")
    payout_mode: str = "cumulative"
    payout_account_number: Optional[str] = None
    nominee: Optional[NomineeModel] = None


class CloseDepositRequest(BaseModel):
    reason: str = "Customer request"


class CreateRecurringDepositRequest(BaseModel):
    source_account_number: str
    monthly_amount: str = Field(..., description="Decimal amount as string")
    tenure: int = Field(..., description="Tenure in months")
    nominee: Optional[NomineeModel] = None
    auto_debit_enabled: bool = True


class PayInstallmentRequest(BaseModel):
    method: str = "manual"


class AutoDebitRequest(BaseModel):
    enabled: bool
