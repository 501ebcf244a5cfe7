"""
Shared API dependencies: the banking system instance, caller identity and
OperationResult unwrapping
"""

from typing import Any, Dict, Optional

from fastapi import Header, HTTPException, status

from ..system import BankingSystem, OperationResult


# Error code -> HTTP status
STATUS_BY_ERROR_CODE = {
    "validation_error": status.HTTP_400_BAD_REQUEST,
    "invalid_amount": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "business_rule_violation": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "transaction_denied": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "invalid_tenure": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "payment_failed": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "premature_closure_not_allowed": status.HTTP_422_UNPROCESSABLE_ENTITY,
    "state_conflict": status.HTTP_409_CONFLICT,
    "invalid_state": status.HTTP_409_CONFLICT,
    "persistence_failure": status.HTTP_500_INTERNAL_SERVER_ERROR,
    "identifier_exhausted": status.HTTP_503_SERVICE_UNAVAILABLE,
    "operation_timed_out": status.HTTP_504_GATEWAY_TIMEOUT,
}


_banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    """Lazily build the process-wide banking system from configuration"""
    global _banking_system
    if _banking_system is None:
        _banking_system = BankingSystem()
    return _banking_system


def set_banking_system(system: Optional[BankingSystem]) -> None:
    global _banking_system
    _banking_system = system


def get_customer_id(x_customer_id: str = Header(..., alias="X-Customer-ID")) -> str:
    """Authenticated caller, as established by the upstream auth layer"""
    return x_customer_id


def unwrap(result: OperationResult) -> Dict[str, Any]:
    """Return the result payload or raise the HTTP error its code maps to"""
    if result.success:
        response = dict(result.data)
        if result.message:
            response["message"] = result.message
        return response

    raise HTTPException(
        status_code=STATUS_BY_ERROR_CODE.get(result.error_code, status.HTTP_400_BAD_REQUEST),
        detail={"error_code": result.error_code, "message": result.message}
    )
