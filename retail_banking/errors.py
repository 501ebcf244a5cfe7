"""
Banking Error Types

Domain-specific exceptions raised by the ledger and deposit engines.
BankingSystem turns everything except PersistenceFailure into a typed
OperationResult; the API maps each category to an HTTP status.
"""


class BankingError(Exception):
    """Base class for all banking domain errors"""

    code = "banking_error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(BankingError):
    """Malformed or out-of-range input"""

    code = "validation_error"


class InvalidAmount(ValidationError):
    """Amount is zero, negative, or outside the product bounds"""

    code = "invalid_amount"


class NotFound(BankingError):
    """Unknown account, transaction, FD or RD"""

    code = "not_found"


class BusinessRuleViolation(BankingError):
    """Request is well-formed but a banking rule rejects it"""

    code = "business_rule_violation"


class TransactionDenied(BusinessRuleViolation):
    """Limit exceeded or balance floor breached"""

    code = "transaction_denied"

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class InvalidTenure(BusinessRuleViolation):
    """Tenure is outside the recognised rate bands"""

    code = "invalid_tenure"


class PaymentFailed(BusinessRuleViolation):
    """Recurring deposit installment could not be debited"""

    code = "payment_failed"

    def __init__(self, reason: str):
        super().__init__(f"Payment failed: {reason}")
        self.reason = reason


class PrematureClosureNotAllowed(BusinessRuleViolation):
    """Deposit has not met the minimum holding requirement"""

    code = "premature_closure_not_allowed"


class StateConflict(BankingError):
    """Entity is not in the status the operation requires"""

    code = "state_conflict"


class InvalidState(StateConflict):
    """Illegal state machine transition"""

    code = "invalid_state"


class PersistenceFailure(BankingError):
    """Storage layer error; the enclosing unit of work is rolled back"""

    code = "persistence_failure"


class IdentifierExhausted(BankingError):
    """No unique identifier found within the retry budget"""

    code = "identifier_exhausted"


class OperationTimedOut(BankingError):
    """Lock acquisition or unit-of-work deadline expired"""

    code = "operation_timed_out"
