"""Error hierarchy for the loan ledger.

Every error carries a stable ``code`` (rendered as ``detail`` by the API) and
the HTTP status the API answers with. Raising any of these from a service means
the session was rolled back and nothing was written.
"""


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code = "ledger_error"
    status_code = 400
    retryable = False

    def __init__(self, message: str | None = None, **context):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context


class InvalidPolicyConfiguration(LedgerError):
    """Raised when a policy's mode and rates disagree or are out of range."""

    code = "invalid_policy_configuration"


class InvalidLoan(LedgerError):
    code = "invalid_loan"


class InvalidPaymentAmount(LedgerError):
    """Raised when a payment amount is zero or negative."""

    code = "invalid_payment_amount"


class OverAllocation(LedgerError):
    """Raised when a split exceeds interest due, remaining principal or the payment amount."""

    code = "over_allocation"


class Overpayment(LedgerError):
    """Raised when part of a payment cannot be routed to any target loan."""

    code = "overpayment"


class NothingToAllocate(LedgerError):
    code = "nothing_to_allocate"


class ClosedLoanTarget(LedgerError):
    """Raised when a payment targets a loan whose principal is already repaid."""

    code = "closed_loan_target"


class CrossWorkspaceTarget(LedgerError):
    """Raised when one payment targets loans owned by different workspaces."""

    code = "cross_workspace_target"


class PolicyInUse(LedgerError):
    code = "policy_in_use"
    status_code = 409


class ConcurrentModification(LedgerError):
    """Raised when a loan changed between read and write.

    The caller may retry once with fresh data.
    """

    code = "concurrent_modification"
    status_code = 409
    retryable = True


class NotFoundError(LedgerError):
    status_code = 404


class LoanNotFound(NotFoundError):
    code = "loan_not_found"


class PaymentNotFound(NotFoundError):
    code = "payment_not_found"


class PolicyNotFound(NotFoundError):
    code = "policy_not_found"
