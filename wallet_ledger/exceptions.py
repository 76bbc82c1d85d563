class LedgerServiceError(Exception):
    pass


class ConcurrentModificationError(LedgerServiceError):
    pass


class DocumentExistsError(LedgerServiceError):
    pass


class CodeGenerationExhaustedError(LedgerServiceError):
    pass


class UserNotFoundError(LedgerServiceError):
    pass


class OrderNotFoundError(LedgerServiceError):
    pass


class WithdrawalNotFoundError(LedgerServiceError):
    pass


class CommissionNotFoundError(LedgerServiceError):
    pass


class InvoiceNotFoundError(LedgerServiceError):
    pass


class InvalidStateTransitionError(LedgerServiceError):
    pass


class InsufficientBalanceError(LedgerServiceError):
    pass


class PermissionDeniedError(LedgerServiceError):
    pass
