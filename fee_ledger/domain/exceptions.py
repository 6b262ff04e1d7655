"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """Fee structure, ledger, student or transaction does not exist"""

    pass


class ConflictError(DomainException):
    """Concurrent write or unique-key collision; retried by the caller"""

    pass


class InvalidInputError(DomainException):
    """Malformed month, non-positive amount, or amount short of mandatory fees"""

    pass


class AlreadySettledError(DomainException):
    """Target month is already paid or has been waived"""

    pass


class NotificationDeliveryError(DomainException):
    """Notification webhook rejected the reminder or is unavailable"""

    pass
