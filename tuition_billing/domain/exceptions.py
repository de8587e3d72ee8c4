"""Domain-specific exceptions"""


class DomainException(Exception):
    """Base exception for domain layer"""

    pass


class NotFoundError(DomainException):
    """Requested invoice, payment, profile or schedule row does not exist"""

    pass


class UnknownSettingError(DomainException):
    """Setting key has no definition"""

    pass


class SettingValidationError(DomainException):
    """Setting value is malformed or out of range"""

    pass


class PhaseLimitReachedError(DomainException):
    """Generation would exceed the contracted number of phases"""

    pass


class PaymentValidationError(DomainException):
    """Payment write rejected before touching the ledger"""

    pass


class NotificationDeliveryError(DomainException):
    """Receipt notification could not be delivered"""

    pass
