"""
Setlist Guard Exception Classes
"""


class GuardException(Exception):
    """Base exception for security-layer operations"""
    pass


class StoreUnavailable(GuardException):
    """Raised when an ownership, credential or audit store cannot be reached"""
    pass


class InvalidConfiguration(GuardException):
    """Raised when guard configuration is invalid"""
    pass
