"""
Domain errors for the number assignment & billing engine.

Services raise these; controllers map ``status_code`` onto an HTTP response and
bulk operations turn them into per-item ``failed`` entries.
"""
from typing import Optional


class PhoneNumberError(ValueError):
    status_code = 400
    public_message = None

    def __init__(self, message: str, number: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.number = number  # Known when the number was loaded before failing

    @property
    def detail(self) -> str:
        return self.public_message or self.message


class NotFoundError(PhoneNumberError):
    """Referenced number, user, rate deck or assignment does not exist"""
    status_code = 404


class PreconditionError(PhoneNumberError):
    """Entity exists but is in the wrong state for the requested transition"""
    status_code = 400


class OperationFailure(PhoneNumberError):
    """A multi-step write failed part way; the internal cause is never exposed"""
    status_code = 500

    def __init__(self, message: str, public_message: str = "Operation failed", number: Optional[str] = None):
        super().__init__(message, number=number)
        self.public_message = public_message


class DependencyFailure(Exception):
    """An external collaborator (SMTP, email log) failed. Always swallowed after logging."""
