"""
Exceptions for AI categorization

CategorizationError subclasses are raised synchronously by start() before any
job exists. Failures inside a running job are never raised to the caller;
they are classified into a ProcessingError and stored for the status query.

ClassifierServiceError / ClassifierResponseError are raised by remote
classifier clients.
"""
from typing import Optional

from packages.domain.ai_categorization.schemas import ErrorKind


class CategorizationError(Exception):
    """Base class for caller-facing categorization errors"""
    code = "AIC-000000"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AlreadyProcessingError(CategorizationError):
    """A job is already running for this user"""
    code = "AIC-010002"

    def __init__(self, message: str = "AI categorization is already in progress"):
        super().__init__(message)


class NothingToCategorizeError(CategorizationError):
    """The user has no uncategorized transactions"""
    code = "AIC-010003"

    def __init__(self, message: str = "No uncategorized transactions found"):
        super().__init__(message)


class ClassifierServiceError(Exception):
    """
    Remote classifier failure.

    When `kind` is set the error classifier uses it as-is instead of
    inspecting the message text.
    """

    def __init__(self, message: str, kind: Optional[ErrorKind] = None):
        super().__init__(message)
        self.kind = kind


class ClassifierResponseError(ClassifierServiceError):
    """Classifier answered but the payload could not be decoded"""

    def __init__(self, message: str):
        super().__init__(message, kind=ErrorKind.PARSE_ERROR)
