# enrollhub/core/errors.py - Import pipeline error taxonomy
from typing import Optional


class EnrollmentImportError(Exception):
    """Base class for every error raised by the import pipeline"""

    kind = "error"

    def __init__(self, message: str, row_number: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.row_number = row_number

    def __str__(self) -> str:
        return self.message


class FieldValidationError(EnrollmentImportError):
    """A single field failed normalization; recoverable during staging"""

    kind = "validation"

    def __init__(self, field: str, message: str, row_number: Optional[int] = None):
        super().__init__(message, row_number)
        self.field = field


class DuplicateEmailError(EnrollmentImportError):
    """A student with this email already exists; the row is skipped"""

    kind = "duplicate"

    def __init__(self, email: str, row_number: Optional[int] = None):
        super().__init__(f"Student with email {email} already exists", row_number)
        self.email = email


class ReferenceNotFoundError(EnrollmentImportError):
    """A course or referral lookup missed"""

    kind = "reference"

    def __init__(self, entity: str, value: str, row_number: Optional[int] = None):
        super().__init__(f'{entity.capitalize()} "{value}" not found', row_number)
        self.entity = entity
        self.value = value


class WriteError(EnrollmentImportError):
    """Storage failure on one of the per-row writes"""

    kind = "write"

    def __init__(self, operation: str, message: str, row_number: Optional[int] = None):
        super().__init__(f"{operation} failed: {message}", row_number)
        self.operation = operation


class StorageTimeoutError(WriteError):
    """A storage call exceeded the configured statement timeout"""

    kind = "timeout"


class AllocationError(EnrollmentImportError):
    """Sequential code generation failed; callers fall back, never surface it"""

    kind = "allocation"

    def __init__(self, scope: str, message: str):
        super().__init__(f"Could not allocate code for {scope}: {message}")
        self.scope = scope
