# error types raised by the risk engine
# only invalid input ever reaches the caller; capability failures are
# recovered inside the analyzers

from typing import List, Optional

class RiskEngineError(Exception):
    """base class for all engine errors"""

class InvalidTransactionError(RiskEngineError):
    """
    transaction context failed validation before analysis started

    details holds one "field: message" string per problem so http
    callers can return field-level errors
    """

    def __init__(self, message: str, details: Optional[List[str]] = None):
        super().__init__(message)
        self.message = message
        self.details = list(details or [])

    def __str__(self):
        if not self.details:
            return self.message
        return f"{self.message}: {'; '.join(self.details)}"

class BatchLimitError(InvalidTransactionError):
    """batch is empty or larger than max_batch_size"""

def format_validation_errors(errors) -> List[str]:
    """
    flatten pydantic error dicts into "field.path: message" strings

    args:
        errors: output of ValidationError.errors()
    """
    details = []
    for error in errors:
        location = ".".join(str(part) for part in error.get("loc", ())) or "context"
        details.append(f"{location}: {error.get('msg', 'invalid value')}")
    return details
