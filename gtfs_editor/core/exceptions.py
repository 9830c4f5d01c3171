from http import HTTPStatus
from typing import List, Optional, Any
from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

class GtfsErrorModel(BaseModel):
    message: str
    type: str
    code: int
    field: Optional[str] = None
    stack: Optional[List[str]] = None

class ErrorResponse(BaseModel):
    error: GtfsErrorModel

class BaseGtfsException(Exception):
    def __init__(self, statusCode: int, message: str, errorType: str, stack: Optional[List[str]] = None):
        self.statusCode = statusCode
        self.errorType = errorType
        self.message = message
        self.stack = stack
        super().__init__(message)

    def toErrorResponse(self) -> ErrorResponse:
        return ErrorResponse(error=GtfsErrorModel(
            message=self.message,
            type=self.errorType,
            code=self.statusCode,
            field=getattr(self, "field", None),
            stack=self.stack
        ))

class InvalidNamespaceError(BaseGtfsException):
    def __init__(self, namespace: Any, reason: str = "does not exist"):
        self.namespace = namespace
        super().__init__(
            statusCode=HTTPStatus.NOT_FOUND,
            message=f"Namespace '{namespace}' {reason}.",
            errorType="InvalidNamespaceError"
        )

class UnknownTableError(BaseGtfsException):
    def __init__(self, tableName: Any):
        self.tableName = tableName
        super().__init__(
            statusCode=HTTPStatus.NOT_FOUND,
            message=f"Table '{tableName}' is not a declared GTFS table.",
            errorType="UnknownTableError"
        )

class ValidationError(BaseGtfsException):
    def __init__(self, field: Optional[str], message: str):
        self.field = field
        self.detail = message
        fullMessage = f"Invalid value for field '{field}': {message}" if field else message
        super().__init__(
            statusCode=HTTPStatus.BAD_REQUEST,
            message=fullMessage,
            errorType="ValidationError"
        )

    def nested(self, prefix: str) -> "ValidationError":
        # Re-raise a child entity's failure under its path in the parent payload.
        field = f"{prefix}.{self.field}" if self.field else prefix
        return ValidationError(field=field, message=self.detail)

class NotFoundError(BaseGtfsException):
    def __init__(self, resourceType: str, identifier: Any):
        self.identifier = identifier
        super().__init__(
            statusCode=HTTPStatus.NOT_FOUND,
            message=f"{resourceType} with identifier '{identifier}' not found.",
            errorType="NotFoundError"
        )

class ConstraintViolationError(BaseGtfsException):
    def __init__(self, message: str, reason: Optional[str] = None):
        fullMessage = f"Constraint violation: {message}" + (f" (Reason: {reason})" if reason else "")
        super().__init__(
            statusCode=HTTPStatus.CONFLICT,
            message=fullMessage,
            errorType="ConstraintViolationError"
        )

class TransientDatabaseError(BaseGtfsException):
    def __init__(self, message: str = "The database could not complete the operation. Please try again later."):
        super().__init__(
            statusCode=HTTPStatus.SERVICE_UNAVAILABLE,
            message=message,
            errorType="TransientDatabaseError"
        )

def translateDatabaseError(exc: SQLAlchemyError, context: str) -> BaseGtfsException:
    if isinstance(exc, IntegrityError):
        return ConstraintViolationError(message=context, reason=str(exc.orig) if exc.orig else None)
    return TransientDatabaseError(message=f"{context}: {type(exc).__name__}")
