"""
Standardized exception hierarchy for the Pungpung progress engine
Provides rich context, consistent logging, and user-friendly error messages
"""

from datetime import datetime, timezone
from typing import Optional, Dict, Any
from uuid import uuid4
import logging

logger = logging.getLogger(__name__)


class PungpungError(Exception):
    """
    Base exception for all engine errors

    Provides:
    - Automatic timestamping
    - Request ID for tracing
    - User-friendly messages
    - Structured context
    - Automatic logging

    Example:
        raise PungpungError(
            message="Failed to save activity record",
            student_id="s-101",
            operation="add_activity",
            context={"exercise_id": "squat"}
        )
    """

    log_level = logging.ERROR

    def __init__(
        self,
        message: str,
        student_id: Optional[str] = None,
        request_id: Optional[str] = None,
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.student_id = student_id
        self.request_id = request_id or str(uuid4())
        self.operation = operation
        self.context = context or {}
        self.cause = cause
        self.user_message = user_message or "An error occurred. Please try again."
        self.timestamp = datetime.now(timezone.utc)

        # Auto-log on creation
        self._log_error()

    def _log_error(self) -> None:
        """Log error with full context"""
        log_data = {
            "error_type": self.__class__.__name__,
            "error_message": self.message,  # Avoid conflict with logging's 'message' field
            "request_id": self.request_id,
            "student_id": self.student_id,
            "operation": self.operation,
            "error_context": self.context,
            "timestamp": self.timestamp.isoformat()
        }

        if self.cause:
            log_data["cause"] = str(self.cause)
            logger.log(
                self.log_level,
                f"{self.__class__.__name__}: {self.message}",
                extra=log_data,
                exc_info=self.cause
            )
        else:
            logger.log(self.log_level, f"{self.__class__.__name__}: {self.message}", extra=log_data)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize exception for API responses"""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "user_message": self.user_message,
            "request_id": self.request_id,
            "timestamp": self.timestamp.isoformat()
        }


# ==========================================
# Validation Errors (User Input)
# ==========================================

class ValidationError(PungpungError):
    """
    Raised when input fails validation

    Examples:
    - Negative goal target
    - Exercise both targeted and skipped on the same day
    - Empty mailbox message

    Example:
        raise ValidationError(
            message="Target must be positive",
            field="target",
            value=-5,
            student_id="s-101"
        )
    """

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        **kwargs
    ):
        self.field = field
        self.value = value
        kwargs.setdefault("user_message", f"Invalid {field}: {message}" if field else message)
        super().__init__(
            message=message,
            context={"field": field, "value": value},
            **kwargs
        )


# ==========================================
# Database Errors
# ==========================================

class DatabaseError(PungpungError):
    """
    Base class for storage-related errors
    """
    pass


class ConnectionError(DatabaseError):
    """Database connection failed"""

    def __init__(self, message: str = "Database connection failed", **kwargs):
        super().__init__(
            message=message,
            user_message="We're having trouble connecting to the database. Please try again in a moment.",
            **kwargs
        )


class QueryError(DatabaseError):
    """Database query execution failed"""

    def __init__(
        self,
        message: str,
        query: Optional[str] = None,
        **kwargs
    ):
        self.query = query
        super().__init__(
            message=message,
            user_message="We encountered an issue saving your data. Please try again.",
            context={"query": query},
            **kwargs
        )


class RecordNotFoundError(DatabaseError):
    """Requested record does not exist"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        record_type: Optional[str] = None,
        record_id: Optional[str] = None,
        **kwargs
    ):
        self.record_type = record_type
        self.record_id = record_id
        super().__init__(
            message=message,
            user_message=f"{record_type or 'Record'} not found.",
            context={"record_type": record_type, "record_id": record_id},
            **kwargs
        )


class TransactionConflictError(DatabaseError):
    """
    A transaction lost a write race

    Raised by store transactions on serialization failures. The store retries
    these itself; callers only see one when every attempt conflicted.
    """

    log_level = logging.WARNING

    def __init__(self, message: str = "Transaction conflict", attempts: int = 1, **kwargs):
        self.attempts = attempts
        super().__init__(
            message=message,
            user_message="Many friends are doing this at once. Please try again.",
            context={"attempts": attempts},
            **kwargs
        )


# ==========================================
# Engine Rule Violations
# ==========================================

class MissionRateLimitError(PungpungError):
    """Sender already sent a mission today"""

    log_level = logging.INFO

    def __init__(self, message: str = "Mission already sent today", day: Optional[str] = None, **kwargs):
        self.day = day
        super().__init__(
            message=message,
            user_message="You can send only one mission per day. Try again tomorrow!",
            context={"day": day},
            **kwargs
        )


class InvalidTransitionError(PungpungError):
    """Requested state change is not allowed from the current state"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str,
        current_state: Optional[str] = None,
        **kwargs
    ):
        self.current_state = current_state
        super().__init__(
            message=message,
            user_message="That action isn't possible right now.",
            context={"current_state": current_state},
            **kwargs
        )


# ==========================================
# External API Errors
# ==========================================

class ExternalAPIError(PungpungError):
    """
    Base class for external API failures
    """

    def __init__(
        self,
        message: str,
        service: Optional[str] = None,
        status_code: Optional[int] = None,
        **kwargs
    ):
        self.service = service
        self.status_code = status_code
        kwargs.setdefault(
            "user_message",
            f"We're having trouble connecting to {service or 'an external service'}. Please try again later."
        )
        super().__init__(
            message=message,
            context={"service": service, "status_code": status_code},
            **kwargs
        )


class TextGenerationError(ExternalAPIError):
    """Text generation service returned nothing usable"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message=message,
            service="Text generation",
            **kwargs
        )


# ==========================================
# Authentication
# ==========================================

class AuthenticationError(PungpungError):
    """PIN check failed"""

    log_level = logging.WARNING

    def __init__(
        self,
        message: str = "Authentication failed",
        **kwargs
    ):
        super().__init__(
            message=message,
            user_message="The PIN doesn't match. Please try again.",
            **kwargs
        )


# ==========================================
# Configuration Errors
# ==========================================

class ConfigurationError(PungpungError):
    """System configuration is invalid or missing"""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        **kwargs
    ):
        self.config_key = config_key
        super().__init__(
            message=message,
            user_message="The system is not properly configured. Please contact the administrator.",
            context={"config_key": config_key},
            **kwargs
        )


# ==========================================
# Helper Functions
# ==========================================

def wrap_external_exception(
    error: Exception,
    operation: str,
    student_id: Optional[str] = None,
    context: Optional[Dict[str, Any]] = None
) -> PungpungError:
    """
    Wrap external exceptions (psycopg, httpx, etc.) into our exception hierarchy

    Args:
        error: Original exception
        operation: What operation was being performed
        student_id: Student ID if applicable
        context: Additional context

    Returns:
        Appropriate PungpungError subclass

    Example:
        try:
            await cur.execute(query)
        except psycopg.Error as e:
            raise wrap_external_exception(
                e,
                operation="add_activity",
                student_id="s-101",
                context={"exercise_id": "squat"}
            )
    """
    import httpx
    import psycopg
    from psycopg import errors as pg_errors

    if isinstance(error, PungpungError):
        return error

    # Database errors
    if isinstance(error, (pg_errors.SerializationFailure, pg_errors.DeadlockDetected)):
        return TransactionConflictError(
            message=f"Transaction conflict during {operation}: {str(error)}",
            student_id=student_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, psycopg.OperationalError):
        return ConnectionError(
            message=f"Database connection failed: {str(error)}",
            student_id=student_id,
            operation=operation,
            context=context,
            cause=error
        )
    elif isinstance(error, psycopg.Error):
        return QueryError(
            message=f"Database query failed: {str(error)}",
            student_id=student_id,
            operation=operation,
            cause=error
        )

    # HTTP errors
    elif isinstance(error, httpx.TimeoutException):
        return ExternalAPIError(
            message=f"API request timed out: {str(error)}",
            student_id=student_id,
            operation=operation,
            cause=error
        )
    elif isinstance(error, httpx.HTTPStatusError):
        return ExternalAPIError(
            message=f"API returned error: {error.response.status_code}",
            status_code=error.response.status_code,
            student_id=student_id,
            operation=operation,
            cause=error
        )

    # Generic fallback
    else:
        return PungpungError(
            message=f"{operation} failed: {str(error)}",
            student_id=student_id,
            operation=operation,
            context=context,
            cause=error
        )
