# Structured exception hierarchy for SmartDesk

from typing import Dict, Any, Optional
from datetime import datetime, timezone


class SmartDeskException(Exception):
    """Base exception for all SmartDesk specific errors"""

    # HTTP status the API layer reports for this error class
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None,
                 correlation_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.correlation_id = correlation_id
        self.timestamp = datetime.now(timezone.utc)


class TransientError(SmartDeskException):
    """Errors that may succeed when the caller tries again later"""

    def __init__(self, message: str, retry_count: int = 0, max_retries: int = 3,
                 details: Optional[Dict[str, Any]] = None, correlation_id: Optional[str] = None):
        super().__init__(message, details, correlation_id)
        self.retry_count = retry_count
        self.max_retries = max_retries
        self.retryable = retry_count < max_retries


class PermanentError(SmartDeskException):
    """Errors that will fail again with the same input"""
    pass


# Authentication and Authorization Errors
class AuthenticationError(PermanentError):
    """Invalid credentials or missing/expired application token"""
    status_code = 401


class BrokerSessionRequiredError(AuthenticationError):
    """The user has no live SmartAPI session"""

    def __init__(self, message: str = "SmartAPI session required. Please login to SmartAPI first.",
                 **kwargs):
        super().__init__(message, **kwargs)


# Broker Integration Errors
class BrokerError(TransientError):
    """Base class for broker integration errors"""
    status_code = 400

    def __init__(self, message: str, broker: str = "smartapi", **kwargs):
        super().__init__(message, **kwargs)
        self.broker = broker


class BrokerAPIError(BrokerError):
    """Broker reported a failure in its response envelope"""

    def __init__(self, message: str, broker: str = "smartapi", api_error_code: Optional[str] = None,
                 api_response: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message, broker, **kwargs)
        self.api_error_code = api_error_code
        self.api_response = api_response or {}


# Validation Errors
class ValidationError(PermanentError):
    """Data validation errors"""
    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, value: Any = None,
                 expected_type: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value
        self.expected_type = expected_type


class NotFoundError(PermanentError):
    """Requested resource does not exist for this user"""
    status_code = 404

    def __init__(self, message: str, resource: str, identifier: Any = None, **kwargs):
        super().__init__(message, **kwargs)
        self.resource = resource
        self.identifier = identifier


class ConflictError(PermanentError):
    """Resource already exists"""
    status_code = 400


# Portfolio Management Errors
class PortfolioError(SmartDeskException):
    """Base class for portfolio management errors"""
    status_code = 400

    def __init__(self, message: str, portfolio_id: str, **kwargs):
        super().__init__(message, **kwargs)
        self.portfolio_id = portfolio_id


class PortfolioSyncError(PortfolioError):
    """Holdings could not be fetched from the broker; portfolio marked failed"""
    pass


# Order Management Errors
class OrderError(SmartDeskException):
    """Base class for order management errors"""
    status_code = 400

    def __init__(self, message: str, order_id: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.order_id = order_id


class OrderValidationError(ValidationError):
    """Order request failed a placement or modification rule"""
    pass


class OrderStateError(OrderError):
    """Order is in a state that does not allow the requested action"""
    pass


class OrderRejectionError(PermanentError):
    """Order rejected by broker - should not be retried"""
    status_code = 400

    def __init__(self, message: str, rejection_reason: str, order_data: Dict[str, Any],
                 **kwargs):
        super().__init__(message, **kwargs)
        self.rejection_reason = rejection_reason
        self.order_data = order_data


def is_retryable_error(error: Exception) -> bool:
    """
    Determine if an error should be retried

    Returns:
        True if error is transient and retryable, False otherwise
    """
    if isinstance(error, TransientError):
        return error.retryable
    return False


def create_error_context(error: Exception, operation: str,
                         additional_context: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Create structured error context for logging

    Args:
        error: The exception that occurred
        operation: The operation that failed
        additional_context: Additional context information

    Returns:
        Structured error context dictionary
    """
    context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        "operation": operation,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "retryable": is_retryable_error(error)
    }

    if isinstance(error, SmartDeskException):
        if error.correlation_id:
            context["correlation_id"] = error.correlation_id
        if error.details:
            context["error_details"] = error.details

        if isinstance(error, BrokerError):
            context["broker"] = error.broker

        if isinstance(error, PortfolioError):
            context["portfolio_id"] = error.portfolio_id

        if isinstance(error, OrderError) and error.order_id:
            context["order_id"] = error.order_id

    if additional_context:
        context.update(additional_context)

    return context
