class ForecastPlanningError(Exception):
    """Base exception for Volume Forecast errors."""

    def __init__(self, message=None, code=None, details=None):
        """Initialize the exception.

        Args:
            message: Error message
            code: Error code
            details: Additional error details
        """
        self.message = message or "An error occurred in the Volume Forecast engine"
        self.code = code
        self.details = details
        super().__init__(self.message)

    def __str__(self):
        """String representation of the error."""
        if self.code:
            return f"[{self.code}] {self.message}"
        return self.message

    def to_dict(self):
        """Convert the exception to a dictionary."""
        error_dict = {
            'error': self.__class__.__name__,
            'message': self.message,
        }

        if self.code:
            error_dict['code'] = self.code

        if self.details:
            error_dict['details'] = self.details

        return error_dict


class ValidationError(ForecastPlanningError):
    """Exception raised for data validation errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Validation error"
        super().__init__(message, code, details)


class MalformedDateError(ValidationError):
    """Raised when a date cannot be mapped onto a fiscal period."""

    def __init__(self, message=None, code='MALFORMED_DATE', details=None):
        message = message or "Malformed period date"
        super().__init__(message, code, details)


class NotFoundError(ForecastPlanningError):
    """Exception raised when a requested resource is not found."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Resource not found"
        super().__init__(message, code, details)


class ScenarioNotFoundError(NotFoundError):
    """Raised when a scenario id does not resolve to a scenario."""

    def __init__(self, message=None, code='SCENARIO_NOT_FOUND', details=None):
        message = message or "Scenario not found"
        super().__init__(message, code, details)


class ForecastError(ForecastPlanningError):
    """Exception raised for forecasting-related errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Forecasting error"
        super().__init__(message, code, details)


class InsufficientHistoryError(ForecastError):
    """Raised when neither of the two preceding fiscal years has history."""

    def __init__(self, message=None, code='INSUFFICIENT_HISTORY', details=None):
        message = message or "Insufficient history to compute a base volume"
        super().__init__(message, code, details)


class MissingPriorForecastError(ForecastError):
    """Raised when the weighted fallback has no usable prior-year forecast."""

    def __init__(self, message=None, code='MISSING_PRIOR_FORECAST', details=None):
        message = message or "No prior-year forecast available for the weighted base"
        super().__init__(message, code, details)


class RunInProgressError(ForecastError):
    """Raised when a forecast run is already executing for the scenario."""

    def __init__(self, message=None, code='RUN_IN_PROGRESS', details=None):
        message = message or "A forecast run is already in progress for this scenario"
        super().__init__(message, code, details)


class ScenarioLockedError(ForecastPlanningError):
    """Raised when editing overrides or coefficients of a LOCKED scenario."""

    def __init__(self, message=None, code='SCENARIO_LOCKED', details=None):
        message = message or "Scenario is locked"
        super().__init__(message, code, details)


class EditNotAllowedError(ForecastPlanningError):
    """Raised when an override targets a month past the discontinuation date."""

    def __init__(self, message=None, code='EDIT_NOT_ALLOWED', details=None):
        message = message or "Edit not allowed for this period"
        super().__init__(message, code, details)


class ReportingError(ForecastPlanningError):
    """Exception raised for reporting errors."""

    def __init__(self, message=None, code=None, details=None):
        message = message or "Reporting error"
        super().__init__(message, code, details)
