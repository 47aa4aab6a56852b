from .config import config
from .db import db, session_scope
from .logging_setup import logger, get_logger
from .exceptions import (
    ForecastPlanningError, ForecastError, ScenarioNotFoundError,
    InsufficientHistoryError, MissingPriorForecastError, MalformedDateError
)

__all__ = [
    'config',
    'db',
    'session_scope',
    'logger',
    'get_logger',
    'ForecastPlanningError',
    'ForecastError',
    'ScenarioNotFoundError',
    'InsufficientHistoryError',
    'MissingPriorForecastError',
    'MalformedDateError'
]
