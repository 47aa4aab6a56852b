from .audit_service import AuditService
from .scenario_service import ScenarioService
from .base_volume_service import BaseVolumeResolver
from .forecast_service import ForecastService, ForecastReport
from .override_service import OverrideService
from .comparison_service import ComparisonService, GroupBy

__all__ = [
    'AuditService',
    'ScenarioService',
    'BaseVolumeResolver',
    'ForecastService',
    'ForecastReport',
    'OverrideService',
    'ComparisonService',
    'GroupBy'
]
