from .equivalent_scenario import (
    normalize_scenario_name, find_equivalent_scenario, EQUIVALENCE_RULES
)
from .base_volume import (
    BaseStrategy, BaseVolumePlan, VolumeSummary, summarize_volumes,
    calculate_direct_base, calculate_weighted_base
)
from .monthly_forecast import (
    AppliedFactor, MonthlyForecast, apply_coefficients,
    calculate_month, calculate_monthly_forecasts
)
from .aggregation import calculate_growth_percent, deduplicate_warnings, summarize_forecast

__all__ = [
    'normalize_scenario_name',
    'find_equivalent_scenario',
    'EQUIVALENCE_RULES',
    'BaseStrategy',
    'BaseVolumePlan',
    'VolumeSummary',
    'summarize_volumes',
    'calculate_direct_base',
    'calculate_weighted_base',
    'AppliedFactor',
    'MonthlyForecast',
    'apply_coefficients',
    'calculate_month',
    'calculate_monthly_forecasts',
    'calculate_growth_percent',
    'deduplicate_warnings',
    'summarize_forecast'
]
