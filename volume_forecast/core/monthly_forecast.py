# volume_forecast/core/monthly_forecast.py
from dataclasses import dataclass, field
from functools import reduce
from typing import Dict, List, Optional, Sequence, Tuple

from ..utils.fiscal_calendar import MONTHS_PER_YEAR, DiscontinuationMarker, is_edit_allowed

DEFAULT_COEFFICIENT = 1.0
DEFAULT_SECONDARY_UNIT_RATIO = 9.0

CoefficientTable = Dict[Tuple[str, str, int], float]

@dataclass(frozen=True)
class AppliedFactor:
    """One variable's contribution to a month's multiplier."""
    variable_code: str
    value: float
    category_code: Optional[str] = None
    is_missing: bool = False

    def to_dict(self) -> Dict:
        return {
            'variable_code': self.variable_code,
            'category_code': self.category_code,
            'value': self.value,
            'is_missing': self.is_missing
        }

@dataclass
class MonthlyForecast:
    channel_product_key: str
    fiscal_year: int
    month_index: int
    base_volume_used: float
    forecast_volume: float
    forecast_volume_secondary: float
    is_discontinued: bool = False
    factors: List[AppliedFactor] = field(default_factory=list)

def apply_coefficients(
    variable_codes: Sequence[str],
    assignments: Dict[str, str],
    coefficients: CoefficientTable,
    month_index: int
) -> Tuple[float, List[AppliedFactor]]:
    """Fold the active variables into a single multiplier for one month.

    A variable the product has no category for contributes 1.0 and is
    recorded with ``is_missing`` set.

    Args:
        variable_codes: Active variable codes, in application order
        assignments: Product's variable_code -> category_code
        coefficients: (variable_code, category_code, month_index) -> value
        month_index: Fiscal month index

    Returns:
        Tuple with the combined multiplier and the applied factors
    """
    def step(acc, variable_code):
        multiplier, factors = acc
        category_code = assignments.get(variable_code)
        if category_code is None:
            return multiplier, factors + [
                AppliedFactor(variable_code, DEFAULT_COEFFICIENT, is_missing=True)
            ]
        value = coefficients.get((variable_code, category_code, month_index), DEFAULT_COEFFICIENT)
        return multiplier * value, factors + [AppliedFactor(variable_code, value, category_code)]

    return reduce(step, variable_codes, (1.0, []))

def calculate_month(
    channel_product_key: str,
    fiscal_year: int,
    month_index: int,
    monthly_base: float,
    override: Optional[float],
    variable_codes: Sequence[str],
    assignments: Dict[str, str],
    coefficients: CoefficientTable,
    marker: Optional[DiscontinuationMarker] = None,
    secondary_unit_ratio: float = DEFAULT_SECONDARY_UNIT_RATIO
) -> MonthlyForecast:
    """Calculate the forecast for one channel/product and month."""
    effective_base = override if override is not None else monthly_base

    multiplier, factors = apply_coefficients(variable_codes, assignments, coefficients, month_index)
    forecast = effective_base * multiplier

    discontinued = not is_edit_allowed(marker, fiscal_year, month_index)
    if discontinued:
        forecast = 0.0

    return MonthlyForecast(
        channel_product_key=channel_product_key,
        fiscal_year=fiscal_year,
        month_index=month_index,
        base_volume_used=effective_base,
        forecast_volume=forecast,
        forecast_volume_secondary=forecast * secondary_unit_ratio,
        is_discontinued=discontinued,
        factors=factors
    )

def calculate_monthly_forecasts(
    channel_product_key: str,
    fiscal_year: int,
    monthly_base: float,
    overrides: Dict[int, float],
    variable_codes: Sequence[str],
    assignments: Dict[str, str],
    coefficients: CoefficientTable,
    marker: Optional[DiscontinuationMarker] = None,
    secondary_unit_ratio: float = DEFAULT_SECONDARY_UNIT_RATIO
) -> List[MonthlyForecast]:
    """Calculate all twelve months of a channel/product.

    Args:
        channel_product_key: Channel/product key
        fiscal_year: Target fiscal year
        monthly_base: Computed monthly base volume
        overrides: month_index -> manual base volume for the target year
        variable_codes: Active variable codes, in application order
        assignments: Product's variable_code -> category_code
        coefficients: Scenario coefficient table
        marker: Optional discontinuation marker
        secondary_unit_ratio: Multiplier from forecast units to secondary units

    Returns:
        List of twelve MonthlyForecast records
    """
    return [
        calculate_month(
            channel_product_key,
            fiscal_year,
            month_index,
            monthly_base,
            overrides.get(month_index),
            variable_codes,
            assignments,
            coefficients,
            marker,
            secondary_unit_ratio
        )
        for month_index in range(1, MONTHS_PER_YEAR + 1)
    ]
