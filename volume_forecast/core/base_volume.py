# volume_forecast/core/base_volume.py
import enum
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, NamedTuple, Optional, Tuple

from ..utils.fiscal_calendar import MONTHS_PER_YEAR

DEFAULT_HISTORY_WEIGHT = 0.75
DEFAULT_PRIOR_FORECAST_WEIGHT = 0.25

class BaseStrategy(enum.Enum):
    HISTORIC_PRIOR_YEAR = 'HISTORIC_PRIOR_YEAR'
    WEIGHTED_TWO_YEAR = 'WEIGHTED_TWO_YEAR'

    def __str__(self):
        return self.value

class VolumeSummary(NamedTuple):
    """Yearly volume of one channel/product and how many months it covers."""
    total: float
    months: int

EMPTY_SUMMARY = VolumeSummary(0.0, 0)

@dataclass
class BaseVolumePlan:
    """Outcome of base volume resolution for a whole run."""
    strategy: BaseStrategy
    details: str
    monthly_base: Dict[str, float] = field(default_factory=dict)
    base_volume_total: float = 0.0
    warnings: List[str] = field(default_factory=list)
    comparison_scenario_id: Optional[int] = None
    comparison_scenario_name: Optional[str] = None

    def monthly_base_for(self, channel_product_key: str) -> float:
        return self.monthly_base.get(channel_product_key, 0.0)

def summarize_volumes(rows: Iterable[Tuple[str, int, float]]) -> Dict[str, VolumeSummary]:
    """Sum volume and count distinct months per channel/product key.

    Args:
        rows: Iterable of (channel_product_key, month_index, volume)

    Returns:
        Dictionary of key -> VolumeSummary
    """
    totals: Dict[str, float] = {}
    months: Dict[str, set] = {}
    for key, month_index, volume in rows:
        totals[key] = totals.get(key, 0.0) + (volume or 0.0)
        months.setdefault(key, set()).add(month_index)

    return {key: VolumeSummary(totals[key], len(months[key])) for key in totals}

def incomplete_warning(label: str, channel_product_key: str, summary: VolumeSummary) -> Optional[str]:
    """Warning text for a positive-volume year that misses months."""
    if summary.total > 0 and summary.months < MONTHS_PER_YEAR:
        return f"{label} incomplete for {channel_product_key} ({summary.months}/{MONTHS_PER_YEAR} months)"
    return None

def calculate_direct_base(
    channel_product_key: str,
    history: VolumeSummary,
    fiscal_year: int
) -> Tuple[float, float, List[str]]:
    """Monthly base from a single prior year of history.

    Args:
        channel_product_key: Key being calculated (used in warnings)
        history: Prior-year history summary for the key
        fiscal_year: Fiscal year the history belongs to

    Returns:
        Tuple with monthly base, yearly volume contributed and warnings
    """
    warnings = []
    if history.total <= 0:
        # No sales and no data gap are indistinguishable here; base stays 0
        return 0.0, 0.0, warnings

    warning = incomplete_warning(f"FY{fiscal_year} history", channel_product_key, history)
    if warning:
        warnings.append(warning)

    return history.total / MONTHS_PER_YEAR, history.total, warnings

def calculate_weighted_base(
    channel_product_key: str,
    history: VolumeSummary,
    prior_forecast: VolumeSummary,
    history_fiscal_year: int,
    forecast_fiscal_year: int,
    history_weight: float = DEFAULT_HISTORY_WEIGHT,
    forecast_weight: float = DEFAULT_PRIOR_FORECAST_WEIGHT
) -> Tuple[float, float, List[str]]:
    """Monthly base blending two-years-back history with last year's forecast.

    Args:
        channel_product_key: Key being calculated (used in warnings)
        history: History summary for the year two before the target
        prior_forecast: Equivalent scenario's forecast summary for the prior year
        history_fiscal_year: Fiscal year of the history input
        forecast_fiscal_year: Fiscal year of the forecast input
        history_weight: Weight of the history input
        forecast_weight: Weight of the forecast input

    Returns:
        Tuple with monthly base, weighted yearly volume and warnings
    """
    warnings = []
    if history.total <= 0 and prior_forecast.total <= 0:
        return 0.0, 0.0, warnings

    for label, summary in (
        (f"FY{history_fiscal_year} history", history),
        (f"FY{forecast_fiscal_year} forecast", prior_forecast),
    ):
        warning = incomplete_warning(label, channel_product_key, summary)
        if warning:
            warnings.append(warning)

    weighted_volume = history_weight * history.total + forecast_weight * prior_forecast.total
    return weighted_volume / MONTHS_PER_YEAR, weighted_volume, warnings
