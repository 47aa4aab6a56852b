# volume_forecast/core/aggregation.py
from typing import Dict, Iterable, List, Sequence

import numpy as np

from ..utils.fiscal_calendar import MONTHS_PER_YEAR

def calculate_growth_percent(forecast_total: float, base_total: float) -> float:
    """Growth of the forecast over the base volume, in percent.

    Returns 0 when there is no base volume to compare against.
    """
    if not base_total:
        return 0.0
    return (forecast_total - base_total) / base_total * 100.0

def deduplicate_warnings(warnings: Iterable[str]) -> List[str]:
    """Drop repeated warnings, keeping first-seen order."""
    return list(dict.fromkeys(w for w in warnings if w))

def monthly_profile(records: Sequence) -> np.ndarray:
    """Total forecast volume per fiscal month (index 0 = April)."""
    profile = np.zeros(MONTHS_PER_YEAR)
    for record in records:
        profile[record.month_index - 1] += record.forecast_volume
    return profile

def summarize_forecast(records: Sequence, base_volume_total: float) -> Dict:
    """Aggregate forecast records into report totals.

    Args:
        records: Monthly forecast records (anything with month_index and forecast_volume)
        base_volume_total: Yearly base volume from base resolution

    Returns:
        Dictionary with forecast_volume, base_volume, growth_percent and monthly_profile
    """
    profile = monthly_profile(records)
    forecast_total = float(profile.sum())

    return {
        'forecast_volume': forecast_total,
        'base_volume': float(base_volume_total),
        'growth_percent': calculate_growth_percent(forecast_total, base_volume_total),
        'monthly_profile': profile.tolist()
    }
