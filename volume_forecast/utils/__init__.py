from .fiscal_calendar import (
    DiscontinuationMarker, to_fiscal_period, fiscal_period_for_date,
    parse_period_date, fiscal_period_to_date, get_month_label,
    is_edit_allowed, marker_from_fields
)

__all__ = [
    'DiscontinuationMarker',
    'to_fiscal_period',
    'fiscal_period_for_date',
    'parse_period_date',
    'fiscal_period_to_date',
    'get_month_label',
    'is_edit_allowed',
    'marker_from_fields'
]
