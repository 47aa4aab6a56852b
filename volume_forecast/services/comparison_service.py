# volume_forecast/services/comparison_service.py
import enum
from typing import Dict, List, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from volume_forecast.models import ForecastMonthly, ChannelProduct, Product
from volume_forecast.services.scenario_service import ScenarioService
from volume_forecast.exceptions import ReportingError
from volume_forecast.logging_setup import get_logger

logger = get_logger(__name__)

class GroupBy(enum.Enum):
    CHANNEL = 'CHANNEL'
    BRAND = 'BRAND'
    CATEGORY_MACRO = 'CATEGORY_MACRO'
    PRODUCT = 'PRODUCT'

class ComparisonService:
    """Diff of forecast output between two scenarios."""

    def __init__(self, session: Session, scenario_service: ScenarioService = None):
        self.session = session
        self.scenario_service = scenario_service or ScenarioService(session)

    def _totals_by_key(self, scenario_id: int) -> Dict[str, Tuple[float, float]]:
        rows = self.session.query(
            ForecastMonthly.channel_product_key,
            func.sum(ForecastMonthly.forecast_volume),
            func.sum(ForecastMonthly.forecast_volume_secondary)
        ).filter(
            ForecastMonthly.scenario_id == scenario_id
        ).group_by(
            ForecastMonthly.channel_product_key
        ).all()
        return {key: (volume or 0.0, secondary or 0.0) for key, volume, secondary in rows}

    def _group_for(self, key: str, channel_product, product, group_by: GroupBy) -> Tuple[str, str]:
        if channel_product is None or product is None:
            # Orphan output without master data
            return key, key

        if group_by == GroupBy.CHANNEL:
            return channel_product.channel_code, channel_product.channel_code
        if group_by == GroupBy.BRAND:
            label = product.brand or '(No brand)'
            return label, label
        if group_by == GroupBy.CATEGORY_MACRO:
            label = product.category_macro or '(No category)'
            return label, label
        return product.product_code, f"{product.product_code} - {product.description or ''}"

    def compare(self, scenario_a_id: int, scenario_b_id: int, group_by='BRAND') -> List[Dict]:
        """Compare the forecast totals of two scenarios.

        Args:
            scenario_a_id: Reference scenario
            scenario_b_id: Scenario compared against the reference
            group_by: CHANNEL, BRAND, CATEGORY_MACRO or PRODUCT

        Returns:
            Rows sorted by absolute volume delta, largest first. ``delta_percent``
            is None when the reference volume is zero and the other is not.
        """
        try:
            group_by = GroupBy(group_by.upper()) if isinstance(group_by, str) else GroupBy(group_by)
        except ValueError:
            raise ReportingError(f"Invalid group by option: {group_by}")

        scenario_a = self.scenario_service.get_scenario(scenario_a_id)
        scenario_b = self.scenario_service.get_scenario(scenario_b_id)
        if scenario_a.fiscal_year != scenario_b.fiscal_year:
            logger.warning(
                f"Comparing scenarios of different fiscal years: "
                f"FY{scenario_a.fiscal_year} vs FY{scenario_b.fiscal_year}"
            )

        totals_a = self._totals_by_key(scenario_a.id)
        totals_b = self._totals_by_key(scenario_b.id)

        channel_products = {
            cp.channel_product_key: cp for cp in self.session.query(ChannelProduct).all()
        }
        products = {p.product_code: p for p in self.session.query(Product).all()}

        groups: Dict[str, Dict] = {}
        for key in sorted(set(totals_a) | set(totals_b)):
            volume_a, secondary_a = totals_a.get(key, (0.0, 0.0))
            volume_b, secondary_b = totals_b.get(key, (0.0, 0.0))

            channel_product = channel_products.get(key)
            product = products.get(channel_product.product_code) if channel_product else None
            group_key, group_label = self._group_for(key, channel_product, product, group_by)

            row = groups.setdefault(group_key, {
                'group_key': group_key,
                'group_label': group_label,
                'volume_a': 0.0,
                'secondary_a': 0.0,
                'volume_b': 0.0,
                'secondary_b': 0.0,
                'details': []
            })
            row['volume_a'] += volume_a
            row['secondary_a'] += secondary_a
            row['volume_b'] += volume_b
            row['secondary_b'] += secondary_b
            row['details'].append({
                'channel_product_key': key,
                'product_code': channel_product.product_code if channel_product else key,
                'channel_code': channel_product.channel_code if channel_product else None,
                'volume_a': volume_a,
                'volume_b': volume_b,
                'delta_volume': volume_b - volume_a
            })

        results = []
        for row in groups.values():
            row['delta_volume'] = row['volume_b'] - row['volume_a']
            row['delta_secondary'] = row['secondary_b'] - row['secondary_a']
            if row['volume_a'] == 0:
                row['delta_percent'] = 0.0 if row['volume_b'] == 0 else None
            else:
                row['delta_percent'] = row['delta_volume'] / row['volume_a'] * 100.0
            results.append(row)

        results.sort(key=lambda r: abs(r['delta_volume']), reverse=True)
        return results
