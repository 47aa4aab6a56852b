# volume_forecast/services/base_volume_service.py
from typing import Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from volume_forecast.config import config
from volume_forecast.models import Scenario, HistoricMonthly, ForecastMonthly
from volume_forecast.core.base_volume import (
    BaseStrategy, BaseVolumePlan, VolumeSummary, EMPTY_SUMMARY,
    summarize_volumes, calculate_direct_base, calculate_weighted_base
)
from volume_forecast.services.scenario_service import ScenarioService
from volume_forecast.exceptions import InsufficientHistoryError, MissingPriorForecastError
from volume_forecast.logging_setup import get_logger

logger = get_logger(__name__)

class BaseVolumeResolver:
    """Chooses the base volume strategy for a run and computes monthly bases."""

    def __init__(
        self,
        session: Session,
        scenario_service: Optional[ScenarioService] = None,
        history_weight: Optional[float] = None,
        prior_forecast_weight: Optional[float] = None
    ):
        """Initialize the resolver.

        Args:
            session: Database session
            scenario_service: Service used for equivalent scenario lookup
            history_weight: Weight of two-years-back history in the weighted strategy
            prior_forecast_weight: Weight of the prior-year forecast in the weighted strategy
        """
        self.session = session
        self.scenario_service = scenario_service or ScenarioService(session)

        rules = config.forecast_rules
        self.history_weight = rules['history_weight'] if history_weight is None else history_weight
        self.prior_forecast_weight = (
            rules['prior_forecast_weight'] if prior_forecast_weight is None else prior_forecast_weight
        )

    def has_history(self, fiscal_year: int) -> bool:
        """Check whether any historic record exists for a fiscal year."""
        return self.session.query(HistoricMonthly.id).filter(
            HistoricMonthly.fiscal_year == fiscal_year
        ).first() is not None

    def history_summary(self, fiscal_year: int) -> Dict[str, VolumeSummary]:
        """Per-key history totals for a fiscal year."""
        rows = self.session.query(
            HistoricMonthly.channel_product_key,
            HistoricMonthly.month_index,
            HistoricMonthly.volume
        ).filter(
            HistoricMonthly.fiscal_year == fiscal_year
        ).all()
        return summarize_volumes(rows)

    def forecast_summary(self, scenario_id: int, fiscal_year: int) -> Dict[str, VolumeSummary]:
        """Per-key forecast totals of a scenario for a fiscal year."""
        rows = self.session.query(
            ForecastMonthly.channel_product_key,
            ForecastMonthly.month_index,
            ForecastMonthly.forecast_volume
        ).filter(
            ForecastMonthly.scenario_id == scenario_id,
            ForecastMonthly.fiscal_year == fiscal_year
        ).all()
        return summarize_volumes(rows)

    def resolve(self, scenario: Scenario, channel_product_keys: Sequence[str]) -> BaseVolumePlan:
        """Resolve the base volume plan for a scenario.

        Args:
            scenario: Scenario being forecast
            channel_product_keys: Active channel/product keys of the run

        Returns:
            BaseVolumePlan with strategy, monthly bases, base volume total and warnings

        Raises:
            InsufficientHistoryError: If neither of the two prior years has history
            MissingPriorForecastError: If the weighted strategy has no usable prior forecast
        """
        target_year = scenario.fiscal_year
        previous_year = target_year - 1

        if self.has_history(previous_year):
            return self._resolve_direct(previous_year, channel_product_keys)

        return self._resolve_weighted(scenario, channel_product_keys)

    def _resolve_direct(self, previous_year: int, keys: Sequence[str]) -> BaseVolumePlan:
        logger.info(f"Using FY{previous_year} history as base")
        plan = BaseVolumePlan(
            strategy=BaseStrategy.HISTORIC_PRIOR_YEAR,
            details=f"Monthly base calculated from FY{previous_year} actual history."
        )

        history = self.history_summary(previous_year)
        for key in keys:
            monthly_base, yearly_volume, warnings = calculate_direct_base(
                key, history.get(key, EMPTY_SUMMARY), previous_year
            )
            plan.monthly_base[key] = monthly_base
            plan.base_volume_total += yearly_volume
            plan.warnings.extend(warnings)

        return plan

    def _resolve_weighted(self, scenario: Scenario, keys: Sequence[str]) -> BaseVolumePlan:
        previous_year = scenario.fiscal_year - 1
        history_year = scenario.fiscal_year - 2

        if not self.has_history(history_year):
            raise InsufficientHistoryError(
                f"No history exists for FY{previous_year} or FY{history_year}; "
                f"cannot calculate a base volume.",
                details={'fiscal_years': [previous_year, history_year]}
            )

        equivalent = self.scenario_service.find_equivalent_scenario(scenario, previous_year)
        if equivalent is None:
            raise MissingPriorForecastError(
                f"FY{previous_year} history is missing, so the weighted base needs an "
                f"equivalent FY{previous_year} scenario with a forecast. None was found.",
                details={'fiscal_year': previous_year}
            )

        if not self.scenario_service.has_forecast(equivalent.id):
            raise MissingPriorForecastError(
                f"Prior scenario '{equivalent.name}' (FY{previous_year}) has no forecast. "
                f"Generate its forecast first to use it as a base.",
                details={'fiscal_year': previous_year, 'scenario_id': equivalent.id,
                         'scenario_name': equivalent.name}
            )

        history_pct = round(self.history_weight * 100)
        forecast_pct = round(self.prior_forecast_weight * 100)
        logger.info(
            f"Using weighted base: {history_pct}% FY{history_year} history + "
            f"{forecast_pct}% FY{previous_year} forecast of '{equivalent.name}'"
        )
        plan = BaseVolumePlan(
            strategy=BaseStrategy.WEIGHTED_TWO_YEAR,
            details=(
                f"Base {history_pct}% FY{history_year} history + {forecast_pct}% "
                f"FY{previous_year} forecast (scenario: {equivalent.name})."
            ),
            comparison_scenario_id=equivalent.id,
            comparison_scenario_name=equivalent.name
        )

        history = self.history_summary(history_year)
        prior_forecast = self.forecast_summary(equivalent.id, previous_year)
        for key in keys:
            monthly_base, yearly_volume, warnings = calculate_weighted_base(
                key,
                history.get(key, EMPTY_SUMMARY),
                prior_forecast.get(key, EMPTY_SUMMARY),
                history_year,
                previous_year,
                self.history_weight,
                self.prior_forecast_weight
            )
            plan.monthly_base[key] = monthly_base
            plan.base_volume_total += yearly_volume
            plan.warnings.extend(warnings)

        return plan
