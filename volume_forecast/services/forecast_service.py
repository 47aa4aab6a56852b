# volume_forecast/services/forecast_service.py
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from sqlalchemy.orm import Session

from volume_forecast.config import config
from volume_forecast.models import (
    Scenario, Product, ChannelProduct, Variable, ProductVariableAssignment,
    ScenarioCoefficient, OverrideBaseMonthly, ForecastMonthly, AuditAction
)
from volume_forecast.core.base_volume import BaseVolumePlan
from volume_forecast.core.monthly_forecast import MonthlyForecast, calculate_monthly_forecasts
from volume_forecast.core.aggregation import deduplicate_warnings, summarize_forecast
from volume_forecast.utils.fiscal_calendar import marker_from_fields
from volume_forecast.services.audit_service import AuditService
from volume_forecast.services.scenario_service import ScenarioService
from volume_forecast.services.base_volume_service import BaseVolumeResolver
from volume_forecast.exceptions import (
    ForecastPlanningError, MalformedDateError, RunInProgressError
)
from volume_forecast.logging_setup import get_logger, logger as log_manager

logger = get_logger(__name__)

_active_runs: Set[int] = set()
_active_runs_guard = threading.Lock()

@contextmanager
def scenario_run_lock(scenario_id: int):
    """Serialize forecast runs per scenario within this process.

    Raises:
        RunInProgressError: If another run holds the scenario
    """
    with _active_runs_guard:
        if scenario_id in _active_runs:
            raise RunInProgressError(
                f"A forecast run is already in progress for scenario {scenario_id}",
                details={'scenario_id': scenario_id}
            )
        _active_runs.add(scenario_id)
    try:
        yield
    finally:
        with _active_runs_guard:
            _active_runs.discard(scenario_id)

@dataclass
class ForecastReport:
    """Result of a forecast run."""
    scenario_id: int
    totals: Dict[str, Any]
    metadata: Dict[str, Any]
    records: List[ForecastMonthly] = field(default_factory=list)

    def to_dict(self, include_records: bool = False) -> Dict:
        result = {
            'scenario_id': self.scenario_id,
            'totals': dict(self.totals),
            'metadata': dict(self.metadata)
        }
        if include_records:
            result['records'] = [record.to_dict() for record in self.records]
        return result

@dataclass
class _RunInputs:
    """Scenario configuration read once at the start of a run."""
    channel_products: List[ChannelProduct]
    variable_codes: List[str]
    assignments: Dict[str, Dict[str, str]]
    coefficients: Dict
    overrides: Dict[str, Dict[int, float]]

class ForecastService:
    """Service running the scenario volume forecast."""

    def __init__(
        self,
        session: Session,
        scenario_service: Optional[ScenarioService] = None,
        base_volume_resolver: Optional[BaseVolumeResolver] = None,
        audit_service: Optional[AuditService] = None
    ):
        """Initialize the forecast service.

        Args:
            session: Database session
            scenario_service: Optional scenario service
            base_volume_resolver: Optional base volume resolver
            audit_service: Optional audit service
        """
        self.session = session
        self.audit = audit_service or AuditService(session)
        self.scenario_service = scenario_service or ScenarioService(session, self.audit)
        self.base_volume_resolver = base_volume_resolver or BaseVolumeResolver(
            session, self.scenario_service
        )
        self.secondary_unit_ratio = config.forecast_rules['secondary_unit_ratio']

    def run_forecast(self, scenario_id: int, commit: bool = False) -> ForecastReport:
        """Generate and persist the twelve-month forecast of a scenario.

        Prior output of the scenario is replaced and one GENERATE audit
        event is appended. Both writes happen in the session's transaction;
        with ``commit`` the transaction is committed before the scenario's
        run lock is released. Callers passing ``commit=False`` must not let
        another run of the same scenario start before they commit.

        Args:
            scenario_id: Scenario id
            commit: Commit the session while still holding the run lock

        Returns:
            ForecastReport with totals, metadata and the persisted records

        Raises:
            ScenarioNotFoundError: If the scenario does not exist
            InsufficientHistoryError: If no history exists for either prior year
            MissingPriorForecastError: If the weighted base has no prior forecast
            RunInProgressError: If the scenario is already being forecast
        """
        run_info = log_manager.run_start_log('run_forecast', scenario_id, commit=commit)

        try:
            with scenario_run_lock(scenario_id):
                report = self._run(scenario_id)
                if commit:
                    self.session.commit()
        except Exception as e:
            log_manager.log_exception(__name__, e, f"Forecast failed for scenario {scenario_id}")
            result_info = e.to_dict() if isinstance(e, ForecastPlanningError) else {'error': repr(e)}
            log_manager.run_end_log(run_info, success=False, result_info=result_info)
            raise

        log_manager.run_end_log(run_info, success=True, result_info=report.totals)
        return report

    def _run(self, scenario_id: int) -> ForecastReport:
        scenario = self.scenario_service.get_scenario(scenario_id)
        logger.info(f"Running forecast for scenario {scenario.id} '{scenario.name}' FY{scenario.fiscal_year}")

        inputs = self._load_inputs(scenario)
        keys = [cp.channel_product_key for cp in inputs.channel_products]
        plan = self.base_volume_resolver.resolve(scenario, keys)

        warnings = list(plan.warnings)
        monthly = self._calculate(scenario, inputs, plan, warnings)

        summary = summarize_forecast(monthly, plan.base_volume_total)
        totals = {
            'forecast_volume': summary['forecast_volume'],
            'base_volume': summary['base_volume'],
            'growth_percent': summary['growth_percent']
        }
        metadata = {
            'strategy_used': plan.strategy.value,
            'strategy_details': plan.details,
            'warnings': deduplicate_warnings(warnings),
            'comparison_scenario_name': plan.comparison_scenario_name,
            'monthly_profile': summary['monthly_profile']
        }

        records = self._replace_output(scenario.id, monthly)

        self.audit.record(
            AuditAction.GENERATE,
            f"Forecast generated for scenario {scenario.name}",
            entity_type='Scenario',
            entity_id=scenario.id,
            after={
                'strategy_used': plan.strategy.value,
                'records': len(records),
                'forecast_volume': totals['forecast_volume'],
                'growth_percent': totals['growth_percent'],
                'warnings': len(metadata['warnings'])
            }
        )

        logger.info(
            f"Scenario {scenario.id}: {len(records)} records, total {totals['forecast_volume']:.2f}, "
            f"growth {totals['growth_percent']:.2f}%, {len(metadata['warnings'])} warnings"
        )
        return ForecastReport(scenario.id, totals, metadata, records)

    def _load_inputs(self, scenario: Scenario) -> _RunInputs:
        channel_products = self.session.query(ChannelProduct).join(
            Product, Product.product_code == ChannelProduct.product_code
        ).filter(
            ChannelProduct.active == True,
            Product.active == True
        ).order_by(ChannelProduct.channel_product_key).all()

        variable_codes = [
            code for (code,) in self.session.query(Variable.code).filter(
                Variable.active == True
            ).order_by(Variable.code).all()
        ]

        assignments: Dict[str, Dict[str, str]] = {}
        for row in self.session.query(ProductVariableAssignment).all():
            assignments.setdefault(row.product_code, {})[row.variable_code] = row.category_code

        coefficients = {
            (row.variable_code, row.category_code, row.month_index): row.value
            for row in self.session.query(ScenarioCoefficient).filter(
                ScenarioCoefficient.scenario_id == scenario.id
            ).all()
        }

        overrides: Dict[str, Dict[int, float]] = {}
        for row in self.session.query(OverrideBaseMonthly).filter(
            OverrideBaseMonthly.scenario_id == scenario.id,
            OverrideBaseMonthly.fiscal_year == scenario.fiscal_year
        ).all():
            overrides.setdefault(row.channel_product_key, {})[row.month_index] = row.base_volume

        return _RunInputs(channel_products, variable_codes, assignments, coefficients, overrides)

    def _calculate(
        self,
        scenario: Scenario,
        inputs: _RunInputs,
        plan: BaseVolumePlan,
        warnings: List[str]
    ) -> List[MonthlyForecast]:
        monthly: List[MonthlyForecast] = []

        for channel_product in inputs.channel_products:
            key = channel_product.channel_product_key
            try:
                marker = marker_from_fields(
                    channel_product.discontinue_fiscal_year,
                    channel_product.discontinue_month_index
                )
            except MalformedDateError as e:
                warnings.append(f"Ignoring malformed discontinuation date for {key}: {e.message}")
                marker = None

            monthly.extend(calculate_monthly_forecasts(
                key,
                scenario.fiscal_year,
                plan.monthly_base_for(key),
                inputs.overrides.get(key, {}),
                inputs.variable_codes,
                inputs.assignments.get(channel_product.product_code, {}),
                inputs.coefficients,
                marker,
                self.secondary_unit_ratio
            ))

        return monthly

    def _replace_output(self, scenario_id: int, monthly: List[MonthlyForecast]) -> List[ForecastMonthly]:
        """Swap the scenario's output rows for a freshly built set."""
        records = [
            ForecastMonthly(
                scenario_id=scenario_id,
                channel_product_key=m.channel_product_key,
                fiscal_year=m.fiscal_year,
                month_index=m.month_index,
                base_volume_used=m.base_volume_used,
                forecast_volume=m.forecast_volume,
                forecast_volume_secondary=m.forecast_volume_secondary,
                is_discontinued=m.is_discontinued,
                factors_applied=[factor.to_dict() for factor in m.factors]
            )
            for m in monthly
        ]

        deleted = self.session.query(ForecastMonthly).filter(
            ForecastMonthly.scenario_id == scenario_id
        ).delete()
        self.session.add_all(records)
        self.session.flush()

        logger.debug(f"Scenario {scenario_id}: replaced {deleted} output rows with {len(records)}")
        return records

    def get_forecast(self, scenario_id: int) -> List[ForecastMonthly]:
        """Get the persisted output records of a scenario."""
        return self.session.query(ForecastMonthly).filter(
            ForecastMonthly.scenario_id == scenario_id
        ).order_by(
            ForecastMonthly.channel_product_key,
            ForecastMonthly.fiscal_year,
            ForecastMonthly.month_index
        ).all()
