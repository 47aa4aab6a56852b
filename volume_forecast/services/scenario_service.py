# volume_forecast/services/scenario_service.py
from typing import List, Optional

from sqlalchemy.orm import Session

from volume_forecast.models import (
    Scenario, ScenarioStatus, ScenarioCoefficient, OverrideBaseMonthly,
    ForecastMonthly, Variable, VariableCategory, AuditAction
)
from volume_forecast.core.equivalent_scenario import find_equivalent_scenario
from volume_forecast.utils.fiscal_calendar import MONTHS_PER_YEAR
from volume_forecast.services.audit_service import AuditService
from volume_forecast.exceptions import ScenarioNotFoundError, ValidationError
from volume_forecast.logging_setup import get_logger

logger = get_logger(__name__)

class ScenarioService:
    """Service for scenario lookup and lifecycle operations."""

    def __init__(self, session: Session, audit_service: Optional[AuditService] = None):
        """Initialize the scenario service.

        Args:
            session: Database session
            audit_service: Optional audit service (one is created if omitted)
        """
        self.session = session
        self.audit = audit_service or AuditService(session)

    def get_scenario(self, scenario_id: int) -> Scenario:
        """Get a scenario by id.

        Raises:
            ScenarioNotFoundError: If the scenario does not exist
        """
        scenario = self.session.get(Scenario, scenario_id) if scenario_id is not None else None
        if scenario is None:
            raise ScenarioNotFoundError(
                f"Scenario {scenario_id} not found",
                details={'scenario_id': scenario_id}
            )
        return scenario

    def list_scenarios(self, fiscal_year: Optional[int] = None) -> List[Scenario]:
        query = self.session.query(Scenario)
        if fiscal_year is not None:
            query = query.filter(Scenario.fiscal_year == fiscal_year)
        return query.order_by(Scenario.id).all()

    def has_forecast(self, scenario_id: int) -> bool:
        """Check whether a scenario has any persisted forecast output."""
        return self.session.query(ForecastMonthly.id).filter(
            ForecastMonthly.scenario_id == scenario_id
        ).first() is not None

    def find_equivalent_scenario(self, scenario: Scenario, fiscal_year: int) -> Optional[Scenario]:
        """Find the scenario of ``fiscal_year`` in the same planning family.

        Returns:
            Matching scenario, or None if the year has no scenarios
        """
        match = find_equivalent_scenario(scenario, self.list_scenarios(), fiscal_year)
        if match:
            logger.info(f"Scenario '{scenario.name}' resolved to '{match.name}' for FY{fiscal_year}")
        else:
            logger.info(f"No scenario found for FY{fiscal_year} equivalent to '{scenario.name}'")
        return match

    def create_scenario(
        self,
        name: str,
        fiscal_year: int,
        description: Optional[str] = None,
        copy_coefficients_from: Optional[int] = None
    ) -> Scenario:
        """Create a DRAFT scenario with its coefficient table.

        Coefficients are copied from ``copy_coefficients_from`` when given,
        otherwise seeded at 1.0 for every active variable category and month.
        """
        if not name or not name.strip():
            raise ValidationError("Scenario name is required")

        scenario = Scenario(
            name=name.strip(),
            fiscal_year=fiscal_year,
            status=ScenarioStatus.DRAFT,
            description=description
        )
        self.session.add(scenario)
        self.session.flush()

        if copy_coefficients_from is not None:
            source = self.get_scenario(copy_coefficients_from)
            coefficients = self._copy_coefficients(source.id, scenario.id)
        else:
            coefficients = self._seed_coefficients(scenario.id)

        self.audit.record(
            AuditAction.CREATE,
            f"Scenario created: {scenario.name}",
            entity_type='Scenario',
            entity_id=scenario.id,
            after={'name': scenario.name, 'fiscal_year': fiscal_year, 'coefficients': coefficients}
        )
        logger.info(f"Created scenario {scenario.id} '{scenario.name}' FY{fiscal_year}")
        return scenario

    def clone_scenario(self, source_scenario_id: int, name: str, fiscal_year: int) -> Scenario:
        """Clone a scenario into a (possibly different) fiscal year.

        The clone records its lineage, copies the coefficients, and copies the
        overrides re-stamped to the new fiscal year.
        """
        source = self.get_scenario(source_scenario_id)
        if not name or not name.strip():
            raise ValidationError("Scenario name is required")

        scenario = Scenario(
            name=name.strip(),
            fiscal_year=fiscal_year,
            status=ScenarioStatus.DRAFT,
            description=source.description,
            source_scenario_id=source.id
        )
        self.session.add(scenario)
        self.session.flush()

        coefficients = self._copy_coefficients(source.id, scenario.id)

        overrides = self.session.query(OverrideBaseMonthly).filter(
            OverrideBaseMonthly.scenario_id == source.id
        ).all()
        for override in overrides:
            self.session.add(OverrideBaseMonthly(
                scenario_id=scenario.id,
                channel_product_key=override.channel_product_key,
                fiscal_year=fiscal_year,
                month_index=override.month_index,
                base_volume=override.base_volume
            ))
        self.session.flush()

        self.audit.record(
            AuditAction.CLONE,
            f"Scenario cloned from {source.name}",
            entity_type='Scenario',
            entity_id=scenario.id,
            after={
                'source_scenario_id': source.id,
                'fiscal_year': fiscal_year,
                'coefficients': coefficients,
                'overrides': len(overrides)
            }
        )
        logger.info(f"Cloned scenario {source.id} into {scenario.id} '{scenario.name}' FY{fiscal_year}")
        return scenario

    def set_status(self, scenario_id: int, status: ScenarioStatus) -> Scenario:
        """Lock or unlock a scenario."""
        scenario = self.get_scenario(scenario_id)
        if isinstance(status, str):
            status = ScenarioStatus.from_string(status)

        if scenario.status == status:
            return scenario

        previous = scenario.status
        scenario.status = status
        self.session.flush()

        action = AuditAction.LOCK if status == ScenarioStatus.LOCKED else AuditAction.UNLOCK
        self.audit.record(
            action,
            f"Scenario {'locked' if action == AuditAction.LOCK else 'unlocked'}",
            entity_type='Scenario',
            entity_id=scenario.id,
            before={'status': previous.value},
            after={'status': status.value}
        )
        return scenario

    def _copy_coefficients(self, source_id: int, target_id: int) -> int:
        rows = self.session.query(ScenarioCoefficient).filter(
            ScenarioCoefficient.scenario_id == source_id
        ).all()
        for row in rows:
            self.session.add(ScenarioCoefficient(
                scenario_id=target_id,
                variable_code=row.variable_code,
                category_code=row.category_code,
                month_index=row.month_index,
                value=row.value
            ))
        self.session.flush()
        return len(rows)

    def _seed_coefficients(self, scenario_id: int) -> int:
        categories = self.session.query(VariableCategory).join(
            Variable, Variable.code == VariableCategory.variable_code
        ).filter(
            Variable.active == True,
            VariableCategory.active == True
        ).all()

        count = 0
        for category in categories:
            for month_index in range(1, MONTHS_PER_YEAR + 1):
                self.session.add(ScenarioCoefficient(
                    scenario_id=scenario_id,
                    variable_code=category.variable_code,
                    category_code=category.code,
                    month_index=month_index,
                    value=1.0
                ))
                count += 1
        self.session.flush()
        return count
