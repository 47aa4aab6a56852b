# volume_forecast/services/override_service.py
from typing import Optional

from sqlalchemy.orm import Session

from volume_forecast.models import (
    Scenario, ChannelProduct, OverrideBaseMonthly, ScenarioCoefficient, AuditAction
)
from volume_forecast.utils.fiscal_calendar import (
    MONTHS_PER_YEAR, get_month_label, is_edit_allowed, marker_from_fields
)
from volume_forecast.services.audit_service import AuditService
from volume_forecast.services.scenario_service import ScenarioService
from volume_forecast.exceptions import (
    NotFoundError, ValidationError, ScenarioLockedError, EditNotAllowedError
)
from volume_forecast.logging_setup import get_logger

logger = get_logger(__name__)

def _validate_month_index(month_index: int):
    if month_index < 1 or month_index > MONTHS_PER_YEAR:
        raise ValidationError(
            f"Month index must be between 1 and {MONTHS_PER_YEAR}, got {month_index}",
            details={'month_index': month_index}
        )

class OverrideService:
    """Editing of scenario overrides and coefficients."""

    def __init__(
        self,
        session: Session,
        scenario_service: Optional[ScenarioService] = None,
        audit_service: Optional[AuditService] = None
    ):
        self.session = session
        self.audit = audit_service or AuditService(session)
        self.scenario_service = scenario_service or ScenarioService(session, self.audit)

    def _editable_scenario(self, scenario_id: int) -> Scenario:
        scenario = self.scenario_service.get_scenario(scenario_id)
        if scenario.is_locked:
            raise ScenarioLockedError(
                f"Scenario '{scenario.name}' is locked; unlock it to edit",
                details={'scenario_id': scenario.id}
            )
        return scenario

    def _channel_product(self, channel_product_key: str) -> ChannelProduct:
        channel_product = self.session.query(ChannelProduct).filter(
            ChannelProduct.channel_product_key == channel_product_key
        ).first()
        if channel_product is None:
            raise NotFoundError(
                f"Channel product {channel_product_key} not found",
                details={'channel_product_key': channel_product_key}
            )
        return channel_product

    def _find_override(self, scenario: Scenario, channel_product_key: str, month_index: int):
        return self.session.query(OverrideBaseMonthly).filter(
            OverrideBaseMonthly.scenario_id == scenario.id,
            OverrideBaseMonthly.channel_product_key == channel_product_key,
            OverrideBaseMonthly.fiscal_year == scenario.fiscal_year,
            OverrideBaseMonthly.month_index == month_index
        ).first()

    def set_override(
        self,
        scenario_id: int,
        channel_product_key: str,
        month_index: int,
        base_volume: float
    ) -> OverrideBaseMonthly:
        """Create or update a manual base volume for one month.

        Raises:
            ScenarioLockedError: If the scenario is locked
            EditNotAllowedError: If the month is past the discontinuation date
            ValidationError: If the month or volume is invalid
        """
        _validate_month_index(month_index)
        if base_volume is None or base_volume < 0:
            raise ValidationError(
                f"Override volume must be zero or positive, got {base_volume}",
                details={'base_volume': base_volume}
            )

        scenario = self._editable_scenario(scenario_id)
        channel_product = self._channel_product(channel_product_key)

        marker = marker_from_fields(
            channel_product.discontinue_fiscal_year,
            channel_product.discontinue_month_index
        )
        if not is_edit_allowed(marker, scenario.fiscal_year, month_index):
            raise EditNotAllowedError(
                f"{channel_product_key} is discontinued after FY{marker.fiscal_year} "
                f"{get_month_label(marker.month_index)}",
                details={'channel_product_key': channel_product_key,
                         'fiscal_year': scenario.fiscal_year, 'month_index': month_index}
            )

        override = self._find_override(scenario, channel_product_key, month_index)
        before = {'base_volume': override.base_volume} if override else None

        if override:
            override.base_volume = base_volume
        else:
            override = OverrideBaseMonthly(
                scenario_id=scenario.id,
                channel_product_key=channel_product_key,
                fiscal_year=scenario.fiscal_year,
                month_index=month_index,
                base_volume=base_volume
            )
            self.session.add(override)
        self.session.flush()

        self.audit.record(
            AuditAction.UPDATE,
            f"Override set for {channel_product_key} month {month_index} in scenario {scenario.name}",
            entity_type='Override',
            entity_id=override.id,
            before=before,
            after={'base_volume': base_volume}
        )
        return override

    def clear_override(self, scenario_id: int, channel_product_key: str, month_index: int) -> bool:
        """Remove a manual base volume.

        Returns:
            True if an override was removed
        """
        _validate_month_index(month_index)
        scenario = self._editable_scenario(scenario_id)

        override = self._find_override(scenario, channel_product_key, month_index)
        if override is None:
            return False

        before = {'base_volume': override.base_volume}
        override_id = override.id
        self.session.delete(override)
        self.session.flush()

        self.audit.record(
            AuditAction.DELETE,
            f"Override removed for {channel_product_key} month {month_index}",
            entity_type='Override',
            entity_id=override_id,
            before=before
        )
        return True

    def set_coefficient(
        self,
        scenario_id: int,
        variable_code: str,
        category_code: str,
        month_index: int,
        value: float
    ) -> ScenarioCoefficient:
        """Create or update a coefficient of a DRAFT scenario."""
        _validate_month_index(month_index)
        if value is None or value < 0:
            raise ValidationError(
                f"Coefficient must be zero or positive, got {value}",
                details={'value': value}
            )

        scenario = self._editable_scenario(scenario_id)

        coefficient = self.session.query(ScenarioCoefficient).filter(
            ScenarioCoefficient.scenario_id == scenario.id,
            ScenarioCoefficient.variable_code == variable_code,
            ScenarioCoefficient.category_code == category_code,
            ScenarioCoefficient.month_index == month_index
        ).first()
        before = {'value': coefficient.value} if coefficient else None

        if coefficient:
            coefficient.value = value
        else:
            coefficient = ScenarioCoefficient(
                scenario_id=scenario.id,
                variable_code=variable_code,
                category_code=category_code,
                month_index=month_index,
                value=value
            )
            self.session.add(coefficient)
        self.session.flush()

        self.audit.record(
            AuditAction.UPDATE,
            f"Coefficient {variable_code}/{category_code} month {month_index} set to {value}",
            entity_type='Coefficient',
            entity_id=coefficient.id,
            before=before,
            after={'value': value}
        )
        return coefficient
