# volume_forecast/services/audit_service.py
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from volume_forecast.config import config
from volume_forecast.models import AuditEvent, AuditAction
from volume_forecast.logging_setup import get_logger

logger = get_logger(__name__)

class AuditService:
    """Append-only audit trail."""

    def __init__(self, session: Session, actor: Optional[str] = None):
        """Initialize the audit service.

        Args:
            session: Database session
            actor: Name recorded on events; defaults to FORECAST.audit_actor
        """
        self.session = session
        self.actor = actor or config.forecast_rules['audit_actor']

    def record(
        self,
        action: AuditAction,
        summary: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        before: Optional[Dict] = None,
        after: Optional[Dict] = None
    ) -> AuditEvent:
        """Append an audit event to the current transaction.

        Args:
            action: Audit action
            summary: Human readable summary
            entity_type: Type of the affected entity
            entity_id: Id of the affected entity
            before: Snapshot before the change
            after: Snapshot after the change

        Returns:
            The new AuditEvent
        """
        event = AuditEvent(
            actor=self.actor,
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            summary=summary,
            before=before,
            after=after
        )
        self.session.add(event)
        logger.debug(f"Audit {action.value} {entity_type}:{entity_id} - {summary}")
        return event

    def list_events(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[Any] = None,
        action: Optional[AuditAction] = None
    ) -> List[AuditEvent]:
        """List audit events, oldest first."""
        query = self.session.query(AuditEvent)

        if entity_type:
            query = query.filter(AuditEvent.entity_type == entity_type)

        if entity_id is not None:
            query = query.filter(AuditEvent.entity_id == str(entity_id))

        if action:
            query = query.filter(AuditEvent.action == action)

        return query.order_by(AuditEvent.id).all()
