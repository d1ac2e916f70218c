"""Eventos de auditoría para las transiciones de seguridad."""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..extensions import db
from ..models import AuditLog
from .request_utils import get_client_ip, get_user_agent

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    action: str
    owner_id: Any
    organization_id: Any
    outcome: str
    timestamp: datetime
    masked_input: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self):
        return self.outcome == "success"

    def as_payload(self):
        payload = {
            "action": self.action,
            "owner_id": str(self.owner_id) if self.owner_id else None,
            "organization_id": str(self.organization_id) if self.organization_id else None,
            "outcome": self.outcome,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.masked_input:
            payload["masked_input"] = self.masked_input
        if self.details:
            payload["details"] = dict(self.details)
        return payload


def serialize_audit_entry(entry):
    """Serializa una entrada de auditoría para la API."""
    if not entry:
        return {}
    details = dict(entry.details or {})
    return {
        "id": str(entry.id) if entry.id is not None else None,
        "action": entry.action,
        "outcome": entry.outcome,
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
        "ip_address": entry.ip_address,
        "masked_input": details.pop("masked_input", None),
        "details": details,
    }


class DatabaseAuditSink:
    """
    Persiste eventos en ``audit_log`` en su propia transacción.

    Se llama después del commit de la transición: si la escritura falla se
    registra un warning y la operación principal no se ve afectada.
    """

    def __init__(self, session=None):
        self.session = session or db.session

    def emit(self, event: AuditEvent):
        details = dict(event.details or {})
        if event.masked_input:
            details["masked_input"] = event.masked_input
        details["timestamp"] = event.timestamp.isoformat()
        try:
            entry = AuditLog(
                user_id=event.owner_id,
                organization_id=event.organization_id,
                action=event.action,
                outcome=event.outcome,
                details=details,
                ip_address=get_client_ip(),
                user_agent=get_user_agent(),
                created_at=event.timestamp,
            )
            self.session.add(entry)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.warning(
                "No se pudo registrar auditoría (%s): %s", event.action, exc,
                extra={"event": "audit.write_failed", "action": event.action, "error_type": type(exc).__name__},
            )
            return None

        logger.info(
            "Evento de seguridad %s (%s)", event.action, event.outcome,
            extra={"event": event.action, "audit": event.as_payload()},
        )
        return entry
