"""Resumen de seguridad de la cuenta."""

from flask import jsonify, g

from . import api
from ..extensions import db
from ..models import AuditLog
from ..auth import require_session, require_two_factor
from ..services.audit import serialize_audit_entry
from ..services.twofactor import TwoFactorService

SECURITY_EVENTS_LIMIT = 20


@api.get("/account/security")
@require_session
@require_two_factor
def account_security():
    """Estado de 2FA y últimos eventos de seguridad del usuario."""
    user = g.current_user
    events = db.session.execute(
        db.select(AuditLog)
        .where(
            AuditLog.user_id == user.id,
            AuditLog.action.like("security.2fa.%"),
        )
        .order_by(AuditLog.created_at.desc())
        .limit(SECURITY_EVENTS_LIMIT)
    ).scalars().all()

    return jsonify(
        user={
            "id": str(user.id),
            "email": user.email,
            "organization_id": str(user.organization_id) if user.organization_id else None,
        },
        two_factor=TwoFactorService.from_app().status(user.id),
        events=[serialize_audit_entry(entry) for entry in events],
    )
