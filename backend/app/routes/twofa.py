"""Autenticación de dos factores (TOTP + códigos de respaldo)."""

from flask import current_app, jsonify, request, g
from sqlalchemy.exc import SQLAlchemyError

from . import api
from ..extensions import db, limiter
from ..auth import require_session
from ..services.errors import RateLimitedError, TransientStoreError, TwoFactorError
from ..services.twofactor import TwoFactorService


def _service():
    return TwoFactorService.from_app()


def _submitted_code():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        data = {}
    return str(data.get('code') or data.get('otp') or '').strip()


def _identity():
    user = g.current_user
    return user.id, user.organization_id


@api.errorhandler(TwoFactorError)
def handle_two_factor_error(exc):
    response = jsonify(exc.to_dict())
    response.status_code = exc.status_code
    if isinstance(exc, RateLimitedError):
        response.headers["Retry-After"] = str(exc.retry_after)
    response.headers["Cache-Control"] = "no-store"
    return response


@api.get("/account/2fa/status")
@require_session
def two_factor_status():
    """Retorna el estado de 2FA del usuario actual."""
    status = _service().status(g.current_user.id)
    status["session_verified"] = g.current_session.two_factor_verified_at is not None
    return jsonify(status)


@api.post("/account/2fa/setup")
@limiter.limit(lambda: current_app.config.get("RATELIMIT_TWOFA_SETUP", "5 per hour"))
@require_session
def two_factor_setup():
    """Genera un nuevo secreto TOTP; 2FA queda pendiente de confirmación."""
    owner_id, organization_id = _identity()
    label = g.current_user.email or str(owner_id)
    result = _service().begin_setup(owner_id, organization_id, label)

    response = jsonify(
        secret=result.secret,
        otpauth_url=result.provisioning_uri,
        qr=result.qr_data_url,
        backup_codes=result.backup_codes,
        state="pending_verification",
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@api.post("/account/2fa/enable")
@limiter.limit(lambda: current_app.config.get("RATELIMIT_TWOFA_VERIFY", "10 per 5 minutes"))
@require_session
def two_factor_enable():
    """Activa 2FA después de verificar el primer código TOTP."""
    owner_id, organization_id = _identity()
    backup_codes = _service().confirm_setup(owner_id, organization_id, _submitted_code())

    _mark_session_verified()
    response = jsonify(
        enabled=True,
        message='Autenticación en dos pasos activada.',
        backup_codes=backup_codes,
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@api.post("/account/2fa/verify")
@limiter.limit(lambda: current_app.config.get("RATELIMIT_TWOFA_VERIFY", "10 per 5 minutes"))
@require_session
def two_factor_verify():
    """Completa el inicio de sesión con un código TOTP o de respaldo."""
    owner_id, organization_id = _identity()
    result = _service().verify_for_login(owner_id, organization_id, _submitted_code())

    _mark_session_verified()
    payload = {"verified": True, "method": result.method}
    if result.backup_codes_remaining is not None:
        payload["backup_codes_remaining"] = result.backup_codes_remaining
    return jsonify(payload)


@api.post("/account/2fa/disable")
@limiter.limit(lambda: current_app.config.get("RATELIMIT_TWOFA_MANAGE", "5 per 15 minutes"))
@require_session
def two_factor_disable():
    """Desactiva 2FA después de verificar el código."""
    owner_id, organization_id = _identity()
    _service().disable(owner_id, organization_id, _submitted_code())
    return jsonify(enabled=False, message='Autenticación en dos pasos desactivada.')


@api.post("/account/2fa/backup-codes/regenerate")
@limiter.limit(lambda: current_app.config.get("RATELIMIT_TWOFA_MANAGE", "5 per 15 minutes"))
@require_session
def regenerate_backup_codes():
    """Regenera los códigos de respaldo de 2FA."""
    owner_id, organization_id = _identity()
    new_codes = _service().regenerate_backup_codes(owner_id, organization_id, _submitted_code())

    response = jsonify(message='Códigos de respaldo regenerados.', backup_codes=new_codes)
    response.headers["Cache-Control"] = "no-store"
    return response


def _mark_session_verified():
    """Marca la sesión actual como verificada con segundo factor."""
    service = _service()
    g.current_session.two_factor_verified_at = service.clock.now()
    try:
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error(
            'No se pudo marcar la sesión como verificada: %s', exc,
            extra={"event": "twofa.session_mark_failed", "error_type": type(exc).__name__},
        )
        raise TransientStoreError() from exc
