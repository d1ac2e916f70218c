"""Utilidades de autenticación para la API."""
from functools import wraps
from datetime import datetime, timezone
from flask import jsonify, g
from .extensions import db
from .models import UserSessions, Users
from .services.request_utils import get_session_token
from .services.twofactor import TwoFactorService


def _resolve_user(session):
    """Obtiene el usuario activo vinculado a la sesión."""
    if not session.user_id:
        return None
    return db.session.execute(
        db.select(Users).where(
            Users.id == session.user_id,
            Users.deleted_at.is_(None),
            Users.is_active.is_(True),
        )
    ).scalar_one_or_none()


def require_session(fn):
    """Verifica el token de sesión (Bearer o X-Session-Token) y carga g.current_user."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        token = get_session_token()
        if not token:
            return jsonify(error="Token de sesión faltante."), 401

        session = db.session.execute(
            db.select(UserSessions).where(UserSessions.session_token == token)
        ).scalar_one_or_none()

        if not session:
            return jsonify(error="Sesión inválida o expirada."), 401

        expires_at = session.expires_at
        if expires_at:
            if expires_at.tzinfo is None:
                expires_at = expires_at.replace(tzinfo=timezone.utc)
            if expires_at <= datetime.now(timezone.utc):
                return jsonify(error="Sesión inválida o expirada."), 401

        user = _resolve_user(session)
        if user is None:
            return jsonify(error="Sesión sin usuario asociado."), 401

        g.current_user = user
        g.current_session = session
        return fn(*args, **kwargs)
    return wrapper


def require_two_factor(fn):
    """
    Exige que la sesión haya superado el segundo factor cuando el usuario
    tiene 2FA activa. Debe ir después de ``require_session``.
    """
    @wraps(fn)
    def wrapper(*args, **kwargs):
        session = getattr(g, "current_session", None)
        user = getattr(g, "current_user", None)
        if session is None or user is None:
            return jsonify(error="Token de sesión faltante."), 401

        if session.two_factor_verified_at is None and TwoFactorService.from_app().is_enabled(user.id):
            return jsonify(
                error="Se requiere el código de autenticación en dos pasos.",
                requires_2fa=True,
            ), 403
        return fn(*args, **kwargs)
    return wrapper
