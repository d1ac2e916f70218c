"""Request-related utilities."""
import hashlib

from flask import g, has_request_context, request as flask_request


def get_client_ip(req=None):
    """
    Obtains the client IP, honoring X-Forwarded-For when present.

    Args:
        req: Flask request object. Defaults to the global request.
    """
    if req is None:
        if not has_request_context():
            return None
        req = flask_request

    forwarded_for = req.headers.get("X-Forwarded-For", "")
    if forwarded_for:
        parts = [part.strip() for part in forwarded_for.split(",") if part.strip()]
        if parts:
            return parts[0]

    real_ip = req.headers.get("X-Real-IP")
    if real_ip:
        return real_ip.strip()

    return req.remote_addr


def get_user_agent(req=None):
    if req is None:
        if not has_request_context():
            return None
        req = flask_request
    agent = req.user_agent.string if req.user_agent else None
    return (agent or None) and agent[:255]


def get_session_token(req=None):
    """Token de sesión desde Authorization Bearer o X-Session-Token."""
    req = req or flask_request
    auth = req.headers.get('Authorization', '')
    token = None
    if auth.startswith('Bearer '):
        token = auth.split(' ', 1)[1].strip()
    if not token:
        token = (req.headers.get('X-Session-Token') or '').strip()
    return token or None


def rate_limit_key():
    """
    Clave de Flask-Limiter.

    Flask-Limiter evalúa antes de que ``require_session`` cargue al usuario, así
    que se usa la huella del token de sesión y, en su defecto, la IP.
    """
    if not has_request_context():
        return "ip:unknown"
    user = getattr(g, "current_user", None)
    user_id = getattr(user, "id", None)
    if user_id is not None:
        return f"user:{user_id}"
    token = get_session_token()
    if token:
        return f"session:{hashlib.sha256(token.encode('utf-8')).hexdigest()[:16]}"
    return f"ip:{get_client_ip() or 'unknown'}"
