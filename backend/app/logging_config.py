"""
Structured logging configuration for the Lexdesk backend.

JSON logs in production (python-json-logger), coloured human-readable logs in
development and quiet logs in test. Every record carries the request id and,
when a session is loaded, the user and organization ids. A redaction filter
scrubs one-time codes, backup codes and TOTP secrets from ``extra`` payloads
before any handler formats them.
"""

import logging
import sys
import time
import uuid
from typing import Any, Dict
from datetime import datetime, timezone

from flask import Flask, g, has_request_context, request
from pythonjsonlogger import jsonlogger
from .services.request_utils import get_client_ip

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({
    "code",
    "otp",
    "otp_code",
    "secret",
    "totp_secret",
    "backup_code",
    "backup_codes",
    "codes",
    "session_token",
})


def _redact(value):
    if isinstance(value, dict):
        return {
            key: (REDACTED if str(key).lower() in SENSITIVE_KEYS else _redact(item))
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


def scrub_sentry_event(event, hint=None):
    """before_send de Sentry: quita códigos y secretos del cuerpo y extras."""
    request = event.get("request") or {}
    if isinstance(request.get("data"), (dict, list)):
        request["data"] = _redact(request["data"])
    headers = request.get("headers")
    if isinstance(headers, dict):
        for name in list(headers):
            if name.lower() in {"authorization", "x-session-token"}:
                headers[name] = REDACTED
    if "extra" in event:
        event["extra"] = _redact(event["extra"])
    return event


class RedactionFilter(logging.Filter):
    """Reemplaza atributos sensibles añadidos vía ``extra``."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in list(record.__dict__):
            if key.lower() in SENSITIVE_KEYS:
                setattr(record, key, REDACTED)
            elif isinstance(record.__dict__[key], dict):
                setattr(record, key, _redact(record.__dict__[key]))
        return True


def _request_context_fields() -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if not has_request_context():
        return fields
    fields["request_id"] = getattr(g, "request_id", None)
    fields["method"] = request.method
    fields["path"] = request.path
    fields["remote_addr"] = get_client_ip(request)
    current_user = getattr(g, "current_user", None)
    if current_user is not None:
        user_id = getattr(current_user, "id", None)
        org_id = getattr(current_user, "organization_id", None)
        fields["user_id"] = str(user_id) if user_id else None
        fields["organization_id"] = str(org_id) if org_id else None
    return fields


class ContextualJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with timestamp, level, app_env and request context."""

    def __init__(self, *args, app_env: str = "production", **kwargs):
        super().__init__(*args, **kwargs)
        self.app_env = app_env

    def add_fields(
        self,
        log_record: Dict[str, Any],
        record: logging.LogRecord,
        message_dict: Dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.now(timezone.utc).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["app_env"] = self.app_env

        for key, value in _request_context_fields().items():
            log_record.setdefault(key, value)

        if has_request_context():
            request_start_time = getattr(g, "request_start_time", None)
            if request_start_time:
                log_record["response_time_ms"] = round((time.time() - request_start_time) * 1000, 2)

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)


class DevelopmentFormatter(logging.Formatter):
    """Human-readable formatter for the terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
        "RESET": "\033[0m",
    }

    def format(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelname, "")
        reset = self.COLORS["RESET"]

        timestamp = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")
        base = f"{color}[{timestamp}] {record.levelname:8s}{reset} {record.name:30s} | {record.getMessage()}"

        context = _request_context_fields()
        context_parts = []
        if context.get("request_id"):
            context_parts.append(f"request_id={context['request_id'][:8]}")
        if "method" in context:
            context_parts.append(f"{context['method']} {context['path']}")
        if context.get("user_id"):
            context_parts.append(f"user_id={context['user_id']}")
        event = getattr(record, "event", None)
        if event:
            context_parts.append(f"event={event}")

        if context_parts:
            base += f" [{' | '.join(context_parts)}]"

        if record.exc_info:
            base += "\n" + self.formatException(record.exc_info)

        return base


def resolve_log_level(app_env: str, configured=None) -> int:
    if configured:
        return getattr(logging, str(configured).upper(), logging.INFO)
    if app_env == "test":
        return logging.WARNING
    if app_env == "development":
        return logging.DEBUG
    return logging.INFO


def configure_logging(app: Flask) -> None:
    """
    Configure structured logging for the Flask application.

    The formatter depends on ``LOG_JSON_ENABLED`` (auto: JSON only in
    production) and the level on ``LOG_LEVEL`` (auto per ``APP_ENV``).
    """
    app_env = app.config.get("APP_ENV", "production")
    log_level = resolve_log_level(app_env, app.config.get("LOG_LEVEL"))

    json_enabled = app.config.get("LOG_JSON_ENABLED", None)
    if json_enabled is None:
        json_enabled = app_env == "production"

    if json_enabled:
        formatter = ContextualJsonFormatter(fmt="%(message)s", app_env=app_env)
    else:
        formatter = DevelopmentFormatter()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(formatter)
    handler.addFilter(RedactionFilter())

    # En test se conservan los handlers de pytest (caplog).
    if app_env != "test":
        app.logger.handlers.clear()
    app.logger.addHandler(handler)
    app.logger.setLevel(log_level)
    app.logger.propagate = (app_env == "test")

    root_logger = logging.getLogger()
    if app_env != "test":
        root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    if app_env == "development":
        logging.getLogger("werkzeug").setLevel(logging.WARNING)

    app.logger.info(
        "Logging configured",
        extra={
            "app_env": app_env,
            "log_level": logging.getLevelName(log_level),
            "json_enabled": json_enabled,
        },
    )


def setup_request_logging(app: Flask) -> None:
    """Request id, start/finish logging and uncaught exception logging."""

    @app.before_request
    def before_request_logging():
        g.request_id = str(uuid.uuid4())
        g.request_start_time = time.time()
        app.logger.debug(
            "Request started",
            extra={"event": "request.started", "method": request.method, "path": request.path},
        )

    @app.after_request
    def after_request_logging(response):
        if hasattr(g, "request_start_time"):
            response_time_ms = (time.time() - g.request_start_time) * 1000
            app.logger.info(
                "Request completed",
                extra={
                    "event": "request.completed",
                    "status_code": response.status_code,
                    "response_time_ms": round(response_time_ms, 2),
                },
            )
        response.headers.setdefault("X-Request-ID", getattr(g, "request_id", ""))
        return response

    @app.errorhandler(Exception)
    def handle_exception(error: Exception):
        from werkzeug.exceptions import HTTPException

        # 4xx/429 esperados: se devuelven tal cual.
        if isinstance(error, HTTPException):
            return error

        app.logger.error(
            f"Uncaught exception: {str(error)}",
            exc_info=True,
            extra={
                "event": "exception.uncaught",
                "exception_type": type(error).__name__,
            },
        )
        raise error
