"""Health check del servicio."""

import os
import time
from datetime import datetime, timezone
from flask import jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError

from . import api
from ..extensions import db
from ..models import TwoFactorCredential

DB_LATENCY_OK_MS = 250
DB_LATENCY_WARNING_MS = 600
# Con más credenciales bloqueadas que esto se asume un ataque de fuerza bruta en curso.
LOCKED_CREDENTIALS_WARNING = 25


def _probe_database():
    start = time.perf_counter()
    db.session.execute(db.select(1))
    latency_ms = (time.perf_counter() - start) * 1000
    locked = db.session.execute(
        db.select(db.func.count(TwoFactorCredential.id)).where(
            TwoFactorCredential.locked_until > datetime.now(timezone.utc)
        )
    ).scalar_one()
    return round(latency_ms, 2), int(locked)


def _system_load():
    cpu_count = os.cpu_count() or 1
    try:
        raw = os.getloadavg()[0]
    except (AttributeError, OSError):
        return None, None, cpu_count
    return raw, raw / max(cpu_count, 1), cpu_count


def _grade(value, ok, warning):
    if value is None:
        return "unknown"
    if value <= ok:
        return "ok"
    if value <= warning:
        return "warning"
    return "critical"


@api.get("/health")
def health_check():
    """Estado de la base, del almacén 2FA y de la carga del servidor."""
    db_status = "connected"
    latency_ms = locked = None
    try:
        latency_ms, locked = _probe_database()
    except SQLAlchemyError as exc:
        db.session.rollback()
        current_app.logger.error("Error de conexión a DB: %s", exc, extra={"event": "health.db_error"})
        db_status = "error"

    load_raw, load_ratio, cpu_count = _system_load()

    indicators = {
        "database": "critical" if db_status != "connected" else _grade(latency_ms, DB_LATENCY_OK_MS, DB_LATENCY_WARNING_MS),
        "two_factor": "unknown" if locked is None else ("warning" if locked > LOCKED_CREDENTIALS_WARNING else "ok"),
        "system": _grade(load_ratio, 0.6, 1.5),
    }

    if db_status != "connected":
        overall = "error"
    elif any(value in {"warning", "critical"} for value in indicators.values()):
        overall = "degraded"
    else:
        overall = "ok"

    payload = {
        "status": overall,
        "db_status": db_status,
        "metrics": {
            "db_latency_ms": latency_ms,
            "locked_credentials": locked,
            "system_load": {
                "ratio": round(load_ratio, 2) if load_ratio is not None else None,
                "cores": cpu_count,
                "raw": round(load_raw, 2) if load_raw is not None else None,
            },
        },
        "indicators": indicators,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    status_code = 200 if db_status == "connected" else 500
    return jsonify(payload), status_code
