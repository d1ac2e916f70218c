from datetime import datetime, timedelta, timezone

from sqlalchemy.exc import OperationalError

from backend.app.extensions import db
from backend.app.models import TwoFactorCredential


def _patch_loadavg(monkeypatch, value=(0.1, 0.1, 0.1)):
    monkeypatch.setattr('backend.app.routes.health.os.getloadavg', lambda: value)


def test_health_ok(client, monkeypatch):
    _patch_loadavg(monkeypatch)

    res = client.get("/api/health")
    assert res.status_code == 200

    data = res.get_json()
    assert data["db_status"] == "connected"

    metrics = data["metrics"]
    assert set(metrics.keys()) == {"db_latency_ms", "locked_credentials", "system_load"}
    assert set(metrics["system_load"].keys()) == {"ratio", "cores", "raw"}
    assert data["indicators"]["database"] in {"ok", "warning"}
    assert data["indicators"]["system"] == "ok"
    assert "timestamp" in data
    assert metrics["db_latency_ms"] >= 0


def test_health_counts_locked_credentials(app, client, monkeypatch, user_factory):
    _patch_loadavg(monkeypatch)
    user = user_factory()
    with app.app_context():
        db.session.add(TwoFactorCredential(
            owner_id=user.id,
            state="enabled",
            secret="JBSWY3DPEHPK3PXP",
            locked_until=datetime.now(timezone.utc) + timedelta(minutes=5),
        ))
        db.session.commit()

    data = client.get("/api/health").get_json()
    assert data["metrics"]["locked_credentials"] >= 1
    assert data["indicators"]["two_factor"] == "ok"


def test_health_degraded_by_load(client, monkeypatch):
    monkeypatch.setattr('backend.app.routes.health.os.cpu_count', lambda: 1)
    _patch_loadavg(monkeypatch, (1.0, 1.0, 1.0))

    res = client.get("/api/health")
    assert res.status_code == 200
    data = res.get_json()
    assert data["status"] == "degraded"
    assert data["indicators"]["system"] == "warning"


def test_health_db_failure_returns_error(client, monkeypatch):
    _patch_loadavg(monkeypatch)

    def fail_execute(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("db down"))

    monkeypatch.setattr('backend.app.routes.health.db.session.execute', fail_execute)

    res = client.get("/api/health")
    assert res.status_code == 500

    data = res.get_json()
    assert data["status"] == "error"
    assert data["db_status"] == "error"
    assert data["indicators"]["database"] == "critical"
    assert data["indicators"]["two_factor"] == "unknown"
