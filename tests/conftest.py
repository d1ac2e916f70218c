# tests/conftest.py
import os
import sys
import pathlib
import uuid
from datetime import datetime, timedelta, timezone

import pytest

# ---------- PATH raíz del repo ----------
THIS = pathlib.Path(__file__).resolve()
ROOT = THIS.parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from backend.app import create_app
from backend.app.extensions import db
from backend.app.models import Users, UserSessions
from backend.app.services.clock import FixedClock
from backend.app.services.totp import totp_value
from backend.app.services.twofactor import TwoFactorService

# Inicio exacto de un paso TOTP (1700000010 = 56666667 * 30).
T0 = 1700000010


# ---------- Config de pruebas ----------
class TestConfig:
    TESTING = True
    APP_ENV = "test"
    LOG_LEVEL = None  # Auto-detect per APP_ENV during tests
    SECRET_KEY = "testing-secret"
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    BCRYPT_LOG_ROUNDS = 4
    TOTP_ISSUER = "Lexdesk"
    TWOFA_RENDER_QR = False
    TWOFA_CLOCK = None
    # Rate limiting - límites muy altos para tests (no queremos que interfieran)
    RATELIMIT_STORAGE_URI = "memory://"
    RATELIMIT_TWOFA_SETUP = "1000 per minute"
    RATELIMIT_TWOFA_VERIFY = "1000 per minute"
    RATELIMIT_TWOFA_MANAGE = "1000 per minute"


@pytest.fixture(scope="session", autouse=True)
def _clean_env():
    """
    Limpia variables de entorno peligrosas antes de ejecutar tests.

    CRÍTICO: Esto previene que los tests usen accidentalmente la base de datos
    de producción y la eliminen con db.drop_all().
    """
    original_database_url = os.environ.get("DATABASE_URL")
    os.environ.pop("DATABASE_URL", None)
    os.environ["APP_ENV"] = "test"

    yield

    if original_database_url:
        os.environ["DATABASE_URL"] = original_database_url


@pytest.fixture(scope="session")
def app(_clean_env):
    app = create_app(TestConfig)

    with app.app_context():
        db_uri = app.config.get("SQLALCHEMY_DATABASE_URI", "")
        if "sqlite" not in db_uri.lower():
            raise RuntimeError(
                f"Base de datos desconocida en tests: {db_uri}\n"
                f"   Solo se permite SQLite en tests."
            )
        db.drop_all()
        db.create_all()
    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def client(app):
    return app.test_client(use_cookies=True)


@pytest.fixture()
def _db(app):
    return db


@pytest.fixture()
def app_ctx(app):
    with app.app_context():
        yield app


@pytest.fixture()
def clock(app):
    """Reloj congelado en T0, visible para las rutas vía TWOFA_CLOCK."""
    fixed = FixedClock(T0)
    previous = app.config.get("TWOFA_CLOCK")
    app.config["TWOFA_CLOCK"] = fixed
    yield fixed
    app.config["TWOFA_CLOCK"] = previous


@pytest.fixture()
def user_factory(app):
    def _mk_user(email=None, organization_id=None, active=True):
        with app.app_context():
            u = Users(
                email=email or f"user-{uuid.uuid4().hex[:10]}@lexdesk.test",
                name="Usuario de prueba",
                organization_id=organization_id or uuid.uuid4(),
                is_active=active,
            )
            db.session.add(u)
            db.session.commit()
            return u
    return _mk_user


@pytest.fixture()
def session_token_factory(app, user_factory):
    def _mk_session(user=None, ttl_days=7):
        with app.app_context():
            if user is None:
                user = user_factory()
            token = uuid.uuid4().hex + uuid.uuid4().hex
            s = UserSessions(
                session_token=token,
                user_id=user.id,
                expires_at=datetime.now(timezone.utc) + timedelta(days=ttl_days),
                ip_address="127.0.0.1",
                user_agent="pytest",
            )
            db.session.add(s)
            db.session.commit()
            return token, user
    return _mk_session


@pytest.fixture()
def auth_headers(session_token_factory):
    token, _ = session_token_factory()
    return {"Authorization": f"Bearer {token}"}


class RecordingAuditSink:
    """Guarda los eventos emitidos en memoria."""

    def __init__(self):
        self.events = []

    def emit(self, event):
        self.events.append(event)

    def actions(self):
        return [(event.action, event.outcome) for event in self.events]


@pytest.fixture()
def audit_sink():
    return RecordingAuditSink()


@pytest.fixture()
def service(app_ctx, clock, audit_sink):
    return TwoFactorService.from_app(app_ctx, audit_sink=audit_sink)


@pytest.fixture()
def totp_for(clock):
    """Código TOTP válido para ``secret`` en el instante del reloj (más ``offset`` pasos)."""
    def _code(secret, offset=0):
        return totp_value(secret, clock.timestamp() + offset * 30)
    return _code


@pytest.fixture()
def wrong_code_for(clock):
    """Código de 6 dígitos que no coincide con ningún paso de la ventana."""
    def _code(secret):
        window = {totp_value(secret, clock.timestamp() + offset * 30) for offset in (-1, 0, 1)}
        candidate = 0
        while f"{candidate:06d}" in window:
            candidate += 1
        return f"{candidate:06d}"
    return _code


@pytest.fixture()
def enrolled(service, user_factory, totp_for):
    """Usuario con 2FA activa; devuelve (user, secret, backup_codes)."""
    user = user_factory()
    setup = service.begin_setup(user.id, user.organization_id, user.email)
    codes = service.confirm_setup(user.id, user.organization_id, totp_for(setup.secret))
    service.audit_sink.events.clear()
    return user, setup.secret, codes
