"""Application configuration values."""
import os
import sys
import json
from typing import List, Optional
from pathlib import Path
from dotenv import load_dotenv


# --- Cargar variables de entorno ---
load_dotenv()

BASE_DIR = Path(__file__).resolve().parent
PROJECT_ROOT = BASE_DIR.parent
INSTANCE_DIR = PROJECT_ROOT / "instance"

_ENV_ALIASES = {
    "dev": "development",
    "development": "development",
    "prod": "production",
    "production": "production",
    "testing": "test",
    "tests": "test",
    "pytest": "test",
    "test": "test",
}

_TRUTHY = {"1", "true", "yes", "on"}


def _normalize_env(value: str) -> str:
    normalized = _ENV_ALIASES.get(value.strip().lower(), value.strip().lower())
    return normalized or "production"


def detect_runtime_env() -> str:
    """Determina el entorno actual (production, development, test)."""
    explicit = (
        os.getenv("APP_ENV")
        or os.getenv("FLASK_ENV")
        or os.getenv("ENV")
        or ""
    ).strip()
    if explicit:
        return _normalize_env(explicit)

    if os.getenv("PYTEST_CURRENT_TEST") or any("pytest" in arg for arg in sys.argv):
        return "test"

    debug_flag = os.getenv("FLASK_DEBUG", "").strip().lower()
    if debug_flag in _TRUTHY:
        return "development"

    return "production"


def _fallback_database_uri(runtime_env: str) -> Optional[str]:
    """Determina la URI según entorno cuando DATABASE_URL no está definida."""
    if runtime_env == "test":
        return "sqlite:///:memory:"
    if runtime_env == "development":
        INSTANCE_DIR.mkdir(parents=True, exist_ok=True)
        sqlite_path = INSTANCE_DIR / "dev.db"
        return f"sqlite:///{sqlite_path}"
    return None


def _int_setting(app, key: str, default: int, minimum: int = 0) -> int:
    try:
        value = int(app.config.get(key, default))
    except (TypeError, ValueError):
        value = default
    return max(minimum, value)


def init_app_config(app) -> None:
    """Aplica valores derivados del entorno sin forzar evaluación temprana."""
    runtime_env = _normalize_env(
        str(app.config.get("APP_ENV", "") or app.config.get("ENV", "")).strip()
        or detect_runtime_env()
    )
    app.config["APP_ENV"] = runtime_env
    app.config["ENV"] = runtime_env

    if "TESTING" not in app.config:
        app.config["TESTING"] = runtime_env == "test"
    if "DEBUG" not in app.config:
        app.config["DEBUG"] = runtime_env == "development"

    secret_key = app.config.get("SECRET_KEY") or os.getenv("SECRET_KEY")
    if runtime_env == "production":
        if not secret_key or secret_key == "dev-secret-key":
            raise RuntimeError(
                "FATAL: SECRET_KEY no está definida para producción. "
                "Establece SECRET_KEY con un valor aleatorio y seguro antes de iniciar la aplicación."
            )
    if secret_key:
        app.config["SECRET_KEY"] = secret_key

    db_uri = app.config.get("SQLALCHEMY_DATABASE_URI") or os.getenv("DATABASE_URL")

    # En tests nunca se apunta a PostgreSQL.
    if runtime_env == "test" or app.config.get("TESTING"):
        if db_uri and db_uri.startswith("postgresql"):
            app.logger.warning("Tests apuntando a PostgreSQL; se fuerza SQLite en memoria.")
            db_uri = "sqlite:///:memory:"
        elif not db_uri:
            db_uri = "sqlite:///:memory:"
    elif not db_uri:
        db_uri = _fallback_database_uri(runtime_env)

    if not db_uri:
        raise RuntimeError(
            "FATAL: DATABASE_URL no está configurada y no existe fallback para producción. "
            "Establece DATABASE_URL con la cadena de conexión de PostgreSQL antes de iniciar en producción."
        )

    app.config["SQLALCHEMY_DATABASE_URI"] = db_uri

    engine_options = dict(app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {})
    if db_uri.startswith("sqlite:///"):
        engine_options.setdefault("connect_args", {"check_same_thread": False})
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = engine_options

    # --- 2FA ---
    period = _int_setting(app, "TOTP_PERIOD", 30, minimum=1)
    digits = _int_setting(app, "TOTP_DIGITS", 6, minimum=6)
    if digits != 6:
        # Las apps autenticadoras y el formato de entrada asumen 6 dígitos.
        app.logger.warning("TOTP_DIGITS=%s no soportado; se usa 6.", digits)
        digits = 6
    app.config["TOTP_PERIOD"] = period
    app.config["TOTP_DIGITS"] = digits
    app.config["TOTP_DRIFT_STEPS"] = _int_setting(app, "TOTP_DRIFT_STEPS", 1)
    app.config["BACKUP_CODE_COUNT"] = _int_setting(app, "BACKUP_CODE_COUNT", 10, minimum=1)
    app.config["TWOFA_MAX_FAILED_ATTEMPTS"] = _int_setting(app, "TWOFA_MAX_FAILED_ATTEMPTS", 5, minimum=1)
    app.config["TWOFA_FAILURE_WINDOW_SECONDS"] = _int_setting(app, "TWOFA_FAILURE_WINDOW_SECONDS", 300, minimum=1)
    app.config["TWOFA_LOCKOUT_BASE_SECONDS"] = _int_setting(app, "TWOFA_LOCKOUT_BASE_SECONDS", 30, minimum=1)
    app.config["TWOFA_LOCKOUT_MAX_SECONDS"] = max(
        app.config["TWOFA_LOCKOUT_BASE_SECONDS"],
        _int_setting(app, "TWOFA_LOCKOUT_MAX_SECONDS", 900, minimum=1),
    )
    app.config["BCRYPT_LOG_ROUNDS"] = _int_setting(app, "BCRYPT_LOG_ROUNDS", 12, minimum=4)


def parse_list_env(name: str) -> List[str]:
    raw = os.getenv(name, "").strip()
    if not raw:
        return []
    if raw.startswith("["):
        try:
            return [str(s) for s in json.loads(raw)]
        except ValueError:
            return []
    return [item.strip() for item in raw.split(",") if item.strip()]


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)))
    except ValueError:
        return default


class Config:
    # clave secreta de flask
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")

    # --- configuracion de base de datos ---
    SQLALCHEMY_DATABASE_URI = os.getenv("DATABASE_URL")
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = None

    _runtime = detect_runtime_env()
    TESTING = _runtime == "test"
    ENV = _runtime
    DEBUG = _runtime == "development"

    # CORS
    CORS_ORIGINS = parse_list_env('CORS_ORIGINS')
    CORS_SUPPORTS_CREDENTIALS = os.getenv('CORS_SUPPORTS_CREDENTIALS', 'false').lower() == 'true'

    # --- Autenticación en dos pasos ---
    TOTP_ISSUER = os.getenv('TOTP_ISSUER', 'Lexdesk')
    TOTP_PERIOD = _env_int('TOTP_PERIOD', 30)
    TOTP_DIGITS = 6
    TOTP_DRIFT_STEPS = _env_int('TOTP_DRIFT_STEPS', 1)
    BACKUP_CODE_COUNT = _env_int('BACKUP_CODE_COUNT', 10)
    BCRYPT_LOG_ROUNDS = _env_int('BCRYPT_LOG_ROUNDS', 12)

    # Bloqueo por intentos fallidos (por usuario)
    TWOFA_MAX_FAILED_ATTEMPTS = _env_int('TWOFA_MAX_FAILED_ATTEMPTS', 5)
    TWOFA_FAILURE_WINDOW_SECONDS = _env_int('TWOFA_FAILURE_WINDOW_SECONDS', 300)
    TWOFA_LOCKOUT_BASE_SECONDS = _env_int('TWOFA_LOCKOUT_BASE_SECONDS', 30)
    TWOFA_LOCKOUT_MAX_SECONDS = _env_int('TWOFA_LOCKOUT_MAX_SECONDS', 900)

    # QR como data URL en la respuesta de setup
    TWOFA_RENDER_QR = os.getenv('TWOFA_RENDER_QR', 'true').lower() in _TRUTHY

    # None = reloj del sistema; los tests inyectan un FixedClock.
    TWOFA_CLOCK = None

    # --- Rate Limiting Configuration ---
    RATELIMIT_STORAGE_URI = os.getenv('RATELIMIT_STORAGE_URI', 'memory://')
    RATELIMIT_TWOFA_SETUP = os.getenv('RATELIMIT_TWOFA_SETUP', '5 per hour')
    RATELIMIT_TWOFA_VERIFY = os.getenv('RATELIMIT_TWOFA_VERIFY', '10 per 5 minutes')
    RATELIMIT_TWOFA_MANAGE = os.getenv('RATELIMIT_TWOFA_MANAGE', '5 per 15 minutes')

    # --- Logging Configuration ---
    LOG_LEVEL = os.getenv('LOG_LEVEL', None)  # None = auto-detect based on APP_ENV
    LOG_JSON_ENABLED = None  # None = auto-detect (True for production, False otherwise)
    _log_json_env = os.getenv('LOG_JSON_ENABLED', '').strip().lower()
    if _log_json_env in _TRUTHY:
        LOG_JSON_ENABLED = True
    elif _log_json_env in {'0', 'false', 'no', 'off'}:
        LOG_JSON_ENABLED = False
    del _log_json_env

    # --- Sentry Configuration ---
    SENTRY_DSN = os.getenv('SENTRY_DSN')
    SENTRY_ENVIRONMENT = os.getenv('SENTRY_ENVIRONMENT')
    SENTRY_ENABLE_IN_DEV = os.getenv('SENTRY_ENABLE_IN_DEV', 'false').lower() in _TRUTHY
    try:
        _traces_sample_rate = float(os.getenv('SENTRY_TRACES_SAMPLE_RATE', '0.1'))
    except ValueError:
        _traces_sample_rate = 0.1
    SENTRY_TRACES_SAMPLE_RATE = max(0.0, min(1.0, _traces_sample_rate))
    del _traces_sample_rate
