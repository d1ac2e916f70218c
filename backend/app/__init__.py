"""Application factory for the backend service."""
from flask import Flask, g
from backend.config import Config, init_app_config

from .extensions import db, migrate, bcrypt, cors, limiter
from .logging_config import configure_logging, setup_request_logging, scrub_sentry_event


def init_sentry(app: Flask) -> None:
    """
    Inicializa Sentry si hay SENTRY_DSN y el entorno lo permite
    (production, staging, o development con SENTRY_ENABLE_IN_DEV=true).

    Los eventos pasan por ``scrub_sentry_event`` para que ningún código
    TOTP, código de respaldo o token de sesión salga del proceso.
    """
    sentry_dsn = app.config.get('SENTRY_DSN')
    if not sentry_dsn:
        app.logger.info("Sentry desactivado: falta SENTRY_DSN")
        return

    runtime_env = app.config.get('APP_ENV', 'production')
    allowed = runtime_env in {'production', 'staging'} or (
        runtime_env == 'development' and app.config.get('SENTRY_ENABLE_IN_DEV', False)
    )
    if not allowed:
        app.logger.info("Sentry desactivado para el entorno '%s'", runtime_env)
        return

    import sentry_sdk
    from sentry_sdk.integrations.flask import FlaskIntegration
    from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

    sentry_environment = app.config.get('SENTRY_ENVIRONMENT') or runtime_env
    traces_sample_rate = app.config.get('SENTRY_TRACES_SAMPLE_RATE', 0.1)

    try:
        sentry_sdk.init(
            dsn=sentry_dsn,
            environment=sentry_environment,
            integrations=[FlaskIntegration(), SqlalchemyIntegration()],
            traces_sample_rate=traces_sample_rate,
            send_default_pii=False,
            before_send=scrub_sentry_event,
            release=app.config.get('APP_VERSION'),
        )
    except Exception as e:
        app.logger.error("No se pudo inicializar Sentry: %s", e, exc_info=True)
        return

    @app.before_request
    def tag_sentry_scope():
        if getattr(g, 'current_user', None) is not None:
            sentry_sdk.set_user({"id": str(g.current_user.id)})
        sentry_sdk.set_tag("app_env", runtime_env)

    app.logger.info(
        "Sentry activo [environment=%s, traces_sample_rate=%s]",
        sentry_environment,
        traces_sample_rate,
    )


def _init_cors(app: Flask) -> None:
    origins = app.config.get("CORS_ORIGINS") or []
    if not origins:
        if app.config.get("APP_ENV", "production") == "production":
            raise RuntimeError(
                "FATAL: CORS_ORIGINS no está configurado para producción. "
                "Define una lista de dominios permitidos antes de iniciar la aplicación."
            )
        origins = "*"

    cors.init_app(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=bool(app.config.get("CORS_SUPPORTS_CREDENTIALS", False)),
        expose_headers=["Retry-After", "X-Request-ID"],
    )


def _init_limiter(app: Flask) -> None:
    # storage_uri debe fijarse antes de init_app
    limiter.storage_uri = app.config.get("RATELIMIT_STORAGE_URI", "memory://")
    limiter.init_app(app)


def create_app(config_object=Config) -> Flask:
    """Fábrica de la aplicación: config, logging, extensiones y blueprint /api."""
    app = Flask(__name__)

    app.config.from_object(config_object)
    init_app_config(app)

    configure_logging(app)
    setup_request_logging(app)
    init_sentry(app)

    db.init_app(app)
    migrate.init_app(app, db)
    bcrypt.init_app(app)
    _init_cors(app)
    _init_limiter(app)

    with app.app_context():
        from . import models  # noqa: F401

    from .routes import api as api_blueprint

    app.register_blueprint(api_blueprint, url_prefix="/api")

    return app
