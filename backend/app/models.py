import logging
import uuid
from sqlalchemy.dialects.postgresql import UUID, JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import JSON as SAJSON, TypeDecorator, CHAR
from sqlalchemy.orm import validates
from .extensions import db


class JSONColumn(TypeDecorator):
    """JSON column that degrades gracefully on non-PostgreSQL engines."""

    impl = SAJSON
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(JSONB())
        return dialect.type_descriptor(SAJSON())


class GUID(TypeDecorator):
    """UUID column que usa CHAR(36) en SQLite."""

    impl = UUID
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(UUID(as_uuid=True))
        return dialect.type_descriptor(CHAR(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            if isinstance(value, uuid.UUID):
                return value
            return uuid.UUID(str(value))
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if isinstance(value, uuid.UUID):
            return value
        return uuid.UUID(str(value))


logger = logging.getLogger(__name__)


TWOFA_STATE_NOT_ENROLLED = "not_enrolled"
TWOFA_STATE_PENDING = "pending_verification"
TWOFA_STATE_ENABLED = "enabled"
TWOFA_STATES = (TWOFA_STATE_NOT_ENROLLED, TWOFA_STATE_PENDING, TWOFA_STATE_ENABLED)


# Modelo de Usuarios
class Users(db.Model):
    """Cuentas del despacho.

    La autenticación primaria, roles y organizaciones viven fuera de este
    servicio; aquí sólo se guarda lo que el subsistema de 2FA necesita:
    identidad, organización y un email para etiquetar el secreto TOTP.
    """
    __tablename__ = 'users'

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4, server_default=func.gen_random_uuid())
    organization_id = db.Column(GUID(), nullable=True, index=True)
    name = db.Column(db.String(100), nullable=False, default="Usuario")
    email = db.Column(db.String(255), nullable=False, unique=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
    deleted_at = db.Column(db.DateTime(timezone=True))

    sessions = db.relationship('UserSessions', back_populates='user', cascade="all, delete-orphan")
    two_factor = db.relationship('TwoFactorCredential', back_populates='owner', uselist=False, cascade="all, delete-orphan")
    audit_logs = db.relationship('AuditLog', back_populates='user')

    @validates('email')
    def _normalize_email(self, key, value):
        return (value or '').strip().lower()


# --- Modelo de Sesiones ---
class UserSessions(db.Model):
    __tablename__ = 'user_sessions'

    session_token = db.Column(db.Text, primary_key=True)
    user_id = db.Column(GUID(), db.ForeignKey('users.id'), nullable=False)

    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.Text)
    # Se marca cuando la sesión superó el segundo factor.
    two_factor_verified_at = db.Column(db.DateTime(timezone=True))

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    last_seen_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    user = db.relationship('Users', back_populates='sessions')


# --- Credencial 2FA (una por usuario) ---
class TwoFactorCredential(db.Model):
    __tablename__ = 'two_factor_credentials'

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4, server_default=func.gen_random_uuid())
    owner_id = db.Column(GUID(), db.ForeignKey('users.id', ondelete='CASCADE'), nullable=False, unique=True)
    organization_id = db.Column(GUID(), nullable=True, index=True)

    secret = db.Column(db.Text)
    state = db.Column(db.String(32), nullable=False, default=TWOFA_STATE_NOT_ENROLLED)
    enabled_at = db.Column(db.DateTime(timezone=True))
    # Contador TOTP más alto aceptado; cualquier paso <= a este es un replay.
    last_used_step = db.Column(db.BigInteger)

    failed_attempts = db.Column(db.Integer, nullable=False, default=0)
    first_failed_at = db.Column(db.DateTime(timezone=True))
    locked_until = db.Column(db.DateTime(timezone=True))
    lockout_count = db.Column(db.Integer, nullable=False, default=0)

    version = db.Column(db.Integer, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    owner = db.relationship('Users', back_populates='two_factor')
    backup_codes = db.relationship(
        'TwoFactorBackupCode',
        back_populates='credential',
        cascade="all, delete-orphan",
        order_by='TwoFactorBackupCode.position',
        lazy='selectin',
    )

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        db.CheckConstraint(
            "state IN ('not_enrolled', 'pending_verification', 'enabled')",
            name='ck_two_factor_credentials_state',
        ),
    )

    @property
    def is_enabled(self):
        return self.state == TWOFA_STATE_ENABLED

    def __repr__(self):  # pragma: no cover - sin el secreto
        return f"<TwoFactorCredential owner={self.owner_id} state={self.state}>"


class TwoFactorBackupCode(db.Model):
    __tablename__ = 'two_factor_backup_codes'

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4, server_default=func.gen_random_uuid())
    credential_id = db.Column(
        GUID(), db.ForeignKey('two_factor_credentials.id', ondelete='CASCADE'), nullable=False, index=True
    )
    position = db.Column(db.Integer, nullable=False)
    code_hash = db.Column(db.String(128), nullable=False)
    used_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    credential = db.relationship('TwoFactorCredential', back_populates='backup_codes')

    @property
    def consumed(self):
        return self.used_at is not None


# Modelo de Auditoría
class AuditLog(db.Model):
    __tablename__ = 'audit_log'

    id = db.Column(GUID(), primary_key=True, default=uuid.uuid4, server_default=func.gen_random_uuid())
    user_id = db.Column(GUID(), db.ForeignKey('users.id'), nullable=True)
    organization_id = db.Column(GUID(), nullable=True, index=True)

    action = db.Column(db.Text, nullable=False)
    outcome = db.Column(db.String(32), nullable=False)
    details = db.Column(JSONColumn())
    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(255))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=func.now())

    user = db.relationship('Users', back_populates='audit_logs')
