"""
Ciclo de vida de la credencial 2FA de un usuario.

``TwoFactorService`` es el único que escribe ``TwoFactorCredential``:

    not_enrolled --begin_setup--> pending_verification --confirm_setup--> enabled
    enabled --disable--> not_enrolled

Toda la identidad (usuario y organización) llega como parámetro explícito.
Cada transición, exitosa o no, emite exactamente un evento de auditoría.
"""
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import List, Optional

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import (
    TWOFA_STATE_ENABLED,
    TWOFA_STATE_NOT_ENROLLED,
    TWOFA_STATE_PENDING,
    TwoFactorCredential,
    UserSessions,
)
from .audit import AuditEvent, DatabaseAuditSink
from .backup_codes import (
    BACKUP_CODE_COUNT,
    clear_backup_codes,
    consume_backup_code,
    generate_backup_codes,
    remaining_backup_codes,
    replace_backup_codes,
)
from .clock import SystemClock, as_utc
from .codes import TotpCode, mask_code, parse_submitted_code
from .errors import (
    AlreadyEnrolledError,
    InvalidCodeError,
    NotEnrolledError,
    ReplayedCodeError,
    TransientStoreError,
    TwoFactorError,
)
from .provisioning import begin_enrollment
from .throttle import ThrottlePolicy, ensure_not_locked, register_failure, register_success
from .totp import TOTP_DIGITS, TOTP_DRIFT_STEPS, TOTP_PERIOD, seconds_remaining, verify_totp

logger = logging.getLogger(__name__)

ACTION_SETUP = "security.2fa.setup_started"
ACTION_ENABLE = "security.2fa.enabled"
ACTION_VERIFY = "security.2fa.verified"
ACTION_DISABLE = "security.2fa.disabled"
ACTION_REGENERATE = "security.2fa.backup_regenerated"


@dataclass(frozen=True)
class TwoFactorSettings:
    issuer: str = "Lexdesk"
    period: int = TOTP_PERIOD
    digits: int = TOTP_DIGITS
    drift_steps: int = TOTP_DRIFT_STEPS
    backup_code_count: int = BACKUP_CODE_COUNT
    throttle: ThrottlePolicy = field(default_factory=ThrottlePolicy)
    render_qr: bool = True

    @classmethod
    def from_config(cls, config):
        return cls(
            issuer=config.get("TOTP_ISSUER") or "Lexdesk",
            period=int(config.get("TOTP_PERIOD", TOTP_PERIOD)),
            digits=int(config.get("TOTP_DIGITS", TOTP_DIGITS)),
            drift_steps=int(config.get("TOTP_DRIFT_STEPS", TOTP_DRIFT_STEPS)),
            backup_code_count=int(config.get("BACKUP_CODE_COUNT", BACKUP_CODE_COUNT)),
            throttle=ThrottlePolicy.from_config(config),
            render_qr=bool(config.get("TWOFA_RENDER_QR", True)),
        )


@dataclass(frozen=True)
class SetupResult:
    secret: str
    provisioning_uri: str
    qr_data_url: Optional[str] = None
    backup_codes: List[str] = field(default_factory=list)

    def __repr__(self):
        return "SetupResult(<redacted>)"


@dataclass(frozen=True)
class CodeCheck:
    method: str
    drift_offset: Optional[int] = None
    backup_codes_remaining: Optional[int] = None


class TwoFactorService:
    """Máquina de estados de enrolamiento 2FA."""

    def __init__(self, *, session=None, clock=None, audit_sink=None, settings=None):
        self.session = session or db.session
        self.clock = clock or SystemClock()
        self.audit_sink = audit_sink or DatabaseAuditSink(self.session)
        self.settings = settings or TwoFactorSettings()

    @classmethod
    def from_app(cls, app=None, **kwargs):
        app = app or current_app
        kwargs.setdefault("clock", app.config.get("TWOFA_CLOCK") or SystemClock())
        kwargs.setdefault("settings", TwoFactorSettings.from_config(app.config))
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # Operaciones
    # ------------------------------------------------------------------

    def status(self, owner_id):
        credential = self._load(owner_id, lock=False)
        state = credential.state if credential is not None else TWOFA_STATE_NOT_ENROLLED
        codes = list(credential.backup_codes) if credential is not None else []
        enabled_at = as_utc(credential.enabled_at) if credential is not None else None
        return {
            "enabled": state == TWOFA_STATE_ENABLED,
            "state": state,
            "enabled_at": enabled_at.isoformat() if enabled_at else None,
            "backup_codes_total": len(codes),
            "backup_codes_remaining": sum(1 for entry in codes if not entry.consumed),
            "seconds_remaining": seconds_remaining(self.clock.timestamp(), self.settings.period),
        }

    def is_enabled(self, owner_id):
        credential = self._load(owner_id, lock=False)
        return credential is not None and credential.is_enabled

    def begin_setup(self, owner_id, organization_id, account_label):
        """
        Genera un secreto nuevo y deja la credencial en ``pending_verification``.

        Si ya había un secreto pendiente se reemplaza; una credencial activa
        no se toca y se responde con ``AlreadyEnrolledError``.
        """
        with self._transition(ACTION_SETUP, owner_id, organization_id):
            credential = self._load(owner_id)
            try:
                if credential is not None and credential.is_enabled:
                    raise AlreadyEnrolledError()
            except TwoFactorError as exc:
                self._reject(ACTION_SETUP, owner_id, organization_id, credential, exc)
                raise

            descriptor = begin_enrollment(
                account_label,
                self.settings.issuer,
                digits=self.settings.digits,
                period=self.settings.period,
                with_qr=self.settings.render_qr,
            )

            if credential is None:
                credential = TwoFactorCredential(owner_id=owner_id, state=TWOFA_STATE_NOT_ENROLLED)
                self.session.add(credential)
            superseded = credential.state == TWOFA_STATE_PENDING

            credential.organization_id = organization_id
            credential.secret = descriptor.secret
            credential.state = TWOFA_STATE_PENDING
            credential.enabled_at = None
            credential.last_used_step = None
            clear_backup_codes(credential)
            self._commit()

            self._emit(
                ACTION_SETUP, owner_id, organization_id, "success",
                details={"superseded_pending": superseded},
            )
            return SetupResult(
                secret=descriptor.secret,
                provisioning_uri=descriptor.provisioning_uri,
                qr_data_url=descriptor.qr_data_url,
            )

    def confirm_setup(self, owner_id, organization_id, code):
        """Activa 2FA con el primer código TOTP válido y entrega los códigos de respaldo."""
        with self._transition(ACTION_ENABLE, owner_id, organization_id):
            credential = self._load(owner_id)
            now = self.clock.now()
            try:
                if credential is None or credential.state == TWOFA_STATE_NOT_ENROLLED:
                    raise NotEnrolledError()
                if credential.is_enabled:
                    raise AlreadyEnrolledError()
                ensure_not_locked(credential, now)
                submitted = parse_submitted_code(code, allow_backup=False)
                match = self._verify_totp(credential, submitted.value)
            except TwoFactorError as exc:
                self._reject(ACTION_ENABLE, owner_id, organization_id, credential, exc, code)
                raise

            codes = generate_backup_codes(self.settings.backup_code_count)
            replace_backup_codes(credential, codes)
            credential.state = TWOFA_STATE_ENABLED
            credential.enabled_at = now
            credential.last_used_step = match.counter
            register_success(credential)
            self._commit()

            self._emit(
                ACTION_ENABLE, owner_id, organization_id, "success",
                details={"method": "totp", "backup_codes_issued": len(codes), "drift_offset": match.offset},
            )
            return codes

    def verify_for_login(self, owner_id, organization_id, code):
        """Comprueba un código TOTP o de respaldo para una cuenta con 2FA activa."""
        with self._transition(ACTION_VERIFY, owner_id, organization_id):
            credential = self._load(owner_id)
            try:
                self._require_enabled(credential)
                result = self._check_code(credential, code)
            except TwoFactorError as exc:
                self._reject(ACTION_VERIFY, owner_id, organization_id, credential, exc, code)
                raise

            self._commit()
            self._emit(ACTION_VERIFY, owner_id, organization_id, "success", details=self._check_details(result))
            return result

    def disable(self, owner_id, organization_id, code):
        """Desactiva 2FA tras verificar el código; borra secreto y códigos de respaldo."""
        with self._transition(ACTION_DISABLE, owner_id, organization_id):
            credential = self._load(owner_id)
            try:
                self._require_enabled(credential)
                result = self._check_code(credential, code)
            except TwoFactorError as exc:
                self._reject(ACTION_DISABLE, owner_id, organization_id, credential, exc, code)
                raise

            credential.secret = None
            credential.state = TWOFA_STATE_NOT_ENROLLED
            credential.enabled_at = None
            credential.last_used_step = None
            clear_backup_codes(credential)
            # Las sesiones verificadas con esta inscripción dejan de contar como 2FA.
            self.session.execute(
                update(UserSessions)
                .where(UserSessions.user_id == owner_id)
                .values(two_factor_verified_at=None)
                .execution_options(synchronize_session=False)
            )
            self._commit()

            self._emit(ACTION_DISABLE, owner_id, organization_id, "success", details={"method": result.method})
            return result

    def regenerate_backup_codes(self, owner_id, organization_id, code):
        """Reemplaza todos los códigos de respaldo tras verificar el código."""
        with self._transition(ACTION_REGENERATE, owner_id, organization_id):
            credential = self._load(owner_id)
            try:
                self._require_enabled(credential)
                result = self._check_code(credential, code)
            except TwoFactorError as exc:
                self._reject(ACTION_REGENERATE, owner_id, organization_id, credential, exc, code)
                raise

            codes = generate_backup_codes(self.settings.backup_code_count)
            replace_backup_codes(credential, codes)
            self._commit()

            self._emit(
                ACTION_REGENERATE, owner_id, organization_id, "success",
                details={"method": result.method, "count": len(codes)},
            )
            return codes

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------

    @staticmethod
    def _require_enabled(credential):
        if credential is None or not credential.is_enabled:
            raise NotEnrolledError()

    def _verify_totp(self, credential, value):
        return verify_totp(
            credential.secret,
            value,
            self.clock.timestamp(),
            last_used_step=credential.last_used_step,
            period=self.settings.period,
            digits=self.settings.digits,
            drift_steps=self.settings.drift_steps,
        )

    def _check_code(self, credential, code):
        now = self.clock.now()
        ensure_not_locked(credential, now)
        submitted = parse_submitted_code(code)

        if isinstance(submitted, TotpCode):
            match = self._verify_totp(credential, submitted.value)
            credential.last_used_step = match.counter
            if match.drifted:
                logger.info(
                    "Código TOTP aceptado con desfase de reloj",
                    extra={
                        "event": "twofa.code.drift",
                        "owner_id": str(credential.owner_id),
                        "drift_offset": match.offset,
                    },
                )
            result = CodeCheck(method=submitted.method, drift_offset=match.offset)
        else:
            consume_backup_code(self.session, credential, submitted.value, now)
            result = CodeCheck(
                method=submitted.method,
                backup_codes_remaining=remaining_backup_codes(credential),
            )

        register_success(credential)
        return result

    @staticmethod
    def _check_details(result):
        details = {"method": result.method}
        if result.drift_offset is not None:
            details["drift_offset"] = result.drift_offset
        if result.backup_codes_remaining is not None:
            details["backup_codes_remaining"] = result.backup_codes_remaining
        return details

    @contextmanager
    def _transition(self, action, owner_id, organization_id):
        """Un fallo del almacén también deja su evento de auditoría."""
        try:
            yield
        except TransientStoreError as exc:
            self._emit(action, owner_id, organization_id, exc.audit_outcome, details={"error": exc.error_code})
            raise
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                "Error del almacén durante %s: %s", action, exc,
                extra={"event": "twofa.store.failed", "action": action, "error_type": type(exc).__name__},
            )
            error = TransientStoreError()
            self._emit(action, owner_id, organization_id, error.audit_outcome, details={"error": error.error_code})
            raise error from exc

    def _load(self, owner_id, lock=True):
        stmt = (
            db.select(TwoFactorCredential)
            .where(TwoFactorCredential.owner_id == owner_id)
            .execution_options(populate_existing=True)
        )
        if lock:
            stmt = stmt.with_for_update()
        try:
            return self.session.execute(stmt).scalar_one_or_none()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                "No se pudo leer la credencial 2FA: %s", exc,
                extra={"event": "twofa.store.read_failed", "error_type": type(exc).__name__},
            )
            raise TransientStoreError() from exc

    def _commit(self):
        try:
            self.session.commit()
        except StaleDataError as exc:
            self.session.rollback()
            logger.warning(
                "Actualización concurrente de la credencial 2FA",
                extra={"event": "twofa.store.concurrent_update"},
            )
            raise TransientStoreError() from exc
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.error(
                "No se pudo guardar la credencial 2FA: %s", exc,
                extra={"event": "twofa.store.write_failed", "error_type": type(exc).__name__},
            )
            raise TransientStoreError() from exc

    def _reject(self, action, owner_id, organization_id, credential, exc, raw_code=None):
        """Registra el fallo (contador de intentos incluido) y su evento de auditoría."""
        details = {"error": exc.error_code}
        if isinstance(exc, InvalidCodeError) and credential is not None:
            locked_until = register_failure(credential, self.clock.now(), self.settings.throttle)
            if locked_until is not None:
                details["locked_until"] = locked_until.isoformat()
                logger.warning(
                    "Credencial 2FA bloqueada por intentos fallidos",
                    extra={"event": "twofa.locked", "owner_id": str(owner_id), "locked_until": locked_until.isoformat()},
                )
            self._commit()
        else:
            self.session.rollback()

        if isinstance(exc, ReplayedCodeError):
            logger.warning(
                "Código TOTP reutilizado",
                extra={"event": "twofa.code.replayed", "owner_id": str(owner_id), "action": action},
            )

        self._emit(
            action, owner_id, organization_id, exc.audit_outcome,
            masked_input=mask_code(raw_code) if raw_code else None,
            details=details,
        )

    def _emit(self, action, owner_id, organization_id, outcome, masked_input=None, details=None):
        event = AuditEvent(
            action=action,
            owner_id=owner_id,
            organization_id=organization_id,
            outcome=outcome,
            timestamp=self.clock.now(),
            masked_input=masked_input,
            details=dict(details or {}),
        )
        try:
            self.audit_sink.emit(event)
        except Exception as exc:  # el sink nunca debe tumbar la transición
            logger.warning(
                "No se pudo emitir auditoría (%s): %s", action, exc,
                extra={"event": "audit.emit_failed", "action": action, "error_type": type(exc).__name__},
            )
