"""
Bloqueo temporal por intentos fallidos de 2FA.

Tras ``max_failures`` fallos dentro de ``window`` la credencial queda
bloqueada ``base_lockout * 2**lockout_count`` (con tope ``max_lockout``).
El contador de bloqueos sólo vuelve a cero con una verificación exitosa.
"""
from dataclasses import dataclass
from datetime import timedelta

from .clock import as_utc
from .errors import RateLimitedError


@dataclass(frozen=True)
class ThrottlePolicy:
    max_failures: int = 5
    window: timedelta = timedelta(minutes=5)
    base_lockout: timedelta = timedelta(seconds=30)
    max_lockout: timedelta = timedelta(minutes=15)

    @classmethod
    def from_config(cls, config):
        return cls(
            max_failures=int(config.get("TWOFA_MAX_FAILED_ATTEMPTS", 5)),
            window=timedelta(seconds=int(config.get("TWOFA_FAILURE_WINDOW_SECONDS", 300))),
            base_lockout=timedelta(seconds=int(config.get("TWOFA_LOCKOUT_BASE_SECONDS", 30))),
            max_lockout=timedelta(seconds=int(config.get("TWOFA_LOCKOUT_MAX_SECONDS", 900))),
        )

    def lockout_for(self, lockout_count):
        seconds = self.base_lockout.total_seconds() * (2 ** max(0, lockout_count))
        return min(timedelta(seconds=seconds), self.max_lockout)


def ensure_not_locked(credential, now):
    """Lanza ``RateLimitedError`` si la credencial sigue bloqueada."""
    locked_until = as_utc(credential.locked_until)
    if locked_until and locked_until > now:
        raise RateLimitedError(retry_after=(locked_until - now).total_seconds() + 0.999)


def register_failure(credential, now, policy):
    """
    Suma un fallo y bloquea si se alcanzó el máximo.

    Returns:
        El instante hasta el que queda bloqueada, o None.
    """
    first_failed_at = as_utc(credential.first_failed_at)
    if first_failed_at is None or now - first_failed_at > policy.window:
        credential.failed_attempts = 0
        credential.first_failed_at = now

    credential.failed_attempts = (credential.failed_attempts or 0) + 1
    if credential.failed_attempts < policy.max_failures:
        return None

    lockout_count = credential.lockout_count or 0
    locked_until = now + policy.lockout_for(lockout_count)
    credential.locked_until = locked_until
    credential.lockout_count = lockout_count + 1
    credential.failed_attempts = 0
    credential.first_failed_at = None
    return locked_until


def register_success(credential):
    credential.failed_attempts = 0
    credential.first_failed_at = None
    credential.locked_until = None
    credential.lockout_count = 0
