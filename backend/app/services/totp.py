"""
Códigos de un solo uso basados en tiempo (RFC 6238, HMAC-SHA1).

``verify_totp`` acepta el paso actual, el anterior y el siguiente (en ese
orden) y rechaza cualquier contador ya consumido. La comparación contra cada
candidato se hace con ``hmac.compare_digest``.
"""
import base64
import hashlib
import hmac
import struct
from dataclasses import dataclass
from typing import Optional

from .codes import is_totp_format
from .errors import InvalidCodeError, MalformedCodeError, ReplayedCodeError

TOTP_PERIOD = 30
TOTP_DIGITS = 6
TOTP_DRIFT_STEPS = 1


@dataclass(frozen=True)
class TotpMatch:
    counter: int
    offset: int

    @property
    def drifted(self) -> bool:
        return self.offset != 0


def _normalize_base32(secret):
    """Normaliza un secreto base32 añadiendo padding si es necesario."""
    value = (secret or '').strip().replace(' ', '').upper()
    padding = '=' * ((8 - len(value) % 8) % 8)
    return value + padding


def decode_secret(secret) -> bytes:
    try:
        key = base64.b32decode(_normalize_base32(secret), casefold=True)
    except (ValueError, TypeError) as exc:
        raise ValueError("El secreto TOTP no es base32 válido.") from exc
    if not key:
        raise ValueError("El secreto TOTP está vacío.")
    return key


def time_step(timestamp, period=TOTP_PERIOD) -> int:
    return int(timestamp // period)


def hotp_value(key: bytes, counter: int, digits=TOTP_DIGITS) -> str:
    """HOTP con truncado dinámico (RFC 4226 §5.3)."""
    msg = struct.pack('>Q', counter)
    digest = hmac.new(key, msg, hashlib.sha1).digest()
    offset = digest[-1] & 0x0F
    code = (struct.unpack('>I', digest[offset:offset + 4])[0] & 0x7FFFFFFF) % (10 ** digits)
    return f'{code:0{digits}d}'


def totp_value(secret, timestamp, period=TOTP_PERIOD, digits=TOTP_DIGITS) -> str:
    """Genera el código TOTP para un timestamp dado."""
    return hotp_value(decode_secret(secret), time_step(timestamp, period), digits)


def seconds_remaining(timestamp, period=TOTP_PERIOD) -> int:
    """Segundos hasta que cambie el código actual."""
    return int(period - (int(timestamp) % period))


def _window(drift_steps):
    # Orden de prueba: actual, anterior, siguiente (y así sucesivamente).
    offsets = [0]
    for step in range(1, drift_steps + 1):
        offsets.extend((-step, step))
    return offsets


def verify_totp(
    secret,
    submitted_code,
    reference_time,
    *,
    last_used_step: Optional[int] = None,
    period=TOTP_PERIOD,
    digits=TOTP_DIGITS,
    drift_steps=TOTP_DRIFT_STEPS,
) -> TotpMatch:
    """
    Verifica un código TOTP con tolerancia de deriva.

    Args:
        secret: secreto base32 compartido.
        submitted_code: texto enviado por el usuario.
        reference_time: segundos epoch del servidor.
        last_used_step: contador más alto ya aceptado para este secreto.

    Returns:
        ``TotpMatch`` con el contador aceptado y el desfase (-1, 0, +1).

    Raises:
        MalformedCodeError: el código no tiene exactamente ``digits`` dígitos.
        ReplayedCodeError: el código es válido pero su paso ya se consumió.
        InvalidCodeError: ningún paso de la ventana coincide.
    """
    if not isinstance(submitted_code, str) or len(submitted_code) != digits or not is_totp_format(submitted_code):
        raise MalformedCodeError()

    key = decode_secret(secret)
    current = time_step(reference_time, period)
    candidate = submitted_code.encode('ascii')

    match = None
    for offset in _window(drift_steps):
        counter = current + offset
        if counter < 0:
            continue
        expected = hotp_value(key, counter, digits).encode('ascii')
        if hmac.compare_digest(expected, candidate) and match is None:
            match = TotpMatch(counter=counter, offset=offset)

    if match is None:
        raise InvalidCodeError()
    if last_used_step is not None and match.counter <= last_used_step:
        raise ReplayedCodeError()
    return match
