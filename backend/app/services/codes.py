"""
Clasificación de los códigos enviados por el usuario.

Un código llega como texto libre desde la capa HTTP y se decide una sola vez
si es un código TOTP o un código de respaldo; el resto del subsistema trabaja
con ``TotpCode`` o ``BackupCode`` y nunca vuelve a inspeccionar la forma.
"""
import re
from dataclasses import dataclass
from typing import Union

from .errors import MalformedCodeError

BACKUP_CODE_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"
BACKUP_CODE_LENGTH = 16
BACKUP_CODE_GROUP = 4

_TOTP_RE = re.compile(r"^[0-9]{6}$")
_BACKUP_RE = re.compile(rf"^[{BACKUP_CODE_ALPHABET}]{{{BACKUP_CODE_LENGTH}}}$")
_SEPARATORS_RE = re.compile(r"[\s\-]+")
_MAX_MASKED_LENGTH = 24


@dataclass(frozen=True)
class TotpCode:
    value: str
    method = "totp"


@dataclass(frozen=True)
class BackupCode:
    value: str
    method = "backup_code"


SubmittedCode = Union[TotpCode, BackupCode]


def is_totp_format(value) -> bool:
    return isinstance(value, str) and bool(_TOTP_RE.match(value))


def normalize_backup_code(value) -> str:
    """Mayúsculas y sin guiones ni espacios."""
    return _SEPARATORS_RE.sub("", str(value or "")).upper()


def is_backup_code_format(value) -> bool:
    return bool(_BACKUP_RE.match(normalize_backup_code(value)))


def format_backup_code(value: str) -> str:
    """Agrupa un código normalizado como XXXX-XXXX-XXXX-XXXX."""
    return "-".join(
        value[i:i + BACKUP_CODE_GROUP] for i in range(0, len(value), BACKUP_CODE_GROUP)
    )


def parse_submitted_code(raw, *, allow_backup: bool = True) -> SubmittedCode:
    """
    Convierte la entrada del usuario en una variante tipada.

    Raises:
        MalformedCodeError: si no es un TOTP de 6 dígitos ni (cuando se permite)
            un código de respaldo.
    """
    candidate = str(raw or "").strip()
    if is_totp_format(candidate):
        return TotpCode(candidate)
    if allow_backup and is_backup_code_format(candidate):
        return BackupCode(normalize_backup_code(candidate))
    raise MalformedCodeError()


def mask_code(raw) -> str:
    """Versión enmascarada de un código para logs y auditoría."""
    value = str(raw or "").strip()[:_MAX_MASKED_LENGTH]
    if not value:
        return ""
    if len(value) <= 4:
        return "*" * len(value)
    visible = 2 if len(value) <= 8 else 4
    return value[:visible] + "*" * (len(value) - visible)
