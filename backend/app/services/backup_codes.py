"""
Códigos de respaldo de un solo uso.

Los códigos en texto plano sólo existen en la respuesta que los entrega; en
la base se guarda el hash bcrypt (con sal) de la forma normalizada. El
consumo es un compare-and-set sobre ``used_at`` para que dos peticiones
concurrentes con el mismo código no puedan tener éxito a la vez.
"""
import secrets

from sqlalchemy import update
from sqlalchemy.orm.attributes import set_committed_value

from ..extensions import bcrypt
from ..models import TwoFactorBackupCode
from .codes import (
    BACKUP_CODE_ALPHABET,
    BACKUP_CODE_LENGTH,
    format_backup_code,
    normalize_backup_code,
)
from .errors import InvalidCodeError

BACKUP_CODE_COUNT = 10


def _random_code():
    return ''.join(secrets.choice(BACKUP_CODE_ALPHABET) for _ in range(BACKUP_CODE_LENGTH))


def generate_backup_codes(count=BACKUP_CODE_COUNT):
    """Genera ``count`` códigos distintos, agrupados para facilitar su lectura."""
    codes = []
    seen = set()
    while len(codes) < count:
        code = _random_code()
        if code in seen:
            continue
        seen.add(code)
        codes.append(format_backup_code(code))
    return codes


def hash_backup_code(code):
    return bcrypt.generate_password_hash(normalize_backup_code(code)).decode('utf-8')


def backup_code_matches(code_hash, code):
    try:
        return bcrypt.check_password_hash(code_hash, normalize_backup_code(code))
    except ValueError:
        # Hash corrupto o con formato desconocido.
        return False


def build_backup_code_records(codes):
    return [
        TwoFactorBackupCode(position=index, code_hash=hash_backup_code(code))
        for index, code in enumerate(codes)
    ]


def replace_backup_codes(credential, codes):
    """Invalida todos los códigos existentes (usados o no) e instala los nuevos."""
    credential.backup_codes = build_backup_code_records(codes)
    return credential.backup_codes


def clear_backup_codes(credential):
    credential.backup_codes = []


def remaining_backup_codes(credential):
    return sum(1 for entry in credential.backup_codes if not entry.consumed)


def find_backup_code(credential, code):
    """Busca un registro sin consumir cuyo hash coincida con ``code``."""
    for entry in credential.backup_codes:
        if entry.consumed:
            continue
        if backup_code_matches(entry.code_hash, code):
            return entry
    return None


def claim_backup_code(session, entry_id, now):
    """
    Marca el código como usado sólo si nadie lo hizo antes.

    Returns:
        True si esta llamada fue la que lo consumió.
    """
    result = session.execute(
        update(TwoFactorBackupCode)
        .where(
            TwoFactorBackupCode.id == entry_id,
            TwoFactorBackupCode.used_at.is_(None),
        )
        .values(used_at=now)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def consume_backup_code(session, credential, code, now):
    """
    Consume un código de respaldo del usuario.

    Raises:
        InvalidCodeError: si no hay un código sin usar que coincida o si otra
            petición lo consumió primero.
    """
    entry = find_backup_code(credential, code)
    if entry is None:
        raise InvalidCodeError()
    if not claim_backup_code(session, entry.id, now):
        raise InvalidCodeError()
    set_committed_value(entry, "used_at", now)
    return entry
