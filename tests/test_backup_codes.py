"""
Tests para backend/app/services/backup_codes.py
Códigos de respaldo: generación, hash y consumo atómico.
"""
from datetime import datetime, timezone

import pytest

from backend.app.extensions import db
from backend.app.models import TwoFactorBackupCode, TwoFactorCredential
from backend.app.services.backup_codes import (
    backup_code_matches,
    claim_backup_code,
    consume_backup_code,
    generate_backup_codes,
    hash_backup_code,
    remaining_backup_codes,
    replace_backup_codes,
)
from backend.app.services.codes import is_backup_code_format, normalize_backup_code
from backend.app.services.errors import InvalidCodeError

NOW = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


def test_generates_distinct_well_formed_codes():
    codes = generate_backup_codes(10)
    assert len(codes) == 10
    assert len({normalize_backup_code(code) for code in codes}) == 10
    for code in codes:
        assert is_backup_code_format(code)
        assert len(code) == 19
        assert code.count("-") == 3


def test_hash_accepts_any_presentation(app_ctx):
    code_hash = hash_backup_code("ABCD-EFGH-IJKL-MNOP")
    assert "ABCD" not in code_hash
    assert backup_code_matches(code_hash, "abcdefghijklmnop")
    assert backup_code_matches(code_hash, "ABCD EFGH IJKL MNOP")
    assert not backup_code_matches(code_hash, "ABCD-EFGH-IJKL-MNOQ")


def test_corrupt_hash_never_matches(app_ctx):
    assert backup_code_matches("not-a-bcrypt-hash", "ABCD-EFGH-IJKL-MNOP") is False


@pytest.fixture()
def credential_with_codes(app_ctx, user_factory):
    user = user_factory()
    credential = TwoFactorCredential(owner_id=user.id, state="enabled", secret="JBSWY3DPEHPK3PXP")
    codes = generate_backup_codes(3)
    replace_backup_codes(credential, codes)
    db.session.add(credential)
    db.session.commit()
    return credential, codes


def test_only_hashes_are_stored(credential_with_codes):
    credential, codes = credential_with_codes
    stored = db.session.execute(
        db.select(TwoFactorBackupCode.code_hash).where(TwoFactorBackupCode.credential_id == credential.id)
    ).scalars().all()
    assert len(stored) == 3
    plain = {normalize_backup_code(code) for code in codes} | set(codes)
    assert not plain & set(stored)


def test_code_consumed_once(credential_with_codes):
    credential, codes = credential_with_codes

    entry = consume_backup_code(db.session, credential, codes[1], NOW)
    db.session.commit()
    assert entry.consumed
    assert remaining_backup_codes(credential) == 2

    with pytest.raises(InvalidCodeError):
        consume_backup_code(db.session, credential, codes[1], NOW)
    db.session.rollback()


def test_second_claim_on_same_row_fails(credential_with_codes):
    credential, _ = credential_with_codes
    entry_id = credential.backup_codes[0].id

    assert claim_backup_code(db.session, entry_id, NOW) is True
    assert claim_backup_code(db.session, entry_id, NOW) is False
    db.session.commit()


def test_unknown_code_rejected(credential_with_codes):
    credential, _ = credential_with_codes
    with pytest.raises(InvalidCodeError):
        consume_backup_code(db.session, credential, "ZZZZ-ZZZZ-ZZZZ-ZZZZ", NOW)
    assert remaining_backup_codes(credential) == 3


def test_replace_invalidates_previous_codes(credential_with_codes):
    credential, old_codes = credential_with_codes
    new_codes = generate_backup_codes(3)
    replace_backup_codes(credential, new_codes)
    db.session.commit()

    with pytest.raises(InvalidCodeError):
        consume_backup_code(db.session, credential, old_codes[0], NOW)
    consume_backup_code(db.session, credential, new_codes[0], NOW)
    db.session.commit()

    total = db.session.execute(
        db.select(db.func.count(TwoFactorBackupCode.id)).where(TwoFactorBackupCode.credential_id == credential.id)
    ).scalar_one()
    assert total == 3
