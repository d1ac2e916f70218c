"""
Tests para backend/app/services/codes.py
Clasificación y enmascarado de los códigos enviados.
"""
import pytest

from backend.app.services.codes import (
    BackupCode,
    TotpCode,
    format_backup_code,
    mask_code,
    normalize_backup_code,
    parse_submitted_code,
)
from backend.app.services.errors import MalformedCodeError


def test_six_digits_is_totp():
    parsed = parse_submitted_code(" 123456 ")
    assert parsed == TotpCode("123456")
    assert parsed.method == "totp"


def test_backup_code_normalized():
    parsed = parse_submitted_code("abcd-efgh ijkl-mnop")
    assert isinstance(parsed, BackupCode)
    assert parsed.value == "ABCDEFGHIJKLMNOP"
    assert parsed.method == "backup_code"


def test_backup_code_rejected_when_not_allowed():
    with pytest.raises(MalformedCodeError):
        parse_submitted_code("ABCD-EFGH-IJKL-MNOP", allow_backup=False)


@pytest.mark.parametrize("raw", ["", None, "12345", "1234567", "ABCD-EFGH", "ABCD-EFGH-IJKL-MNO1", "ÄBCD-EFGH-IJKL-MNOP"])
def test_malformed_inputs(raw):
    with pytest.raises(MalformedCodeError):
        parse_submitted_code(raw)


def test_format_and_normalize_are_inverse():
    assert format_backup_code("ABCDEFGHIJKLMNOP") == "ABCD-EFGH-IJKL-MNOP"
    assert normalize_backup_code("abcd-efgh-ijkl-mnop") == "ABCDEFGHIJKLMNOP"


def test_mask_code_hides_most_of_the_value():
    assert mask_code("123456") == "12****"
    assert mask_code("ABCD-EFGH-IJKL-MNOP") == "ABCD" + "*" * 15
    assert mask_code("123") == "***"
    assert mask_code("") == ""


def test_mask_code_truncates_long_input():
    masked = mask_code("9" * 200)
    assert len(masked) == 24
    assert masked.startswith("9999")
