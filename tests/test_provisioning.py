"""
Tests para backend/app/services/provisioning.py
Secreto TOTP, URL otpauth y QR.
"""
import base64
from urllib.parse import parse_qs, unquote, urlparse

from backend.app.services.provisioning import (
    begin_enrollment,
    build_otpauth_url,
    build_qr_data_url,
    generate_totp_secret,
)
from backend.app.services.totp import decode_secret


def test_secret_has_160_bits():
    secret = generate_totp_secret()
    assert len(decode_secret(secret)) == 20
    assert secret == secret.upper()
    assert "=" not in secret


def test_secrets_are_unique():
    assert len({generate_totp_secret() for _ in range(50)}) == 50


def test_otpauth_url_fields():
    url = build_otpauth_url("JBSWY3DPEHPK3PXP", "ana@lexdesk.test", "Lexdesk Legal")
    parsed = urlparse(url)
    assert parsed.scheme == "otpauth"
    assert parsed.netloc == "totp"
    assert unquote(parsed.path) == "/Lexdesk Legal:ana@lexdesk.test"

    params = parse_qs(parsed.query)
    assert params["secret"] == ["JBSWY3DPEHPK3PXP"]
    assert params["issuer"] == ["Lexdesk Legal"]
    assert params["algorithm"] == ["SHA1"]
    assert params["digits"] == ["6"]
    assert params["period"] == ["30"]
    assert "+" not in url


def test_qr_is_png_data_url():
    data_url = build_qr_data_url("otpauth://totp/Lexdesk:ana?secret=JBSWY3DPEHPK3PXP")
    assert data_url.startswith("data:image/png;base64,")
    payload = base64.b64decode(data_url.split(",", 1)[1])
    assert payload.startswith(b"\x89PNG")


def test_begin_enrollment_without_qr():
    descriptor = begin_enrollment("ana@lexdesk.test", "Lexdesk", with_qr=False)
    assert descriptor.qr_data_url is None
    assert descriptor.secret in descriptor.provisioning_uri
    assert descriptor.secret not in repr(descriptor)
