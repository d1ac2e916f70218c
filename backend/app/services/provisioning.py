"""Generación del secreto TOTP y del descriptor para apps autenticadoras."""
import base64
import logging
import secrets
from dataclasses import dataclass
from io import BytesIO
from typing import Optional
from urllib.parse import quote, urlencode

import qrcode

from .totp import TOTP_DIGITS, TOTP_PERIOD

logger = logging.getLogger(__name__)

SECRET_BYTES = 20  # 160 bits


@dataclass(frozen=True)
class ProvisioningDescriptor:
    secret: str
    provisioning_uri: str
    qr_data_url: Optional[str] = None

    def __repr__(self):
        return f"ProvisioningDescriptor(provisioning_uri=<redacted>, qr={'yes' if self.qr_data_url else 'no'})"


def generate_totp_secret(num_bytes=SECRET_BYTES) -> str:
    """Genera un secreto TOTP base32 (sin padding) para 2FA."""
    return base64.b32encode(secrets.token_bytes(num_bytes)).decode('ascii').rstrip('=')


def build_otpauth_url(secret, account_label, issuer, *, digits=TOTP_DIGITS, period=TOTP_PERIOD) -> str:
    """Construye la URL otpauth:// que consumen las apps autenticadoras."""
    account = (account_label or 'usuario').strip()
    issuer = (issuer or '').strip()
    label = quote(f"{issuer}:{account}" if issuer else account, safe='')
    query = urlencode(
        {
            'secret': secret,
            'issuer': issuer,
            'algorithm': 'SHA1',
            'digits': digits,
            'period': period,
        },
        quote_via=quote,
    )
    return f'otpauth://totp/{label}?{query}'


def build_qr_data_url(otpauth_url: str) -> Optional[str]:
    """Genera un data URL de un QR PNG a partir de la URL otpauth."""
    try:
        qr = qrcode.QRCode(border=1, box_size=6)
        qr.add_data(otpauth_url)
        qr.make(fit=True)
        img = qr.make_image(fill_color="black", back_color="white")
        buf = BytesIO()
        img.save(buf, format="PNG")
        encoded = base64.b64encode(buf.getvalue()).decode("ascii")
        return f"data:image/png;base64,{encoded}"
    except (OSError, ValueError) as exc:
        logger.error(
            "No se pudo generar QR para 2FA: %s", exc,
            extra={"event": "twofa.qr_failed", "error_type": type(exc).__name__},
        )
        return None


def begin_enrollment(account_label, issuer_label, *, digits=TOTP_DIGITS, period=TOTP_PERIOD,
                     with_qr=True) -> ProvisioningDescriptor:
    """Secreto nuevo más su descriptor de aprovisionamiento."""
    secret = generate_totp_secret()
    uri = build_otpauth_url(secret, account_label, issuer_label, digits=digits, period=period)
    qr_url = build_qr_data_url(uri) if with_qr else None
    return ProvisioningDescriptor(secret=secret, provisioning_uri=uri, qr_data_url=qr_url)
