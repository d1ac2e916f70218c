"""
Errores del subsistema de autenticación en dos pasos.

Cada excepción lleva el código HTTP, un identificador estable y el mensaje
que se devuelve al cliente. ``ReplayedCodeError`` hereda de
``InvalidCodeError`` y comparte su respuesta para no filtrar qué falló;
sólo los logs y la auditoría los distinguen.
"""


class TwoFactorError(Exception):
    status_code = 400
    error_code = "twofa_error"
    public_message = "No se pudo completar la operación de verificación en dos pasos."
    audit_outcome = "failure"

    def __init__(self, message=None):
        super().__init__(message or self.public_message)

    def to_dict(self):
        return {"error": self.public_message, "code": self.error_code}


class MalformedCodeError(TwoFactorError):
    error_code = "malformed_code"
    public_message = "El código debe tener 6 dígitos o el formato de un código de respaldo."
    audit_outcome = "malformed"


class AlreadyEnrolledError(TwoFactorError):
    error_code = "already_enrolled"
    public_message = "La autenticación en dos pasos ya está activada."
    audit_outcome = "rejected"


class NotEnrolledError(TwoFactorError):
    error_code = "not_enrolled"
    public_message = "La autenticación en dos pasos no está activada."
    audit_outcome = "rejected"


class InvalidCodeError(TwoFactorError):
    error_code = "invalid_code"
    public_message = "El código proporcionado no es válido."
    audit_outcome = "invalid"


class ReplayedCodeError(InvalidCodeError):
    audit_outcome = "replayed"


class RateLimitedError(TwoFactorError):
    status_code = 429
    error_code = "rate_limited"
    public_message = "Demasiados intentos fallidos. Espera antes de volver a intentarlo."
    audit_outcome = "rate_limited"

    def __init__(self, retry_after, message=None):
        super().__init__(message)
        self.retry_after = max(1, int(retry_after))

    def to_dict(self):
        payload = super().to_dict()
        payload["retry_after"] = self.retry_after
        return payload


class TransientStoreError(TwoFactorError):
    """El almacén no respondió o hubo una escritura concurrente; sin cambios de estado."""

    status_code = 503
    error_code = "temporarily_unavailable"
    public_message = "El servicio no está disponible en este momento. Intenta de nuevo."
    audit_outcome = "error"
