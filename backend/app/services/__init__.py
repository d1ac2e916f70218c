"""
Services package - lógica de 2FA reutilizable.

Este paquete contiene la lógica que no depende de blueprints: TOTP,
códigos de respaldo, throttling, auditoría y la máquina de estados
``TwoFactorService`` que las coordina.
"""

__all__ = [
    "audit",
    "backup_codes",
    "clock",
    "codes",
    "errors",
    "provisioning",
    "throttle",
    "totp",
    "twofactor",
]
