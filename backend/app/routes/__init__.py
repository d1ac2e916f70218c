"""
Routes package - modular organization of API endpoints.
"""
from flask import Blueprint

# Blueprint único para la API
api = Blueprint("api", __name__)

# Importar módulos de rutas después de crear el blueprint para evitar circular imports
from . import (
    health,
    account,
    twofa,
)

__all__ = ["api"]
