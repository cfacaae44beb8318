# errors.py
"""Errores de dominio. Cada uno se traduce a una respuesta JSON en app.py."""


class PosError(Exception):
    status_code = 400

    def __init__(self, message, status_code=None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self):
        return {"error": self.message}


class ValidationError(PosError):
    """Carrito vacío, mesa faltante, precio inválido, PIN incorrecto..."""
    status_code = 400


class AuthError(PosError):
    status_code = 401


class ForbiddenError(PosError):
    status_code = 403


class NotFoundError(PosError):
    status_code = 404


class PersistenceError(PosError):
    status_code = 500

    def __init__(self, message="No se pudo guardar. Inténtalo de nuevo."):
        super().__init__(message)
