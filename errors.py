"""
Error taxonomy for the shop backend.

Every error carries the HTTP status the API answers with, so routes can let
them propagate and a single handler renders them.
"""


class ShopError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ShopError):
    """A required field is missing or malformed."""
    status_code = 400


class NotFoundError(ShopError):
    status_code = 404


class InsufficientStockError(ShopError):
    status_code = 409


class WrongPinError(ShopError):
    status_code = 401


class PinLockedError(WrongPinError):
    status_code = 429


class PermissionDeniedError(ShopError):
    status_code = 403


class PersistenceError(ShopError):
    """The local store (or, when asked explicitly, the mirror) failed."""
    status_code = 503


class RecognitionError(ShopError):
    status_code = 502
