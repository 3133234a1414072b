"""Error kinds raised by the store core and mapped to HTTP responses by the server."""
from typing import Any, Dict, List, Optional


class StoreError(Exception):
    """Base class for locally recoverable store errors."""
    http_status = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StockExceeded(StoreError):
    """A cart mutation (or checkout) would put more units in the cart than are in stock."""
    http_status = 409

    def __init__(self, message: str, lines: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message)
        self.lines = lines or []


class PermissionDenied(StoreError):
    http_status = 403


class NotFound(StoreError):
    http_status = 404


class ValidationError(StoreError):
    http_status = 400


class RemoteUnavailable(StoreError):
    """The sync webhook could not be reached, or returned an unusable pull payload."""
    http_status = 502
