"""
Error taxonomy for the store API.

Services raise these; main.py turns them into JSON responses shaped like
FastAPI's HTTPException ({"detail": message}).
"""

from typing import Optional


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)
        self.message = message


class ValidationError(StoreError):
    status_code = 400


class AuthError(StoreError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class NotFoundError(StoreError):
    status_code = 404


class ConfigurationError(StoreError):
    status_code = 500


class DatabaseConnectionError(StoreError, ConnectionError):
    status_code = 503

    def __init__(self, message: str = "Database unavailable", cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


def first_error_message(exc) -> str:
    """Readable message from a pydantic ValidationError (or RequestValidationError)."""
    errors = exc.errors()
    if not errors:
        return "Invalid input"
    err = errors[0]
    loc = [str(part) for part in err.get("loc", ()) if part not in ("body", "query", "path")]
    msg = err.get("msg", "Invalid input")
    # pydantic prefixes custom ValueError messages
    if msg.startswith("Value error, "):
        msg = msg[len("Value error, "):]
    if loc and err.get("type") != "value_error":
        return f"{'.'.join(loc)}: {msg}"
    return msg
