class FinanceError(ValueError):
    """Base class for errors surfaced to API clients as ``{"error": message}``."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(FinanceError):
    status_code = 400


class AuthenticationError(FinanceError):
    status_code = 401


class NotFoundError(FinanceError):
    status_code = 404


class ConflictError(FinanceError):
    status_code = 409


class InternalError(FinanceError):
    status_code = 500
