from fastapi import HTTPException


class AppError(HTTPException):
    """Base for every error the raffle services raise.

    ``error_code`` lets callers tell the taxonomy apart even when two errors
    share an HTTP status.
    """

    status_code_default = 400
    error_code = "error"
    default_detail = "Request failed"

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code_default, detail=detail or self.default_detail)


class NotFoundError(AppError):
    status_code_default = 404
    error_code = "not_found"
    default_detail = "Not found"


class InvalidStateError(AppError):
    error_code = "invalid_state"
    default_detail = "Operation not allowed in the current raffle state"


class ValidationError(AppError):
    error_code = "validation_error"
    default_detail = "Invalid input"


class ConflictError(AppError):
    error_code = "conflict"
    default_detail = "Already exists"


class NoEligibleParticipantsError(AppError):
    error_code = "no_eligible_participants"
    default_detail = "No eligible participants remaining"


class InvalidCredentialError(AppError):
    status_code_default = 401
    error_code = "invalid_credential"
    default_detail = "Incorrect confirmation code"


class UnauthorizedError(AppError):
    status_code_default = 401
    error_code = "unauthorized"
    default_detail = "Not authenticated"


class ConcurrencyConflictError(AppError):
    status_code_default = 409
    error_code = "concurrency_conflict"
    default_detail = "The raffle was modified concurrently, please retry"
