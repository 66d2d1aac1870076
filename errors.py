from fastapi import HTTPException, status


class ApiError(HTTPException):
    """Base for every error the API reports as ``{"error": ..., "code": ...}``."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "internal_error"
    message: str = "Internal server error"

    def __init__(self, detail: str | None = None):
        super().__init__(status_code=self.status_code, detail=detail or self.message)

    def to_dict(self) -> dict:
        return {"error": self.detail, "code": self.code}


class ValidationError(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "validation_error"
    message = "Invalid request"


class InvalidOrExpiredCode(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_or_expired_code"
    message = "Invalid or expired OTP"


class InvalidCode(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "invalid_code"
    message = "Invalid OTP. Please try again."


class TooManyAttempts(ApiError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "too_many_attempts"
    message = "Too many failed attempts. Please request a new OTP."


class Forbidden(ApiError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "forbidden"
    message = "Invalid authentication credentials"


class NotFound(ApiError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"
    message = "Not found"


class DownstreamFailure(ApiError):
    code = "downstream_failure"
    message = "A downstream service failed. Please try again."


class InternalError(ApiError):
    pass
