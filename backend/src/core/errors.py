"""
Domain errors raised by services and rendered by the API layer.

Every error carries an HTTP status and a short machine-readable code.
`ExternalServiceError` never reaches a visitor: the AI gateway turns it
into the chatbot's fallback reply.
"""


class AppError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str = "Internal Server Error", **context):
        super().__init__(message)
        self.message = message
        # Correlation fields (chatbot_id, conversation_id, ...) for the logs
        self.context = context


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class UnauthorizedError(AppError):
    status_code = 401
    code = "unauthorized"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"


class ValidationError(AppError):
    status_code = 422
    code = "validation_error"


class ConflictError(AppError):
    status_code = 409
    code = "conflict"


class RateLimitedError(AppError):
    status_code = 429
    code = "rate_limited"

    def __init__(self, message: str = "Too many requests, please try again later.", retry_after: int | None = None, **context):
        super().__init__(message, **context)
        self.retry_after = retry_after


class ExternalServiceError(AppError):
    status_code = 502
    code = "external_service_error"
