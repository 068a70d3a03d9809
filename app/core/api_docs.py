from app.schemas.common import ErrorOut


_ERROR_EXAMPLES: dict[int, tuple[str, str]] = {
    400: ("ValidationError", "Validation failed"),
    401: ("UnauthorizedError", "Invalid token"),
    403: ("ForbiddenError", "Access denied"),
    404: ("NotFoundError", "Resource not found"),
    409: ("ConflictError", "Resource already exists"),
    429: ("TooManyRequestsError", "Too many requests, please try again later"),
    500: ("AppError", "Internal server error"),
}


def error_responses(*status_codes: int) -> dict[int, dict]:
    responses: dict[int, dict] = {}
    for status_code in status_codes:
        error_type, message = _ERROR_EXAMPLES.get(status_code, ("HTTPError", "HTTP error"))
        responses[status_code] = {
            "model": ErrorOut,
            "description": message,
            "content": {
                "application/json": {
                    "example": {
                        "success": False,
                        "message": message,
                        "error": {
                            "type": error_type,
                            "timestamp": "2026-10-19T08:30:00+00:00",
                            "request_id": "request-id",
                            "path": "/api/example",
                        },
                    }
                }
            },
        }
    return responses
