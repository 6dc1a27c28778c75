"""Service-layer failures that carry the HTTP status the API should return."""


class ServiceError(Exception):
    """Raised by services; route handlers map it onto HTTPException."""

    def __init__(self, status_code: int, message: str) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.message = message
