"""
HTTP-facing exceptions raised by the API layer
"""

from fastapi import HTTPException, status


class ValidationError(HTTPException):
    """Malformed request parameters"""

    def __init__(self, detail: str = "Validation error"):
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class NotFoundError(HTTPException):
    """Not found error exception"""

    def __init__(self, detail: str = "Resource not found"):
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadGatewayError(HTTPException):
    """Upstream host failed before any bytes were relayed"""

    def __init__(self, detail: str = "Upstream request failed"):
        super().__init__(status_code=status.HTTP_502_BAD_GATEWAY, detail=detail)


class UpstreamUnavailableError(HTTPException):
    """Neither live, cached nor snapshot data is available"""

    def __init__(self, detail: str = "Upstream unavailable"):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=detail
        )
