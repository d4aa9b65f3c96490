"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    transient: bool = False

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CacheError(ServiceError):
    """Cache operation failed."""

    pass


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    transient = True

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class UpstreamConnectionError(ServiceError):
    """Connection reset, DNS failure or any other transport-level error."""

    transient = True


class UpstreamStatusError(ServiceError):
    """Upstream answered with an error status code."""

    def __init__(self, service_id: str, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(
            f"HTTP {status_code} from service '{service_id}': {body[:200]}",
            service_id=service_id,
        )

    @property
    def transient(self) -> bool:  # type: ignore[override]
        return self.status_code >= 500


class MalformedPayloadError(ServiceError):
    """Upstream body is not JSON or lacks the expected envelope."""

    pass


class SourceNotFoundError(ServiceError):
    """No playable media URL could be extracted from an embed reference."""

    def __init__(self, reference: str, reason: str):
        self.reference = reference
        self.reason = reason
        super().__init__(f"Video source not found for {reference}: {reason}")


def is_transient(exc: BaseException) -> bool:
    """Whether a failed upstream attempt is worth retrying."""
    return isinstance(exc, ServiceError) and exc.transient
