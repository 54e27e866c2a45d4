"""Custom exceptions for the gateway application."""


class GatewayException(Exception):
    """Base class for gateway exceptions with HTTP status code.

    All custom exceptions should inherit from this class and define
    their specific status_code and error_code for consistent HTTP
    response handling.
    """
    status_code: int = 500
    error_code: str = "internal_error"

    def __init__(self, message: str = "Gateway error"):
        self.message = message
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.message, "code": self.error_code}


class ConfigurationError(GatewayException):
    """Raised when required secrets or identity settings are missing.

    Fatal to the feature, never retried per request.
    """
    status_code = 500
    error_code = "configuration_error"

    def to_response(self) -> dict:
        # Which secret is missing is logged, not returned.
        return {"error": "Service is not configured", "code": self.error_code}


# ============================================
# Upstream admission and API errors
# ============================================


class RateLimitExceeded(GatewayException):
    """Raised when the process-wide upstream budget is exhausted.

    Maps to HTTP 429 with a numeric Retry-After header.
    """
    status_code = 429
    error_code = "rate_limit_exceeded"

    def __init__(self, retry_after: int, message: str | None = None):
        self.retry_after = retry_after
        super().__init__(
            message or "Discogs rate limit reached. Please try again shortly."
        )

    def to_response(self) -> dict:
        return {"error": self.message, "retryAfter": self.retry_after}


class UpstreamError(GatewayException):
    """Raised for any non-2xx response from the Discogs API.

    The message embeds status, upstream message and endpoint so it can be
    logged and surfaced as ``details`` without further context.
    """
    status_code = 500
    error_code = "upstream_error"

    def __init__(self, endpoint: str, status: int, message: str):
        self.endpoint = endpoint
        self.status = status
        self.upstream_message = message
        super().__init__(f"Discogs {status} {message} ({endpoint})")


class UpstreamThrottled(UpstreamError):
    """Raised when Discogs still answers 429 after the single permitted retry."""
    status_code = 503
    error_code = "upstream_throttled"

    def __init__(self, endpoint: str, message: str = "Too Many Requests"):
        super().__init__(endpoint, 429, message)


# ============================================
# Delegated credential states
# ============================================


class NotConnected(GatewayException):
    """The user has not linked a Discogs account. Expected, not a fault."""
    status_code = 403
    error_code = "DISCOGS_NOT_CONNECTED"

    def __init__(self, message: str = "Discogs account not connected"):
        super().__init__(message)


class CredentialExpired(GatewayException):
    """Discogs rejected the stored tokens; they have been cleared."""
    status_code = 401
    error_code = "DISCOGS_TOKEN_EXPIRED"

    def __init__(
        self,
        message: str = "Discogs authorization expired. Please reconnect your account.",
    ):
        super().__init__(message)


class InternalError(GatewayException):
    """Credential validation failed for a reason other than revocation.

    Wraps the original exception in ``cause``; stored credentials are kept.
    """
    status_code = 500
    error_code = "internal_error"

    def __init__(self, cause: Exception, message: str = "Failed to validate Discogs credentials"):
        self.cause = cause
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.message, "details": str(self.cause)}


# ============================================
# Remote image fetching (SSRF defense)
# ============================================


class ImageFetchError(GatewayException):
    """Base class for rejected image URLs. Always a client input problem."""
    status_code = 400
    error_code = "invalid_image_url"

    def to_response(self) -> dict:
        return {"error": self.message}


class InvalidURL(ImageFetchError):
    error_code = "invalid_url"

    def __init__(self, message: str = "Invalid image URL"):
        super().__init__(message)


class HostNotAllowed(ImageFetchError):
    error_code = "host_not_allowed"

    def __init__(self, host: str):
        self.host = host
        super().__init__(f"Host '{host}' is not in the allowed list")


class ResolutionFailed(ImageFetchError):
    error_code = "resolution_failed"

    def __init__(self, host: str):
        self.host = host
        super().__init__("Could not resolve hostname")


class PrivateAddressBlocked(ImageFetchError):
    error_code = "private_address_blocked"

    def __init__(self, address: str):
        self.address = address
        super().__init__("URL resolves to a private/internal IP address")


class UpstreamFetchFailed(ImageFetchError):
    """The validated host answered with a non-2xx status or an oversized body."""
    status_code = 502
    error_code = "upstream_fetch_failed"

    def __init__(self, status: int | None = None, message: str = "Failed to fetch image from source"):
        self.status = status
        super().__init__(message)


class StorageError(GatewayException):
    """Object storage rejected or failed a request."""
    status_code = 500
    error_code = "storage_error"

    def __init__(self, message: str = "Failed to upload to storage"):
        super().__init__(message)

    def to_response(self) -> dict:
        return {"error": self.message}
