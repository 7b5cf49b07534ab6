from typing import Optional, Dict, Any


class ProbeException(Exception):
    """Base exception for all probe errors."""
    def __init__(
        self,
        message: str,
        code: str = "internal_error",
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}


class ProbeConfigError(ProbeException):
    """Raised when the probe request parameters are missing or malformed."""
    def __init__(self, message: str, code: str = "invalid_probe_config", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=400, details=details)


class ConfigurationError(ProbeException):
    """Raised when application configuration is invalid or missing."""
    def __init__(self, message: str, code: str = "config_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=500, details=details)


class ExternalAPIError(ProbeException):
    """Raised when an Azure REST API call fails."""
    def __init__(self, message: str, code: str = "external_api_error", status_code: int = 502, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, status_code=status_code, details=details)


class ResourceDiscoveryError(ExternalAPIError):
    """Raised when the Resource Graph query fails or returns an unexpected shape."""
    def __init__(self, message: str, code: str = "resource_discovery_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class MetricsQueryError(ExternalAPIError):
    """Raised when a metrics batch request fails as a whole."""
    def __init__(self, message: str, code: str = "metrics_query_error", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code=code, details=details)


class DeadlineExceededError(ExternalAPIError):
    """Raised when an outbound call does not finish before the probe deadline."""
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, code="deadline_exceeded", status_code=504, details=details)
