"""
Custom error classes for KPI Report Hub.
Structured error handling with error codes across all modules.

Hierarchy:
    HubError
    ├── APIError
    │   ├── APITimeoutError
    │   ├── APIRateLimitError
    │   ├── APIAuthError
    │   ├── APIPermissionError
    │   └── APINotFoundError
    ├── DataError
    │   ├── ConfigError
    │   ├── MissingConfigurationError
    │   ├── SchemaValidationError
    │   └── DataFetchError
    └── ReportError
        ├── NarrativeGenerationError
        └── ReportGenerationError
"""
from typing import List, Optional


class HubError(Exception):
    """Base exception for all KPI Report Hub errors."""

    def __init__(self, message: str, code: str = "UNKNOWN", details: dict = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(f"[{code}] {message}")


# --- API Errors ---

class APIError(HubError):
    """Base class for external API errors."""

    def __init__(self, message: str, code: str = "API_ERROR",
                 status_code: int = None, url: str = None, **kwargs):
        self.status_code = status_code
        self.url = url
        details = {"status_code": status_code, "url": url, **kwargs}
        super().__init__(message, code=code, details=details)


class APITimeoutError(APIError):
    """Request timed out."""

    def __init__(self, url: str, timeout: float):
        super().__init__(
            f"Request timed out after {timeout}s: {url}",
            code="API_TIMEOUT", url=url, timeout=timeout,
        )


class APIRateLimitError(APIError):
    """Rate limit exceeded."""

    def __init__(self, url: str, retry_after: float = None):
        msg = f"Rate limit exceeded: {url}"
        if retry_after:
            msg += f" (retry after {retry_after}s)"
        self.retry_after = retry_after
        super().__init__(
            msg, code="API_RATE_LIMIT", status_code=429, url=url,
            retry_after=retry_after,
        )


class APIAuthError(APIError):
    """Authentication failure (invalid or expired credential)."""

    def __init__(self, url: str, status_code: int = 401):
        super().__init__(
            f"Authentication failed: {url}",
            code="API_AUTH_FAILED", url=url, status_code=status_code,
        )


class APIPermissionError(APIError):
    """Credential is valid but lacks the scope for this resource."""

    def __init__(self, url: str, missing_scopes: Optional[List[str]] = None,
                 message: str = None):
        self.missing_scopes = list(missing_scopes or [])
        if self.missing_scopes:
            msg = f"Access denied: missing scope(s) {', '.join(self.missing_scopes)}"
        else:
            msg = message or "Access denied"
        super().__init__(
            f"{msg} ({url})", code="API_PERMISSION_DENIED", status_code=403,
            url=url, missing_scopes=self.missing_scopes,
        )


class APINotFoundError(APIError):
    """Requested resource does not exist."""

    def __init__(self, url: str):
        super().__init__(
            f"Resource not found: {url}",
            code="API_NOT_FOUND", status_code=404, url=url,
        )


# --- Data Errors ---

class DataError(HubError):
    """Base class for data processing errors."""
    pass


class ConfigError(DataError):
    """Configuration file error."""

    def __init__(self, message: str, config_path: str = None):
        super().__init__(
            message, code="CONFIG_ERROR",
            details={"config_path": config_path},
        )


class MissingConfigurationError(DataError):
    """A credential or setting required by a data source is absent."""

    def __init__(self, source: str, setting: str):
        self.source = source
        self.setting = setting
        super().__init__(
            f"{source} is not configured: {setting} is missing",
            code="MISSING_CONFIGURATION",
            details={"source": source, "setting": setting},
        )


class SchemaValidationError(DataError):
    """Data doesn't match expected schema."""

    def __init__(self, message: str, field: str = None):
        super().__init__(
            message, code="SCHEMA_INVALID", details={"field": field},
        )


class DataFetchError(DataError):
    """Failed to fetch or load data from storage."""

    def __init__(self, message: str, source: str = None):
        super().__init__(
            message, code="DATA_FETCH_FAILED", details={"source": source},
        )


# --- Report Errors ---

class ReportError(HubError):
    """Report generation error."""
    pass


class NarrativeGenerationError(ReportError):
    """The narrative generator failed or returned an unusable payload."""

    def __init__(self, message: str, cause: Exception = None):
        if cause:
            message = f"{message}: {cause}"
        super().__init__(message, code="NARRATIVE_FAILED")


class ReportGenerationError(ReportError):
    """A report could not be produced for the requested account and year."""

    def __init__(self, message: str, account_id: str = None, step: str = None):
        super().__init__(
            message, code="REPORT_FAILED",
            details={"account_id": account_id, "step": step},
        )
