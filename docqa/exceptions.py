"""Exception taxonomy for the document Q&A pipeline."""

from typing import Any, Dict, Optional

RATE_LIMIT_MESSAGE = "API rate limit exceeded. Please wait a moment and try again."


class DocQAError(Exception):
    """Base exception for all pipeline errors surfaced to API callers."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for JSON response."""
        return {
            "error": {
                "message": self.message,
                "code": self.code,
                "status_code": self.status_code,
                "details": self.details,
            }
        }


class ConfigurationError(DocQAError):
    """Raised when no valid provider or backend configuration is present."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=500,
            code="CONFIGURATION_ERROR",
            details=details,
        )


class ExtractionError(DocQAError):
    """Source bytes are unreadable or the MIME type is unsupported."""

    def __init__(
        self,
        message: str = "Error extracting text from document. The file may be corrupt or in an unsupported format.",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=400,
            code="EXTRACTION_ERROR",
            details=details,
        )


class ProviderError(DocQAError):
    """A model provider returned a non-success status or a malformed payload."""

    def __init__(
        self,
        provider: str,
        message: Optional[str] = None,
        status_code: int = 500,
        code: str = "PROVIDER_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ):
        self.provider = provider
        error_details = details or {}
        error_details["provider"] = provider
        super().__init__(
            message=message or f"The {provider} provider failed to process the request.",
            status_code=status_code,
            code=code,
            details=error_details,
        )


class ProviderRateLimitError(ProviderError):
    """A provider signalled quota exhaustion or HTTP 429."""

    def __init__(self, provider: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            provider=provider,
            message=RATE_LIMIT_MESSAGE,
            status_code=429,
            code="RATE_LIMITED",
            details=details,
        )


class ProviderUnavailableError(ProviderError):
    """The configured provider could not be reached."""

    def __init__(self, provider: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            provider=provider,
            message=f"Failed to connect to {provider}. Make sure the {provider} service is running and reachable.",
            status_code=500,
            code="PROVIDER_UNAVAILABLE",
            details=details,
        )


class StorageError(DocQAError):
    """The vector backend rejected an upsert or query."""

    def __init__(
        self,
        message: str = "Vector database error. Please check your Pinecone configuration.",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=500,
            code="STORAGE_ERROR",
            details=details,
        )


class DriveAuthError(DocQAError):
    """Google Drive credentials are missing or were rejected."""

    def __init__(
        self,
        message: str = "Google Drive authentication required",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=401,
            code="DRIVE_AUTH_ERROR",
            details=details,
        )


class DriveError(DocQAError):
    """The Google Drive API failed to list or download a file."""

    def __init__(
        self,
        message: str = "Failed to fetch data from Google Drive",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            status_code=502,
            code="DRIVE_ERROR",
            details=details,
        )


class InvalidRequestError(DocQAError):
    """The request is missing input or carries an unsupported value."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=400,
            code="INVALID_REQUEST",
            details=details,
        )


class InternalError(DocQAError):
    """An unexpected failure; the message is generic and the cause is only logged."""

    def __init__(self, message: str = "An unexpected error occurred. Please try again."):
        super().__init__(
            message=message,
            status_code=500,
            code="INTERNAL_ERROR",
        )
