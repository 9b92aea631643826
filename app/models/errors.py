"""
Delivery Error Taxonomy

Every failure the delivery engine can reach is tagged with an ErrorClass so
that routes, logs and the delivery record agree on what happened.
"""

from enum import Enum
from typing import Optional


class ErrorClass(str, Enum):
    """Classification recorded on a DeliveryAttempt."""

    INVALID_PAYLOAD = "InvalidPayload"
    IGNORED = "Ignored"  # Handled no-op, not a failure
    NO_CREDENTIAL = "NoCredential"
    REFRESH_FAILED = "RefreshFailed"
    CREDENTIAL_UNDECRYPTABLE = "CredentialUndecryptable"
    TARGET_NOT_FOUND = "TargetNotFound"
    TARGET_NOT_RESOLVABLE = "TargetNotResolvable"
    PROVIDER_REJECTED = "ProviderRejected"
    UNAUTHORIZED = "Unauthorized"
    NETWORK_TIMEOUT = "NetworkTimeout"
    INTERNAL_ERROR = "InternalError"


class RelayError(Exception):
    """Base class for all delivery engine errors."""

    error_class: ErrorClass = ErrorClass.INTERNAL_ERROR


class InvalidPayloadError(RelayError):
    """Raised when a webhook body fails JSON parsing or schema validation."""

    error_class = ErrorClass.INVALID_PAYLOAD


class NoCredentialError(RelayError):
    """Raised when no credential has been stored yet."""

    error_class = ErrorClass.NO_CREDENTIAL


class RefreshFailedError(RelayError):
    """Raised when the refresh exchange fails. The stored credential is kept."""

    error_class = ErrorClass.REFRESH_FAILED


class CredentialDecryptionError(RelayError):
    """Raised when stored ciphertext cannot be decrypted (e.g. rotated key)."""

    error_class = ErrorClass.CREDENTIAL_UNDECRYPTABLE


class OAuthError(RelayError):
    """Raised by the OAuth client when the token endpoint rejects a request."""

    error_class = ErrorClass.REFRESH_FAILED

    def __init__(self, message: str, status: Optional[int] = None, code: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.code = code


class GraphApiError(RelayError):
    """Non-2xx response from Microsoft Graph."""

    # Codes Graph uses when a chat/thread id does not exist or is not a chat
    NOT_FOUND_CODES = {"NotFound", "ItemNotFound", "ChatNotFound", "ThreadNotFound"}
    # Substrings of Graph's 400 message for a malformed or unknown thread id
    NOT_FOUND_MARKERS = ("thread id", "threadid", "chat id", "chatid")

    def __init__(
        self,
        status: int,
        provider_code: Optional[str] = None,
        provider_message: Optional[str] = None,
    ):
        self.status = status
        self.provider_code = provider_code or ""
        self.provider_message = provider_message or ""
        super().__init__(
            f"Graph API error: {status} {self.provider_code} - {self.provider_message}"
        )

    @property
    def is_unauthorized(self) -> bool:
        return self.status in (401, 403)

    @property
    def is_conversation_not_found(self) -> bool:
        """True when Graph says the id is not a chat it knows about."""
        if self.is_unauthorized:
            return False
        if self.status == 404 or self.provider_code in self.NOT_FOUND_CODES:
            return True
        if self.status == 400:
            message = self.provider_message.lower()
            return any(marker in message for marker in self.NOT_FOUND_MARKERS)
        return False

    @property
    def error_class(self) -> ErrorClass:  # type: ignore[override]
        if self.is_unauthorized:
            return ErrorClass.UNAUTHORIZED
        if self.is_conversation_not_found:
            return ErrorClass.TARGET_NOT_FOUND
        return ErrorClass.PROVIDER_REJECTED


class GraphNetworkError(RelayError):
    """Timeout or connection failure talking to Graph or the token endpoint."""

    error_class = ErrorClass.NETWORK_TIMEOUT


class TargetNotResolvableError(RelayError):
    """Discovery exhausted every joined team without matching the id."""

    error_class = ErrorClass.TARGET_NOT_RESOLVABLE
