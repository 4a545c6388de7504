from typing import Any, Dict, Optional


class DelegationError(Exception):
    """Base exception for delegation vault errors"""

    status_code: int = 500
    retryable: bool = False
    public_message: str = "request rejected"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        if not self.context:
            return self.message
        details = ", ".join(f"{k}={v}" for k, v in self.context.items())
        return f"{self.message} ({details})"


class ConfigurationError(DelegationError):
    """Raised when required configuration is missing or invalid"""


class WebhookAuthenticationError(DelegationError):
    """Raised when a webhook signature is missing or does not match"""

    status_code = 401


class PayloadValidationError(DelegationError):
    """Raised when an inbound payload does not have the expected shape"""

    status_code = 400


class StorageUnavailableError(DelegationError):
    """Raised when the backing key-value store cannot be reached"""

    status_code = 503
    retryable = True
    public_message = "storage unavailable, try again"


class NotDelegatedError(DelegationError):
    """Raised when no delegation record exists for the requested identity"""

    status_code = 404
    public_message = "delegation not found"


class DecryptionError(DelegationError):
    """Raised when encrypted material cannot be opened with the configured key"""


class MalformedRecordError(DelegationError):
    """Raised when decrypted or stored material does not parse into a record"""


class SigningProtocolError(DelegationError):
    """Raised when the co-signing handshake is aborted, malformed or times out"""

    status_code = 502
    retryable = True
    public_message = "signing failed, try again"

    def __init__(self, message: str, round_number: Optional[int] = None, **context: Any):
        super().__init__(message, round=round_number, **context)
        self.round_number = round_number


class AuthenticationError(DelegationError):
    """Raised when a caller presents no bearer token or an invalid one"""

    status_code = 401
    public_message = "authentication required"


class AuthorizationError(DelegationError):
    """Raised when an authenticated caller asks for a wallet it does not own"""

    status_code = 403
    public_message = "not authorized for this wallet"
