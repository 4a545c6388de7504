from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _dist_version


def _resolve_version() -> str:
    try:
        return _dist_version("delegation-vault")
    except PackageNotFoundError:
        return "0.0.0"


__version__: str = _resolve_version()

from .config import DelegationSettings  # noqa: E402
from .exceptions import (  # noqa: E402
    ConfigurationError,
    DecryptionError,
    DelegationError,
    MalformedRecordError,
    NotDelegatedError,
    PayloadValidationError,
    SigningProtocolError,
    StorageUnavailableError,
    WebhookAuthenticationError,
)
from .lock import ExecutionLock, ExecutionLockToken, arun_exclusive, run_exclusive  # noqa: E402
from .models import (  # noqa: E402
    DelegationKey,
    DelegationRecord,
    EncryptedEnvelope,
    EncryptedRecord,
    RoundMessage,
    SignedArtifact,
    TransactionIntent,
)

__all__ = [
    "__version__",
    "DelegationSettings",
    "DelegationError",
    "ConfigurationError",
    "WebhookAuthenticationError",
    "PayloadValidationError",
    "StorageUnavailableError",
    "NotDelegatedError",
    "DecryptionError",
    "MalformedRecordError",
    "SigningProtocolError",
    "ExecutionLock",
    "ExecutionLockToken",
    "run_exclusive",
    "arun_exclusive",
    "DelegationKey",
    "DelegationRecord",
    "EncryptedEnvelope",
    "EncryptedRecord",
    "RoundMessage",
    "SignedArtifact",
    "TransactionIntent",
]
