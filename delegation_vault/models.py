"""
Data model for delegation records and the co-signing protocol.

Secret-bearing fields (`delegated_share`, `wallet_api_key`) are excluded from
`repr()` so records can be logged by identity without leaking key material.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Literal, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator

RECORD_VERSION = 1


def _require_text(value: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError("must be a non-empty string")
    return value


@dataclass(frozen=True)
class DelegationKey:
    """Composite identity of a delegation record."""

    user_id: str
    chain: str
    wallet_id: str

    def __post_init__(self) -> None:
        for name in ("user_id", "chain", "wallet_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ValueError(f"DelegationKey.{name} must be a non-empty string")

    @property
    def storage_key(self) -> str:
        """Each part is percent-encoded, so `:` inside a part cannot shift the boundaries."""
        return "delegation:record:" + ":".join(quote(part, safe="") for part in (self.user_id, self.chain, self.wallet_id))

    def __str__(self) -> str:
        return f"{self.user_id}/{self.chain}/{self.wallet_id}"


class DelegationRecord(BaseModel):
    """Plaintext delegation record. Only ever held in memory."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    chain: str
    wallet_id: str = Field(alias="walletId")
    address: str
    delegated_share: Dict[str, Any] = Field(alias="delegatedShare", repr=False)
    wallet_api_key: SecretStr = Field(alias="walletApiKey", repr=False)

    @field_validator("user_id", "chain", "wallet_id", "address")
    @classmethod
    def _check_text(cls, value: str) -> str:
        return _require_text(value)

    @property
    def key(self) -> DelegationKey:
        return DelegationKey(self.user_id, self.chain, self.wallet_id)


class EncryptedEnvelope(BaseModel):
    """
    Hybrid RSA-OAEP / AES-256-GCM ciphertext.

    Field descriptions:
    - alg: Encryption algorithm identifier
    - ek: RSA-OAEP wrapped AES-256 key (base64url)
    - iv: AES-GCM nonce (base64url)
    - ct: Ciphertext (base64url)
    - tag: AES-GCM authentication tag (base64url)
    - kid: Optional identifier of the public key used for wrapping
    """

    alg: str
    iv: str
    ct: str
    tag: str
    ek: str
    kid: Optional[str] = None


class EncryptedRecord(BaseModel):
    """At-rest form of a delegation record; identity and address stay readable."""

    model_config = ConfigDict(populate_by_name=True)

    version: int = RECORD_VERSION
    user_id: str = Field(alias="userId", min_length=1)
    chain: str = Field(min_length=1)
    wallet_id: str = Field(alias="walletId", min_length=1)
    address: str = Field(min_length=1)
    delegated_share: EncryptedEnvelope = Field(alias="delegatedShare")
    wallet_api_key: EncryptedEnvelope = Field(alias="walletApiKey")

    @property
    def key(self) -> DelegationKey:
        return DelegationKey(self.user_id, self.chain, self.wallet_id)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True, exclude_none=True)

    def describe(self) -> Dict[str, Any]:
        """Non-secret view used by lookup endpoints."""
        return {
            "userId": self.user_id,
            "chain": self.chain,
            "walletId": self.wallet_id,
            "address": self.address,
        }


class TransactionIntent(BaseModel):
    """What the caller wants signed: a personal message or an EVM transaction."""

    kind: Literal["message", "transaction"] = "message"
    message: Optional[str] = None
    transaction: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def _check_body(self) -> "TransactionIntent":
        if self.kind == "message":
            if not self.message:
                raise ValueError("message intents require a non-empty 'message'")
            if self.transaction is not None:
                raise ValueError("message intents must not carry a 'transaction'")
        else:
            if not self.transaction:
                raise ValueError("transaction intents require a 'transaction' object")
            if self.message is not None:
                raise ValueError("transaction intents must not carry a 'message'")
        return self


class RoundMessage(BaseModel):
    """One message of the two-party signing handshake."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId", min_length=1)
    round: int = Field(ge=1)
    payload: Dict[str, Any] = Field(default_factory=dict)


class SignedArtifact(BaseModel):
    """Completed co-signature over an intent. Not broadcast."""

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId")
    chain: str
    wallet_id: str = Field(alias="walletId")
    address: str
    intent: TransactionIntent
    digest: str
    signature: str
    session_id: str = Field(alias="sessionId")
    rounds: int
