"""
Schemas for inbound wallet-provider webhook events.

Every event shares the base envelope fields (message/event ids, timestamp,
webhook and environment ids). The `eventName` field discriminates between:
- ping: sent when a webhook is configured or tested
- wallet.delegation.created: carries the encrypted delegated share and wallet API key
- wallet.delegation.revoked: the user withdrew the delegation
"""

from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from ..models import EncryptedEnvelope


class BaseWebhookEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message_id: str = Field(alias="messageId")
    event_id: str = Field(alias="eventId")
    timestamp: str
    webhook_id: str = Field(alias="webhookId")
    environment_id: str = Field(alias="environmentId")
    environment_name: Optional[str] = Field(default=None, alias="environmentName")
    user_id: Optional[str] = Field(default=None, alias="userId")
    redelivery: Optional[bool] = None


class PingData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    webhook_id: str = Field(alias="webhookId")
    message: str
    events: List[str]
    url: str
    is_enabled: bool = Field(alias="isEnabled")


class PingEvent(BaseWebhookEvent):
    event_name: Literal["ping"] = Field(alias="eventName")
    data: PingData


class DelegationCreatedData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    encrypted_delegated_share: EncryptedEnvelope = Field(alias="encryptedDelegatedShare")
    encrypted_wallet_api_key: EncryptedEnvelope = Field(alias="encryptedWalletApiKey")
    wallet_id: str = Field(alias="walletId", min_length=1)
    chain: str = Field(min_length=1)
    public_key: str = Field(alias="publicKey", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


class DelegationCreatedEvent(BaseWebhookEvent):
    event_name: Literal["wallet.delegation.created"] = Field(alias="eventName")
    data: DelegationCreatedData


class DelegationRevokedData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    wallet_id: str = Field(alias="walletId", min_length=1)
    chain: str = Field(min_length=1)
    public_key: str = Field(alias="publicKey", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


class DelegationRevokedEvent(BaseWebhookEvent):
    event_name: Literal["wallet.delegation.revoked"] = Field(alias="eventName")
    data: DelegationRevokedData


WebhookEvent = Annotated[
    Union[DelegationCreatedEvent, DelegationRevokedEvent, PingEvent],
    Field(discriminator="event_name"),
]

webhook_event_adapter: TypeAdapter = TypeAdapter(WebhookEvent)
