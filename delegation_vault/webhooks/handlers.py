"""
Webhook ingestion for wallet-provider delegation events.

Processing order:
1. Verify the HMAC signature over the raw body (401 on mismatch, nothing else runs).
2. Parse and validate the event (400 on malformed payloads, nothing written).
3. Route on `eventName`:
   - wallet.delegation.created: open the provider envelopes, re-seal the record
     with the service key and write it to the vault (503 if the write fails,
     so the provider redelivers)
   - wallet.delegation.revoked: remove the record
   - ping: reply "Pong"

Redelivering the same event is safe: the record is simply superseded with an
equivalent one.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from cryptography.hazmat.primitives.asymmetric import rsa
from pydantic import ValidationError

from ..exceptions import (
    DecryptionError,
    DelegationError,
    MalformedRecordError,
    PayloadValidationError,
    StorageUnavailableError,
    WebhookAuthenticationError,
)
from ..models import DelegationKey, DelegationRecord
from ..wallet.security import decrypt_materials, encode_record
from ..wallet.vault import DelegationVault
from .schemas import DelegationCreatedEvent, DelegationRevokedEvent, PingEvent, webhook_event_adapter
from .verify import verify_signature

logger = logging.getLogger(__name__)


@dataclass
class WebhookResult:
    status: int
    body: Dict[str, Any] = field(default_factory=dict)


class WebhookIngestor:
    def __init__(
        self,
        vault: DelegationVault,
        webhook_secret: str,
        private_key: rsa.RSAPrivateKey,
        public_key: Optional[rsa.RSAPublicKey] = None,
    ) -> None:
        self.vault = vault
        self._webhook_secret = webhook_secret
        self._private_key = private_key
        self.public_key = public_key or private_key.public_key()

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> WebhookResult:
        try:
            verify_signature(raw_body, signature, self._webhook_secret)
        except WebhookAuthenticationError as exc:
            logger.warning("Rejected webhook delivery: %s", exc)
            return WebhookResult(401, {"success": False, "error": "request rejected"})

        try:
            event = self._parse(raw_body)
        except PayloadValidationError as exc:
            logger.warning("Invalid webhook payload: %s", exc)
            return WebhookResult(400, {"success": False, "error": "Invalid payload structure"})

        try:
            if isinstance(event, DelegationCreatedEvent):
                return await self.handle_delegation_created(event)
            if isinstance(event, DelegationRevokedEvent):
                return await self.handle_delegation_revoked(event)
            return self.handle_ping(event)
        except StorageUnavailableError as exc:
            logger.error("Vault write failed for webhook %s: %s", event.event_id, exc)
            return WebhookResult(503, {"success": False, "error": exc.public_message})
        except (DecryptionError, MalformedRecordError) as exc:
            logger.error("Undecryptable delegation material in webhook %s: %s", event.event_id, exc)
            return WebhookResult(400, {"success": False, "error": "request rejected"})
        except DelegationError as exc:
            logger.error("Webhook %s failed: %s", event.event_id, exc)
            return WebhookResult(exc.status_code, {"success": False, "error": exc.public_message})

    @staticmethod
    def _parse(raw_body: bytes):
        try:
            payload = json.loads(raw_body)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise PayloadValidationError("Invalid JSON payload") from exc
        try:
            return webhook_event_adapter.validate_python(payload)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise PayloadValidationError("Invalid payload structure", fields=fields) from exc

    def handle_ping(self, event: PingEvent) -> WebhookResult:
        return WebhookResult(200, {"success": True, "message": "Pong"})

    async def handle_delegation_created(self, event: DelegationCreatedEvent) -> WebhookResult:
        data = event.data
        key = DelegationKey(data.user_id, data.chain, data.wallet_id)
        delegated_share, wallet_api_key = decrypt_materials(
            data.encrypted_delegated_share,
            data.encrypted_wallet_api_key,
            self._private_key,
        )
        record = DelegationRecord(
            userId=data.user_id,
            chain=data.chain,
            walletId=data.wallet_id,
            address=data.public_key,
            delegatedShare=delegated_share,
            walletApiKey=wallet_api_key,
        )
        await self.vault.put(key, encode_record(record, self.public_key))
        logger.info("Processed delegation for %s (event %s)", key, event.event_id)
        return WebhookResult(200, {"success": True, "message": "Delegation created"})

    async def handle_delegation_revoked(self, event: DelegationRevokedEvent) -> WebhookResult:
        data = event.data
        key = DelegationKey(data.user_id, data.chain, data.wallet_id)
        if await self.vault.delete(key):
            logger.info("Revoked delegation for %s", key)
            return WebhookResult(200, {"success": True, "message": "Delegation revoked"})
        logger.info("No delegation found to revoke for %s", key)
        return WebhookResult(200, {"success": True, "message": "No delegation found to revoke"})
