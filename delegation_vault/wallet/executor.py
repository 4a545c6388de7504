"""
Delegated execution: vault lookup -> decrypt -> reconstruct signer -> co-sign.

Failure semantics:
- Missing record: NotDelegatedError, raised before any decryption.
- Key mismatch or corrupt record: DecryptionError / MalformedRecordError, fatal.
- Remote or local protocol trouble, or the handshake outliving the timeout:
  SigningProtocolError. Round state is local to one call and is discarded on
  every exit path, cancellation included; a retry starts a fresh session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Optional

from cryptography.hazmat.primitives.asymmetric import rsa

from ..exceptions import NotDelegatedError, SigningProtocolError
from ..models import DelegationKey, DelegationRecord, EncryptedRecord, RoundMessage, SignedArtifact, TransactionIntent
from .cosigner import CoSigner
from .security import decode_record
from .signer import ShareSigner, SignerFactory, SigningSession, digest_hex, intent_digest
from .vault import DelegationVault

logger = logging.getLogger(__name__)


class DelegatedExecutionService:
    def __init__(
        self,
        vault: DelegationVault,
        private_key: rsa.RSAPrivateKey,
        signer_factory: SignerFactory,
        cosigner: CoSigner,
        *,
        timeout_seconds: float = 30.0,
        abort_timeout_seconds: Optional[float] = None,
    ) -> None:
        self.vault = vault
        self._private_key = private_key
        self.signer_factory = signer_factory
        self.cosigner = cosigner
        self.timeout_seconds = timeout_seconds
        # A failed call returns within timeout_seconds + abort_timeout_seconds.
        self.abort_timeout_seconds = (
            abort_timeout_seconds if abort_timeout_seconds is not None else min(timeout_seconds, 1.0)
        )

    async def execute(
        self,
        user_id: str,
        chain: str,
        wallet_id: str,
        intent: TransactionIntent,
    ) -> SignedArtifact:
        key = DelegationKey(user_id, chain, wallet_id)
        blob = await self.vault.get(key)
        if blob is None:
            raise NotDelegatedError("No delegation record", key=str(key))
        return await self._execute_record(blob, intent)

    async def execute_by_address(self, address: str, chain: str, intent: TransactionIntent) -> SignedArtifact:
        blob = await self.vault.get_by_address(address, chain)
        if blob is None:
            raise NotDelegatedError("No delegation record for address", address=address, chain=chain)
        return await self._execute_record(blob, intent)

    async def _execute_record(self, blob: EncryptedRecord, intent: TransactionIntent) -> SignedArtifact:
        record = await asyncio.to_thread(decode_record, blob, self._private_key)
        digest = intent_digest(intent, record.chain)

        try:
            signer = self.signer_factory(record.delegated_share)
        except (ValueError, KeyError, TypeError) as exc:
            raise SigningProtocolError("Local signer could not be reconstructed", key=str(record.key)) from exc

        logger.info("Signing %s intent for %s", intent.kind, record.key)
        try:
            session_id, signature, rounds = await asyncio.wait_for(
                self._handshake(record, signer, digest),
                timeout=self.timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise SigningProtocolError(
                "Co-signing handshake timed out",
                key=str(record.key),
                timeout=self.timeout_seconds,
            ) from exc

        logger.info("Signed %s intent for %s in %d rounds", intent.kind, record.key, rounds)
        return SignedArtifact(
            userId=record.user_id,
            chain=record.chain,
            walletId=record.wallet_id,
            address=record.address,
            intent=intent,
            digest=digest_hex(digest),
            signature=signature,
            sessionId=session_id,
            rounds=rounds,
        )

    async def _handshake(self, record: DelegationRecord, signer: ShareSigner, digest: bytes):
        wallet_api_key = record.wallet_api_key.get_secret_value()
        session = signer.start_session(digest)
        session_id: Optional[str] = None
        completed = False
        try:
            total_rounds = session.total_rounds
            session_id = await self.cosigner.open_session(
                wallet_id=record.wallet_id,
                wallet_api_key=wallet_api_key,
                chain=record.chain,
                digest=digest_hex(digest),
                rounds=total_rounds,
            )

            reply: Optional[Mapping[str, Any]] = None
            for round_number in range(1, total_rounds + 1):
                outbound = RoundMessage(
                    sessionId=session_id,
                    round=round_number,
                    payload=self._local_step(session, round_number, reply),
                )
                response = await self.cosigner.exchange(outbound, wallet_api_key=wallet_api_key)
                self._check_reply(outbound, response)
                reply = response.payload

            signature = self._finalize(session, reply or {}, total_rounds)
            completed = True
            return session_id, signature, total_rounds
        finally:
            session.discard()
            if session_id is not None and not completed:
                await self._abort(session_id, wallet_api_key)

    @staticmethod
    def _local_step(session: SigningSession, round_number: int, reply: Optional[Mapping[str, Any]]):
        try:
            return session.round_payload(round_number, reply)
        except (ValueError, KeyError, TypeError) as exc:
            raise SigningProtocolError("Co-signer payload rejected by local signer", round_number=round_number) from exc

    @staticmethod
    def _finalize(session: SigningSession, reply: Mapping[str, Any], total_rounds: int) -> str:
        try:
            signature = session.finalize(reply)
        except (ValueError, KeyError, TypeError) as exc:
            raise SigningProtocolError("Final co-signer reply rejected", round_number=total_rounds) from exc
        if not isinstance(signature, str) or not signature:
            raise SigningProtocolError("Local signer produced no signature", round_number=total_rounds)
        return signature

    @staticmethod
    def _check_reply(outbound: RoundMessage, reply: RoundMessage) -> None:
        if not isinstance(reply, RoundMessage):
            raise SigningProtocolError("Co-signer reply is not a round message", round_number=outbound.round)
        if reply.session_id != outbound.session_id:
            raise SigningProtocolError("Co-signer reply belongs to another session", round_number=outbound.round)
        if reply.round != outbound.round:
            raise SigningProtocolError(
                "Co-signer reply is out of order",
                round_number=outbound.round,
                received=reply.round,
            )

    async def _abort(self, session_id: str, wallet_api_key: str) -> None:
        try:
            await asyncio.wait_for(
                self.cosigner.abort(session_id, wallet_api_key=wallet_api_key),
                timeout=self.abort_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("Co-signer did not acknowledge abort of session %s in time", session_id)
        except SigningProtocolError as exc:
            logger.warning("Could not abort co-signing session %s: %s", session_id, exc)
