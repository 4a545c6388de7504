"""
Remote half of the two-party signer.

`CoSigner` fixes the message-exchange contract with the wallet provider's
co-signing relay; `HttpCoSigner` speaks it over HTTP. Tests substitute their
own `CoSigner` subclasses.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import httpx
from pydantic import ValidationError

from ..exceptions import SigningProtocolError
from ..models import RoundMessage

logger = logging.getLogger(__name__)


class CoSigner(ABC):
    """Remote party holding the complementary key share."""

    @abstractmethod
    async def open_session(
        self,
        *,
        wallet_id: str,
        wallet_api_key: str,
        chain: str,
        digest: str,
        rounds: int,
    ) -> str:
        """Authenticate for `wallet_id` and start a signing session; returns its id."""

    @abstractmethod
    async def exchange(self, message: RoundMessage, *, wallet_api_key: str) -> RoundMessage:
        """Send one round message and return the co-signer's reply for that round."""

    @abstractmethod
    async def abort(self, session_id: str, *, wallet_api_key: str) -> None:
        """Tell the co-signer to drop a session that will not be completed."""


class HttpCoSigner(CoSigner):
    """
    Co-signer reached through the provider relay.

    Endpoints:
    - POST   /wallets/{walletId}/signing-sessions  -> {"sessionId": ...}
    - POST   /signing-sessions/{sessionId}/rounds  -> RoundMessage
    - DELETE /signing-sessions/{sessionId}
    """

    def __init__(
        self,
        base_url: str,
        api_token: str,
        environment_id: str,
        *,
        timeout: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.environment_id = environment_id
        self._api_token = api_token
        self.http_client = http_client or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
        )

    def _headers(self, wallet_api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_token}",
            "X-Wallet-Api-Key": wallet_api_key,
            "X-Environment-Id": self.environment_id,
        }

    async def _post(self, path: str, payload: Dict[str, Any], wallet_api_key: str, stage: str) -> Any:
        try:
            response = await self.http_client.post(path, json=payload, headers=self._headers(wallet_api_key))
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as exc:
            raise SigningProtocolError(
                "Co-signer rejected the request",
                stage=stage,
                status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise SigningProtocolError("Co-signer unreachable", stage=stage) from exc
        except ValueError as exc:
            raise SigningProtocolError("Co-signer returned invalid JSON", stage=stage) from exc

    async def open_session(
        self,
        *,
        wallet_id: str,
        wallet_api_key: str,
        chain: str,
        digest: str,
        rounds: int,
    ) -> str:
        body = await self._post(
            f"/wallets/{wallet_id}/signing-sessions",
            {"environmentId": self.environment_id, "chain": chain, "digest": digest, "rounds": rounds},
            wallet_api_key,
            stage="open",
        )
        session_id = body.get("sessionId") if isinstance(body, dict) else None
        if not isinstance(session_id, str) or not session_id:
            raise SigningProtocolError("Co-signer response missing sessionId", stage="open")
        return session_id

    async def exchange(self, message: RoundMessage, *, wallet_api_key: str) -> RoundMessage:
        body = await self._post(
            f"/signing-sessions/{message.session_id}/rounds",
            message.model_dump(by_alias=True),
            wallet_api_key,
            stage="round",
        )
        try:
            return RoundMessage.model_validate(body)
        except ValidationError as exc:
            raise SigningProtocolError("Co-signer round reply is malformed", round_number=message.round) from exc

    async def abort(self, session_id: str, *, wallet_api_key: str) -> None:
        try:
            response = await self.http_client.delete(
                f"/signing-sessions/{session_id}", headers=self._headers(wallet_api_key)
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise SigningProtocolError("Co-signer abort failed", stage="abort") from exc

    async def close(self) -> None:
        await self.http_client.aclose()
