"""
Bearer-token authentication for the signing and lookup routes.

Callers present a JWT issued by the wallet provider (or any issuer sharing
the configured key). The token subject is the user id; wallet addresses the
user has proven control of are read from `verified_credentials[].address`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, FrozenSet, Mapping, Optional, Sequence

import jwt

from .exceptions import AuthenticationError, AuthorizationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthenticatedUser:
    user_id: str
    addresses: FrozenSet[str] = field(default_factory=frozenset)

    @classmethod
    def from_claims(cls, claims: Mapping[str, Any]) -> "AuthenticatedUser":
        subject = claims.get("sub")
        if not isinstance(subject, str) or not subject:
            raise AuthenticationError("Token has no subject")
        addresses = set()
        for credential in claims.get("verified_credentials") or ():
            if isinstance(credential, Mapping) and isinstance(credential.get("address"), str):
                addresses.add(credential["address"].lower())
        return cls(subject, frozenset(addresses))

    def owns_address(self, address: str) -> bool:
        return address.lower() in self.addresses

    def require_user(self, user_id: str) -> None:
        if user_id != self.user_id:
            raise AuthorizationError("Caller may not act for another user", user=self.user_id)

    def require_address(self, address: str) -> None:
        if not self.owns_address(address):
            raise AuthorizationError("Caller has not verified this address", user=self.user_id)


class TokenVerifier:
    def __init__(
        self,
        key: str,
        algorithms: Sequence[str] = ("HS256",),
        *,
        audience: Optional[str] = None,
        issuer: Optional[str] = None,
        leeway: float = 0,
    ) -> None:
        if not key:
            raise ValueError("token verification key is empty")
        self._key = key
        self.algorithms = list(algorithms)
        self.audience = audience
        self.issuer = issuer
        self.leeway = leeway

    def verify(self, token: Optional[str]) -> AuthenticatedUser:
        if not token:
            raise AuthenticationError("No bearer token provided")
        try:
            claims = jwt.decode(
                token,
                self._key,
                algorithms=self.algorithms,
                audience=self.audience,
                issuer=self.issuer,
                leeway=self.leeway,
                options={"require": ["sub", "exp"]},
            )
        except jwt.InvalidTokenError as exc:
            logger.info("Rejected bearer token: %s", type(exc).__name__)
            raise AuthenticationError("Invalid bearer token") from exc
        return AuthenticatedUser.from_claims(claims)
