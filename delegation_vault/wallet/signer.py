"""
Local half of the two-party signer.

The threshold-signature math lives behind `ShareSigner`: a factory rebuilds a
signer from the decrypted key-generation result, and each signing request gets
a fresh `SigningSession` that holds the round state for exactly one handshake.
"""

import importlib
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from eth_account._utils.legacy_transactions import serializable_unsigned_transaction_from_dict
from eth_account.messages import encode_defunct
from eth_utils import keccak, to_checksum_address, to_hex

from ..exceptions import ConfigurationError, PayloadValidationError
from ..models import TransactionIntent


class SigningSession(ABC):
    """
    Round state of a single handshake.

    The executor calls `round_payload` once per round (1..total_rounds), passing
    the co-signer's previous reply payload (None for round 1), then `finalize`
    with the last reply. `discard` is always called when the session ends.
    """

    total_rounds: int = 2

    @abstractmethod
    def round_payload(self, round_number: int, reply: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
        """Produce the outbound commitment/response for `round_number`."""

    @abstractmethod
    def finalize(self, reply: Mapping[str, Any]) -> str:
        """Combine the final reply into a 0x-prefixed signature."""

    def discard(self) -> None:
        """Drop any secret round state (nonces, partial values)."""
        return None


class ShareSigner(ABC):
    """Signer reconstructed from a delegated key share."""

    @abstractmethod
    def start_session(self, digest: bytes) -> SigningSession:
        """Begin a handshake over the 32-byte `digest`."""


SignerFactory = Callable[[Dict[str, Any]], ShareSigner]


def load_signer_factory(import_path: str) -> SignerFactory:
    """Resolve a `package.module:callable` path into a signer factory."""
    module_name, _, attr = import_path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError("Signer factory must look like 'package.module:callable'", path=import_path)
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError("Signer factory could not be imported", path=import_path) from exc
    if not callable(factory):
        raise ConfigurationError("Signer factory is not callable", path=import_path)
    return factory


def parse_chain(chain: str) -> Tuple[str, Optional[str]]:
    """Split a CAIP-2 style `namespace:reference` identifier."""
    namespace, sep, reference = chain.partition(":")
    return namespace, (reference if sep else None)


def intent_digest(intent: TransactionIntent, chain: str) -> bytes:
    """
    32-byte digest the two parties sign.

    Messages use the EIP-191 personal-sign prefix; transactions are hashed as
    unsigned EVM transactions. On `eip155:<id>` chains a transaction `chainId`
    must match the chain reference.
    """
    if intent.kind == "message":
        signable = encode_defunct(text=intent.message)
        return keccak(b"\x19" + signable.version + signable.header + signable.body)

    tx = dict(intent.transaction or {})
    namespace, reference = parse_chain(chain)
    if namespace == "eip155" and reference and reference.isdigit():
        if "chainId" not in tx:
            tx["chainId"] = int(reference)
        elif str(tx["chainId"]) != reference:
            raise PayloadValidationError("Transaction chainId does not match chain", chain=chain)

    sanitized = {k: v for k, v in tx.items() if k not in {"rawTransaction", "hash", "r", "s", "v", "from"}}
    try:
        if isinstance(sanitized.get("to"), str) and sanitized["to"]:
            sanitized["to"] = to_checksum_address(sanitized["to"])
        unsigned = serializable_unsigned_transaction_from_dict(sanitized)
    except Exception as exc:
        raise PayloadValidationError("Transaction intent is not a valid EVM transaction") from exc
    return bytes(unsigned.hash())


def digest_hex(digest: bytes) -> str:
    return to_hex(digest)
