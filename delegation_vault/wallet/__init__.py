"""
Wallet module for delegated signing.

This module provides:
- DelegationVault: Encrypted delegation records with address and user indexes
- encode_record / decode_record: Hybrid RSA-OAEP + AES-256-GCM record codec
- DelegatedExecutionService: Vault lookup, signer reconstruction and co-signing
- CoSigner / HttpCoSigner: Remote party of the two-party signing handshake
- ShareSigner / SigningSession: Local party reconstructed from a delegated share
"""

from .cosigner import CoSigner, HttpCoSigner
from .executor import DelegatedExecutionService
from .security import (
    ENVELOPE_ALG,
    decode_record,
    decrypt_materials,
    encode_record,
    generate_key_pair,
    key_id,
    load_private_key,
    load_public_key,
    open_envelope,
    seal_envelope,
    serialize_private_key,
    serialize_public_key,
)
from .signer import ShareSigner, SignerFactory, SigningSession, intent_digest, load_signer_factory
from .vault import DelegationVault

__all__ = [
    # Vault
    "DelegationVault",
    # Codec
    "ENVELOPE_ALG",
    "encode_record",
    "decode_record",
    "decrypt_materials",
    "seal_envelope",
    "open_envelope",
    # Keys
    "generate_key_pair",
    "load_private_key",
    "load_public_key",
    "serialize_private_key",
    "serialize_public_key",
    "key_id",
    # Signing
    "DelegatedExecutionService",
    "CoSigner",
    "HttpCoSigner",
    "ShareSigner",
    "SigningSession",
    "SignerFactory",
    "intent_digest",
    "load_signer_factory",
]
