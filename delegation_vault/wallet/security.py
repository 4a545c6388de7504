"""
Hybrid RSA-OAEP + AES-256-GCM codec for delegation records.

How the envelope works:
1. A random AES-256 key is generated per envelope.
2. The AES key is wrapped with the RSA public key (OAEP, SHA-256) -> `ek`.
3. The plaintext is encrypted with AES-GCM under a 96-bit nonce -> `iv`, `ct`, `tag`.

The same envelope layout is used by the wallet provider when it ships the
delegated share and wallet API key in the provisioning webhook, so provider
material and stored records open with the same private key.

Stored records additionally bind their identity (user, chain, wallet, address)
into each envelope as AES-GCM associated data.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import os
from typing import Any, Dict, Optional, Tuple, Union

from cryptography.exceptions import InvalidTag, UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError

from ..exceptions import ConfigurationError, DecryptionError, MalformedRecordError
from ..models import RECORD_VERSION, DelegationRecord, EncryptedEnvelope, EncryptedRecord

ENVELOPE_ALG = "RSA-OAEP-256+A256GCM"
DEFAULT_KEY_SIZE = 4096
_SYMMETRIC_KEY_BYTES = 32
_IV_BYTES = 12
_TAG_BYTES = 16

_OAEP = padding.OAEP(
    mgf=padding.MGF1(algorithm=hashes.SHA256()),
    algorithm=hashes.SHA256(),
    label=None,
)


# ---------------------------------------------------------------------- #
# Key helpers
# ---------------------------------------------------------------------- #
def _as_bytes(pem: Union[str, bytes]) -> bytes:
    if isinstance(pem, str):
        return pem.replace("\\n", "\n").encode("utf-8")
    return pem


def load_private_key(pem: Union[str, bytes]) -> rsa.RSAPrivateKey:
    """Load an unencrypted RSA private key from PEM text."""
    try:
        key = serialization.load_pem_private_key(_as_bytes(pem), password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError("Delegation private key is not a readable PEM private key") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise ConfigurationError("Delegation private key must be an RSA key")
    return key


def load_public_key(pem: Union[str, bytes]) -> rsa.RSAPublicKey:
    try:
        key = serialization.load_pem_public_key(_as_bytes(pem))
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise ConfigurationError("Delegation public key is not a readable PEM public key") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise ConfigurationError("Delegation public key must be an RSA key")
    return key


def generate_key_pair(key_size: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def serialize_private_key(key: rsa.RSAPrivateKey) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def serialize_public_key(key: rsa.RSAPublicKey) -> bytes:
    return key.public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def key_id(public_key: rsa.RSAPublicKey) -> str:
    """Short fingerprint of a public key, recorded as the envelope `kid`."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()[:16]


# ---------------------------------------------------------------------- #
# Envelope primitives
# ---------------------------------------------------------------------- #
def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64url_decode(value: str, field: str) -> bytes:
    try:
        return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
    except (binascii.Error, ValueError) as exc:
        raise MalformedRecordError("Envelope field is not valid base64url", field=field) from exc


def seal_envelope(
    plaintext: bytes,
    public_key: rsa.RSAPublicKey,
    *,
    aad: Optional[bytes] = None,
    kid: Optional[str] = None,
) -> EncryptedEnvelope:
    """Encrypt `plaintext` so that only the holder of the matching private key can read it."""
    symmetric_key = AESGCM.generate_key(bit_length=_SYMMETRIC_KEY_BYTES * 8)
    iv = os.urandom(_IV_BYTES)
    sealed = AESGCM(symmetric_key).encrypt(iv, plaintext, aad)
    ciphertext, tag = sealed[:-_TAG_BYTES], sealed[-_TAG_BYTES:]
    wrapped_key = public_key.encrypt(symmetric_key, _OAEP)
    return EncryptedEnvelope(
        alg=ENVELOPE_ALG,
        iv=_b64url_encode(iv),
        ct=_b64url_encode(ciphertext),
        tag=_b64url_encode(tag),
        ek=_b64url_encode(wrapped_key),
        kid=kid,
    )


def open_envelope(
    envelope: EncryptedEnvelope,
    private_key: rsa.RSAPrivateKey,
    *,
    aad: Optional[bytes] = None,
) -> bytes:
    """Decrypt an envelope produced by `seal_envelope` or by the wallet provider."""
    wrapped_key = _b64url_decode(envelope.ek, "ek")
    iv = _b64url_decode(envelope.iv, "iv")
    ciphertext = _b64url_decode(envelope.ct, "ct")
    tag = _b64url_decode(envelope.tag, "tag")
    if len(iv) != _IV_BYTES:
        raise MalformedRecordError("Envelope nonce has the wrong length", field="iv")
    if len(tag) != _TAG_BYTES:
        raise MalformedRecordError("Envelope tag has the wrong length", field="tag")

    try:
        symmetric_key = private_key.decrypt(wrapped_key, _OAEP)
    except ValueError as exc:
        raise DecryptionError("Unable to unwrap envelope key; private key does not match", kid=envelope.kid) from exc
    if len(symmetric_key) != _SYMMETRIC_KEY_BYTES:
        raise DecryptionError("Unwrapped envelope key has the wrong length", kid=envelope.kid)

    try:
        return AESGCM(symmetric_key).decrypt(iv, ciphertext + tag, aad)
    except InvalidTag as exc:
        raise DecryptionError("Envelope authentication failed", kid=envelope.kid) from exc


# ---------------------------------------------------------------------- #
# Record codec
# ---------------------------------------------------------------------- #
def _canonical_json(value: Any) -> bytes:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _record_aad(user_id: str, chain: str, wallet_id: str, address: str) -> bytes:
    return _canonical_json([RECORD_VERSION, user_id, chain, wallet_id, address])


def parse_share(raw: bytes) -> Dict[str, Any]:
    """Parse decrypted share bytes into the key-generation result object."""
    try:
        share = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise MalformedRecordError("Delegated share is not valid JSON") from exc
    if not isinstance(share, dict) or not share:
        raise MalformedRecordError("Delegated share must be a non-empty JSON object")
    return share


def parse_api_key(raw: bytes) -> str:
    try:
        value = raw.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise MalformedRecordError("Wallet API key is not valid UTF-8") from exc
    if not value:
        raise MalformedRecordError("Wallet API key is empty")
    return value


def decrypt_materials(
    share: EncryptedEnvelope,
    api_key: EncryptedEnvelope,
    private_key: rsa.RSAPrivateKey,
) -> Tuple[Dict[str, Any], str]:
    """Open the delegated share and wallet API key shipped by the wallet provider."""
    delegated_share = parse_share(open_envelope(share, private_key))
    wallet_api_key = parse_api_key(open_envelope(api_key, private_key))
    return delegated_share, wallet_api_key


def encode_record(record: DelegationRecord, public_key: rsa.RSAPublicKey) -> EncryptedRecord:
    """Encrypt the secret fields of `record`; identity and address stay in clear."""
    aad = _record_aad(record.user_id, record.chain, record.wallet_id, record.address)
    kid = key_id(public_key)
    return EncryptedRecord(
        version=RECORD_VERSION,
        userId=record.user_id,
        chain=record.chain,
        walletId=record.wallet_id,
        address=record.address,
        delegatedShare=seal_envelope(_canonical_json(record.delegated_share), public_key, aad=aad, kid=kid),
        walletApiKey=seal_envelope(
            record.wallet_api_key.get_secret_value().encode("utf-8"), public_key, aad=aad, kid=kid
        ),
    )


def decode_record(
    blob: Union[EncryptedRecord, str, bytes],
    private_key: rsa.RSAPrivateKey,
) -> DelegationRecord:
    """Decrypt a stored record. Raises DecryptionError or MalformedRecordError."""
    if not isinstance(blob, EncryptedRecord):
        try:
            blob = EncryptedRecord.model_validate_json(blob)
        except ValidationError as exc:
            raise MalformedRecordError("Stored record does not match the expected shape") from exc
    if blob.version != RECORD_VERSION:
        raise MalformedRecordError("Unsupported record version", version=blob.version, key=str(blob.key))

    aad = _record_aad(blob.user_id, blob.chain, blob.wallet_id, blob.address)
    delegated_share = parse_share(open_envelope(blob.delegated_share, private_key, aad=aad))
    wallet_api_key = parse_api_key(open_envelope(blob.wallet_api_key, private_key, aad=aad))

    try:
        return DelegationRecord(
            userId=blob.user_id,
            chain=blob.chain,
            walletId=blob.wallet_id,
            address=blob.address,
            delegatedShare=delegated_share,
            walletApiKey=wallet_api_key,
        )
    except ValidationError as exc:
        raise MalformedRecordError("Decrypted record is incomplete", key=str(blob.key)) from exc
