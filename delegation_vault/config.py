from __future__ import annotations

import os
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from .exceptions import ConfigurationError

_REQUIRED_ENV = (
    "WALLET_PROVIDER_API_TOKEN",
    "WEBHOOK_SECRET",
    "DELEGATION_PRIVATE_KEY",
    "WALLET_ENVIRONMENT_ID",
    "AUTH_JWT_KEY",
)
_DEFAULT_REDIS_URL = "redis://localhost:6379"


class DelegationSettings(BaseModel):
    """Resolved process-wide configuration, loaded once at startup."""

    wallet_provider_api_token: SecretStr
    webhook_secret: SecretStr
    delegation_private_key: SecretStr
    environment_id: str

    kv_url: str = Field(default=_DEFAULT_REDIS_URL)
    kv_rest_api_url: Optional[str] = Field(default=None)
    kv_rest_api_token: Optional[SecretStr] = Field(default=None)

    cosigner_base_url: str = Field(default="https://relay.dynamicauth.com")
    signing_timeout_seconds: float = Field(default=30.0)
    signer_factory: Optional[str] = Field(default=None, description="module:callable building a local share signer")
    webhook_signature_header: str = Field(default="x-dynamic-signature-256")
    execution_lock_dir: Optional[str] = Field(default=None)

    auth_jwt_key: SecretStr
    auth_jwt_algorithms: List[str] = Field(default_factory=lambda: ["HS256"])
    auth_jwt_audience: Optional[str] = Field(default=None)
    auth_jwt_issuer: Optional[str] = Field(default=None)

    @field_validator("cosigner_base_url", "kv_rest_api_url")
    @classmethod
    def _ensure_http_scheme(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return value
        if not value.startswith(("http://", "https://")):
            raise ValueError("URL must start with http:// or https://")
        return value.rstrip("/")

    @field_validator("signing_timeout_seconds")
    @classmethod
    def _positive_timeout(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("signing timeout must be positive")
        return value

    @field_validator("signer_factory")
    @classmethod
    def _import_path(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and ":" not in value:
            raise ValueError("signer factory must look like 'package.module:callable'")
        return value

    @field_validator("auth_jwt_algorithms")
    @classmethod
    def _signed_tokens_only(cls, value: List[str]) -> List[str]:
        if not value or any(not alg or alg.lower() == "none" for alg in value):
            raise ValueError("token algorithms must name real signature algorithms")
        return value

    @property
    def uses_rest_store(self) -> bool:
        return bool(self.kv_rest_api_url and self.kv_rest_api_token)

    def private_key_pem(self) -> str:
        """PEM text of the delegation private key; accepts literal `\\n` escapes."""
        return self.delegation_private_key.get_secret_value().replace("\\n", "\n")

    def auth_jwt_key_material(self) -> str:
        """HMAC secret or PEM public key used to verify caller tokens."""
        return self.auth_jwt_key.get_secret_value().replace("\\n", "\n")

    @classmethod
    def load(cls, environ: Optional[Mapping[str, str]] = None, *, dotenv: bool = True) -> "DelegationSettings":
        """Load settings from the environment (with .env fallbacks) and fail fast on gaps."""
        if environ is None:
            if dotenv:
                load_dotenv()
            environ = os.environ

        missing = [name for name in _REQUIRED_ENV if not environ.get(name)]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

        raw = {
            "wallet_provider_api_token": environ["WALLET_PROVIDER_API_TOKEN"],
            "webhook_secret": environ["WEBHOOK_SECRET"],
            "delegation_private_key": environ["DELEGATION_PRIVATE_KEY"],
            "environment_id": environ["WALLET_ENVIRONMENT_ID"],
            "auth_jwt_key": environ["AUTH_JWT_KEY"],
            "auth_jwt_audience": environ.get("AUTH_JWT_AUDIENCE") or None,
            "auth_jwt_issuer": environ.get("AUTH_JWT_ISSUER") or None,
            "kv_url": environ.get("KV_URL") or _DEFAULT_REDIS_URL,
            "kv_rest_api_url": environ.get("KV_REST_API_URL") or None,
            "kv_rest_api_token": environ.get("KV_REST_API_TOKEN") or None,
            "signer_factory": environ.get("SIGNER_FACTORY") or None,
            "execution_lock_dir": environ.get("EXECUTION_LOCK_DIR") or None,
        }
        optional = {
            "cosigner_base_url": "COSIGNER_BASE_URL",
            "signing_timeout_seconds": "SIGNING_TIMEOUT_SECONDS",
            "webhook_signature_header": "WEBHOOK_SIGNATURE_HEADER",
        }
        for field_name, env_name in optional.items():
            if environ.get(env_name):
                raw[field_name] = environ[env_name]
        if environ.get("AUTH_JWT_ALGORITHMS"):
            raw["auth_jwt_algorithms"] = [alg.strip() for alg in environ["AUTH_JWT_ALGORITHMS"].split(",") if alg.strip()]

        try:
            return cls(**raw)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in exc.errors())
            raise ConfigurationError(f"Invalid configuration: {fields}") from exc
