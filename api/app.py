import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from api.routers import delegation, webhooks
from delegation_vault.auth import TokenVerifier
from delegation_vault.config import DelegationSettings
from delegation_vault.exceptions import ConfigurationError, DelegationError
from delegation_vault.storage import create_store
from delegation_vault.wallet import (
    DelegatedExecutionService,
    DelegationVault,
    HttpCoSigner,
    load_private_key,
    load_signer_factory,
)
from delegation_vault.webhooks import WebhookIngestor

logger = logging.getLogger("api")


def _missing_signer_factory(delegated_share: Dict[str, Any]):
    raise ConfigurationError("SIGNER_FACTORY is not configured")


def create_app(
    settings: Optional[DelegationSettings] = None,
    *,
    vault: Optional[DelegationVault] = None,
    ingestor: Optional[WebhookIngestor] = None,
    service: Optional[DelegatedExecutionService] = None,
    token_verifier: Optional[TokenVerifier] = None,
) -> FastAPI:
    """
    Build the HTTP application.

    Components not passed in are built from `settings` (loaded from the
    environment when omitted). Clients created here are closed on shutdown.
    """
    owned = []
    if ingestor is None or service is None or token_verifier is None:
        settings = settings or DelegationSettings.load()
    if token_verifier is None:
        token_verifier = TokenVerifier(
            settings.auth_jwt_key_material(),
            settings.auth_jwt_algorithms,
            audience=settings.auth_jwt_audience,
            issuer=settings.auth_jwt_issuer,
        )
    if ingestor is None or service is None:
        private_key = load_private_key(settings.private_key_pem())
        if vault is None:
            store = create_store(settings)
            owned.append(store)
            vault = DelegationVault(store)
        if ingestor is None:
            ingestor = WebhookIngestor(vault, settings.webhook_secret.get_secret_value(), private_key)
        if service is None:
            cosigner = HttpCoSigner(
                settings.cosigner_base_url,
                settings.wallet_provider_api_token.get_secret_value(),
                settings.environment_id,
                timeout=settings.signing_timeout_seconds,
            )
            owned.append(cosigner)
            factory = (
                load_signer_factory(settings.signer_factory)
                if settings.signer_factory
                else _missing_signer_factory
            )
            service = DelegatedExecutionService(
                vault,
                private_key,
                factory,
                cosigner,
                timeout_seconds=settings.signing_timeout_seconds,
            )
    vault = vault or ingestor.vault

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        for resource in owned:
            await resource.close()

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.vault = vault
    app.state.ingestor = ingestor
    app.state.service = service
    app.state.token_verifier = token_verifier
    app.state.signature_header = settings.webhook_signature_header if settings else "x-dynamic-signature-256"

    app.include_router(webhooks.router)
    app.include_router(delegation.router)

    @app.exception_handler(DelegationError)
    async def delegation_error_handler(request: Request, exc: DelegationError):
        if exc.status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        else:
            logger.info("%s %s rejected: %s", request.method, request.url.path, exc)
        headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == 401 else None
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": exc.public_message},
            headers=headers,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"success": False, "error": "Invalid request body"})

    @app.get("/health")
    async def health_check():
        return {"status": "ok"}

    return app


def start(host: str = "0.0.0.0", port: int = 8000, settings: Optional[DelegationSettings] = None):
    app = create_app(settings)
    uvicorn.run(app, host=host, port=port)
