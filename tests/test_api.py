import time

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from api.app import create_app
from delegation_vault.auth import TokenVerifier
from delegation_vault.config import DelegationSettings
from delegation_vault.storage import InMemoryKeyValueStore
from delegation_vault.wallet.executor import DelegatedExecutionService
from delegation_vault.wallet.vault import DelegationVault
from delegation_vault.webhooks import WebhookIngestor
from doubles import (
    ADDRESS,
    SHARE,
    WEBHOOK_SECRET,
    RecordingSignerFactory,
    ScriptedCoSigner,
    created_event,
    make_key,
    private_key_pem,
    revoked_event,
    signed,
)

HEADER = "x-dynamic-signature-256"
JWT_SECRET = "test-jwt-secret"
SIGN_U1 = {"userId": "u1", "chain": "eip155:1", "walletId": "w1", "intent": {"message": "hello"}}


def _token(sub="u1", addresses=(ADDRESS,), secret=JWT_SECRET, expires_in=300):
    claims = {
        "sub": sub,
        "exp": int(time.time()) + expires_in,
        "verified_credentials": [{"address": address, "format": "blockchain"} for address in addresses],
    }
    return jwt.encode(claims, secret, algorithm="HS256")


def _auth(**kwargs):
    return {"Authorization": f"Bearer {_token(**kwargs)}"}


def _build(cosigner=None, factory=None):
    vault = DelegationVault(InMemoryKeyValueStore())
    factory = factory or RecordingSignerFactory()
    cosigner = cosigner or ScriptedCoSigner()
    app = create_app(
        vault=vault,
        ingestor=WebhookIngestor(vault, WEBHOOK_SECRET, make_key(0)),
        service=DelegatedExecutionService(vault, make_key(0), factory, cosigner, timeout_seconds=5),
        token_verifier=TokenVerifier(JWT_SECRET),
    )
    return app, factory, cosigner


def _client(app):
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


async def _deliver(client, payload):
    body, signature = signed(payload)
    return await client.post(
        "/webhooks/delegation",
        content=body,
        headers={HEADER: signature, "Content-Type": "application/json"},
    )


@pytest.mark.asyncio
async def test_health():
    app, _, _ = _build()
    async with _client(app) as client:
        response = await client.get("/health")
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_end_to_end_ingest_then_sign():
    app, factory, cosigner = _build()
    async with _client(app) as client:
        ingest = await _deliver(client, created_event(make_key(0).public_key()))
        assert ingest.status_code == 200

        response = await client.post("/delegation/sign", json=SIGN_U1, headers=_auth())

    assert response.status_code == 200
    artifact = response.json()
    assert artifact["walletId"] == "w1"
    assert artifact["rounds"] == 2
    assert artifact["intent"]["message"] == "hello"
    assert factory.signers[0].share == SHARE
    assert [m.round for m in cosigner.messages] == [1, 2]


@pytest.mark.asyncio
async def test_sign_by_address_and_lookup():
    app, _, _ = _build()
    async with _client(app) as client:
        await _deliver(client, created_event(make_key(0).public_key()))

        lookup = await client.get(
            "/delegation", params={"address": ADDRESS.lower(), "chain": "eip155:1"}, headers=_auth()
        )
        signed_response = await client.post(
            "/delegation/sign-by-address",
            json={"address": ADDRESS, "chain": "eip155:1", "intent": {"kind": "message", "message": "hi"}},
            headers=_auth(),
        )
        listing = await client.get("/delegation/users/u1", headers=_auth())

    assert lookup.status_code == 200
    assert lookup.json() == {"userId": "u1", "chain": "eip155:1", "walletId": "w1", "address": ADDRESS}
    assert signed_response.status_code == 200
    assert [d["walletId"] for d in listing.json()["delegations"]] == ["w1"]


@pytest.mark.asyncio
async def test_anonymous_caller_cannot_sign_for_someone_else():
    app, factory, cosigner = _build()
    async with _client(app) as client:
        await _deliver(client, created_event(make_key(0).public_key(), user_id="victim"))
        response = await client.post(
            "/delegation/sign",
            json={**SIGN_U1, "userId": "victim", "intent": {"message": "drain"}},
        )

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
    assert response.json() == {"success": False, "error": "authentication required"}
    assert factory.signers == []
    assert cosigner.messages == []


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "headers",
    [
        {"Authorization": "Bearer not-a-jwt"},
        {"Authorization": f"Bearer {_token(secret='someone-elses-secret')}"},
        {"Authorization": f"Bearer {_token(expires_in=-60)}"},
        {"Authorization": "Basic dXNlcjpwYXNz"},
    ],
)
async def test_invalid_tokens_are_401(headers):
    app, _, _ = _build()
    async with _client(app) as client:
        await _deliver(client, created_event(make_key(0).public_key()))
        sign = await client.post("/delegation/sign", json=SIGN_U1, headers=headers)
        lookup = await client.get("/delegation", params={"address": ADDRESS, "chain": "eip155:1"}, headers=headers)
        listing = await client.get("/delegation/users/u1", headers=headers)

    assert [sign.status_code, lookup.status_code, listing.status_code] == [401, 401, 401]


@pytest.mark.asyncio
async def test_acting_for_another_user_is_403():
    app, factory, _ = _build()
    async with _client(app) as client:
        await _deliver(client, created_event(make_key(0).public_key()))
        attacker = _auth(sub="attacker", addresses=())
        sign = await client.post("/delegation/sign", json=SIGN_U1, headers=attacker)
        listing = await client.get("/delegation/users/u1", headers=attacker)

    assert sign.status_code == 403
    assert sign.json() == {"success": False, "error": "not authorized for this wallet"}
    assert listing.status_code == 403
    assert factory.signers == []


@pytest.mark.asyncio
async def test_unverified_address_is_403():
    app, factory, _ = _build()
    async with _client(app) as client:
        await _deliver(client, created_event(make_key(0).public_key()))
        # Right user, but the token does not list the wallet address.
        headers = _auth(addresses=("0x" + "11" * 20,))
        by_address = await client.post(
            "/delegation/sign-by-address",
            json={"address": ADDRESS, "chain": "eip155:1", "intent": {"message": "hi"}},
            headers=headers,
        )
        lookup = await client.get("/delegation", params={"address": ADDRESS, "chain": "eip155:1"}, headers=headers)

    assert by_address.status_code == 403
    assert lookup.status_code == 403
    assert factory.signers == []


@pytest.mark.asyncio
async def test_bad_signature_is_401_and_sign_is_404():
    app, _, _ = _build()
    body, _ = signed(created_event(make_key(0).public_key()))
    async with _client(app) as client:
        rejected = await client.post("/webhooks/delegation", content=body, headers={HEADER: "sha256=00"})
        response = await client.post("/delegation/sign", json=SIGN_U1, headers=_auth())

    assert rejected.status_code == 401
    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "delegation not found"}


@pytest.mark.asyncio
async def test_revocation_then_lookup_is_404():
    app, _, _ = _build()
    async with _client(app) as client:
        await _deliver(client, created_event(make_key(0).public_key()))
        revoked = await _deliver(client, revoked_event())
        lookup = await client.get("/delegation", params={"address": ADDRESS, "chain": "eip155:1"}, headers=_auth())

    assert revoked.json()["message"] == "Delegation revoked"
    assert lookup.status_code == 404


@pytest.mark.asyncio
async def test_protocol_failure_maps_to_502():
    app, _, _ = _build(cosigner=ScriptedCoSigner("out-of-order"))
    async with _client(app) as client:
        await _deliver(client, created_event(make_key(0).public_key()))
        response = await client.post("/delegation/sign", json=SIGN_U1, headers=_auth())

    assert response.status_code == 502
    assert response.json()["error"] == "signing failed, try again"


@pytest.mark.asyncio
async def test_invalid_sign_request_is_400():
    app, _, _ = _build()
    async with _client(app) as client:
        response = await client.post(
            "/delegation/sign", json={"userId": "u1", "intent": {"kind": "message"}}, headers=_auth()
        )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_app_built_from_settings_without_signer_factory():
    settings = DelegationSettings(
        wallet_provider_api_token="token",
        webhook_secret=WEBHOOK_SECRET,
        delegation_private_key=private_key_pem(make_key(0)),
        environment_id="env-1",
        webhook_signature_header="x-test-signature",
        auth_jwt_key=JWT_SECRET,
    )
    app = create_app(settings, vault=DelegationVault(InMemoryKeyValueStore()))
    async with _client(app) as client:
        body, signature = signed(created_event(make_key(0).public_key()))
        ingest = await client.post("/webhooks/delegation", content=body, headers={"x-test-signature": signature})
        response = await client.post("/delegation/sign", json=SIGN_U1, headers=_auth())

    assert ingest.status_code == 200
    assert response.status_code == 500
    assert response.json()["error"] == "request rejected"
