from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from pydantic import BaseModel, ConfigDict, Field

from delegation_vault.auth import AuthenticatedUser
from delegation_vault.exceptions import NotDelegatedError
from delegation_vault.models import SignedArtifact, TransactionIntent

router = APIRouter(prefix="/delegation")
security = HTTPBearer(auto_error=False)


def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> AuthenticatedUser:
    token = credentials.credentials if credentials else None
    return request.app.state.token_verifier.verify(token)


class SignRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    chain: str = Field(min_length=1)
    wallet_id: str = Field(alias="walletId", min_length=1)
    intent: TransactionIntent


class SignByAddressRequest(BaseModel):
    address: str = Field(min_length=1)
    chain: str = Field(min_length=1)
    intent: TransactionIntent


def _artifact_response(artifact: SignedArtifact):
    return artifact.model_dump(by_alias=True, mode="json")


@router.post("/sign")
async def sign(body: SignRequest, request: Request, user: AuthenticatedUser = Depends(get_current_user)):
    user.require_user(body.user_id)
    service = request.app.state.service
    artifact = await service.execute(body.user_id, body.chain, body.wallet_id, body.intent)
    return _artifact_response(artifact)


@router.post("/sign-by-address")
async def sign_by_address(
    body: SignByAddressRequest,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
):
    user.require_address(body.address)
    service = request.app.state.service
    artifact = await service.execute_by_address(body.address, body.chain, body.intent)
    return _artifact_response(artifact)


@router.get("")
async def lookup_delegation(
    request: Request,
    address: str = Query(min_length=1),
    chain: str = Query(min_length=1),
    user: AuthenticatedUser = Depends(get_current_user),
):
    """Non-secret metadata of the record delegated for `address` on `chain`."""
    user.require_address(address)
    blob = await request.app.state.vault.get_by_address(address, chain)
    if blob is None:
        raise NotDelegatedError("No delegation record for address", address=address, chain=chain)
    return blob.describe()


@router.get("/users/{user_id}")
async def list_user_delegations(
    user_id: str,
    request: Request,
    user: AuthenticatedUser = Depends(get_current_user),
):
    user.require_user(user_id)
    records = await request.app.state.vault.list_for_user(user_id)
    return {"userId": user_id, "delegations": [record.describe() for record in records]}
