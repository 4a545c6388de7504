from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/webhooks")


@router.post("/delegation")
async def receive_delegation_webhook(request: Request):
    # The signature covers the exact bytes received, so read them before any parsing.
    raw_body = await request.body()
    signature = request.headers.get(request.app.state.signature_header)
    result = await request.app.state.ingestor.handle(raw_body, signature)
    return JSONResponse(status_code=result.status, content=result.body)
