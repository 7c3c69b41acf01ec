"""
Inbound webhook endpoint.

POST /webhooks/{provider}: the platform's single canonical callback URL.

The handler needs the exact bytes the provider signed, so the body is read
raw and never re-serialized. Responses carry only the status code and an
acknowledgement flag.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from paygate.api.deps import get_webhook_handler
from paygate.webhooks.handler import WebhookHandler

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{provider}")
async def receive_webhook(
    provider: str,
    request: Request,
    handler: WebhookHandler = Depends(get_webhook_handler),
):
    raw_body = await request.body()
    result = await handler.handle(provider, request.headers, raw_body)
    return JSONResponse({"received": result.acknowledged}, status_code=result.http_status)
