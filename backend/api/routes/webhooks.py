"""Inbound webhook endpoint.

External systems POST JSON to /webhooks/{identifier}. When the workflow's
trigger config has a secret, the raw body must be signed with
HMAC-SHA256 and sent as `X-Signature: sha256=<hex>`.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request, status

from api.schemas.execution import RunStartedResponse
from app.dependencies import get_dispatcher
from triggers.dispatcher import TriggerDispatcher

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhooks"])


@router.post("/{identifier}", response_model=RunStartedResponse, status_code=status.HTTP_202_ACCEPTED)
async def receive_webhook(
    identifier: str,
    request: Request,
    x_signature: Optional[str] = Header(default=None),
    dispatcher: TriggerDispatcher = Depends(get_dispatcher),
) -> RunStartedResponse:
    """
    Start the workflow listening on this identifier.

    404 if no enabled webhook workflow matches, 401 on a bad signature,
    409 while the workflow is already running.
    """
    body = await request.body()
    run_id = await dispatcher.dispatch_webhook(identifier, body, x_signature)
    return RunStartedResponse(run_id=run_id)
