"""
Pub/Sub push receiver.

The HTTP status code is the only thing the broker sees, so it encodes the
delivery decision:

  200  acknowledged - processed, or failed permanently (logged and sent to
       the failure topic; redelivery cannot fix it)
  400  malformed request or payload - not redelivered
  503  transient failure - the broker redelivers with backoff

Endpoints:
  POST /        - push subscription endpoint
"""

import asyncio
import logging

from fastapi import APIRouter, Depends, HTTPException, Request

from pmap.errors import MalformedMessageError
from pmap.services.event_handler import (
    CancellationToken,
    EventHandler,
    OutcomeKind,
    ProcessMetadata,
)
from pmap.services.push_adapter import (
    decode_mapping,
    parse_github_source,
    parse_push_request,
)

logger = logging.getLogger(__name__)

router = APIRouter()

_DISCONNECT_POLL_SECONDS = 0.5


def get_event_handler(request: Request) -> EventHandler:
    """Return the EventHandler wired into the app at startup."""
    handler = getattr(request.app.state, "event_handler", None)
    if handler is None:
        raise HTTPException(status_code=503, detail="Event handler not configured")
    return handler


async def _cancel_on_disconnect(request: Request, token: CancellationToken) -> None:
    while not token.cancelled:
        if await request.is_disconnected():
            token.cancel("client disconnected")
            return
        await asyncio.sleep(_DISCONNECT_POLL_SECONDS)


@router.post("/")
async def receive_push(
    request: Request,
    handler: EventHandler = Depends(get_event_handler),
) -> dict:
    """
    Decode a push delivery and run it through the event handler.

    The request is held open until the handler returns; the handler itself
    runs in a worker thread so blocking processor and publish calls do not
    stall the event loop.
    """
    body = await request.body()
    try:
        push = parse_push_request(body)
        logger.debug(
            f"Handling message {push.message.message_id!r} from subscription "
            f"{push.subscription!r}"
        )
        mapping = decode_mapping(push.message)
        github_source = parse_github_source(push.message.attributes)
    except MalformedMessageError as e:
        logger.error(f"Rejected malformed push request: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    token = CancellationToken(getattr(request.app.state, "request_timeout_seconds", None))
    metadata = ProcessMetadata(
        message_id=push.message.message_id,
        publish_time=push.message.publish_time,
        attributes=dict(push.message.attributes),
        github_source=github_source,
        cancellation=token,
    )

    watcher = asyncio.create_task(_cancel_on_disconnect(request, token))
    try:
        outcome = await asyncio.to_thread(handler.handle, mapping, metadata)
    finally:
        watcher.cancel()

    if outcome.kind is OutcomeKind.RETRYABLE_FAILURE:
        logger.warning(
            f"Requesting redelivery of message {metadata.message_id!r}: {outcome.cause}"
        )
        raise HTTPException(status_code=503, detail="Failed to handle message; retry later")

    if outcome.kind is OutcomeKind.TERMINAL_FAILURE:
        return {"received": True, "processed": False, "reason": str(outcome.cause)}

    return {"received": True, "processed": True}
