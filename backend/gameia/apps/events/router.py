from __future__ import annotations

import asyncio
import json
import logging
import queue
from typing import AsyncGenerator, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from gameia.apps.accounts import models as account_models
from gameia.database import get_db
from gameia.security import get_current_active_user, get_current_user

from .broker import EventEnvelope, broker, format_sse, keepalive_message

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["events"])

KEEPALIVE_SECONDS = 15


def _stream_token(request: Request) -> Optional[str]:
    # EventSource cannot set headers, so browsers pass ?token=; other clients
    # may still use the bearer header.
    token = request.query_params.get("token")
    if token:
        return token
    scheme, _, value = request.headers.get("authorization", "").partition(" ")
    return value if scheme.lower() == "bearer" and value else None


def stream_user(request: Request, db: Session = Depends(get_db)) -> account_models.User:
    token = _stream_token(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return get_current_active_user(current_user=get_current_user(token=token, db=db))


def _frame(event: EventEnvelope) -> str:
    return format_sse(event.to_json(), event=event.type, event_id=event.id)


def _replay(last_event_id: str, user: account_models.User) -> list:
    events, requires_reset = broker.replay_since(
        last_event_id=last_event_id,
        organization_id=user.organization_id,
        user_id=user.id,
    )
    if requires_reset:
        # The client missed more than the history window holds: refetch everything.
        payload = {"type": "reset", "reason": "last_event_id_out_of_window", "lastEventId": last_event_id}
        return [format_sse(json.dumps(payload), event="reset")]
    return [_frame(event) for event in events]


async def _event_generator(request: Request, user: account_models.User) -> AsyncGenerator[str, None]:
    q = broker.subscribe()
    try:
        last_event_id = request.headers.get("last-event-id") or request.query_params.get("lastEventId")
        if last_event_id:
            for frame in _replay(last_event_id, user):
                yield frame
        while not await request.is_disconnected():
            try:
                event = await asyncio.to_thread(q.get, True, KEEPALIVE_SECONDS)
            except queue.Empty:
                yield keepalive_message()
                continue
            if event.visible_to(organization_id=user.organization_id, user_id=user.id):
                yield _frame(event)
    finally:
        broker.unsubscribe(q)
        logger.debug("Event stream closed", extra={"user_id": user.id})


@router.get("/events", summary="Live notifications, next-step and XP changes")
async def stream_events(
    request: Request,
    user: account_models.User = Depends(stream_user),
) -> StreamingResponse:
    return StreamingResponse(
        _event_generator(request, user),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )
