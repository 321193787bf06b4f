"""
In-process fan-out for realtime updates.

Services publish row changes (a notification inserted, a next step
completed, XP awarded); every open SSE stream gets its own bounded queue and
filters what it receives with `EventEnvelope.visible_to`. A short history
lets reconnecting clients resume from their Last-Event-ID.
"""

from __future__ import annotations

import json
import os
import queue
import threading
import time
from collections import deque
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Optional, Set, Tuple

from gameia.utils.identifiers import generate_uuid7

REPLAY_SIZE = int(os.getenv("EVENTS_REPLAY_SIZE", "2000"))
SUBSCRIBER_QUEUE_SIZE = int(os.getenv("EVENTS_QUEUE_SIZE", "400"))


@dataclass
class EventEnvelope:
    id: str
    type: str
    entityType: str
    entityId: str
    action: str
    timestamp: str
    actor: Optional[Dict[str, Any]]
    metadata: Dict[str, Any]

    def to_json(self) -> str:
        return json.dumps(asdict(self), default=str)

    def visible_to(self, *, organization_id: Optional[str], user_id: Optional[str]) -> bool:
        """
        Events tagged with a user are private to that user; events tagged with
        an organization are visible to its members only.
        """
        metadata = self.metadata if isinstance(self.metadata, dict) else {}
        target_user = metadata.get("userId")
        if target_user and str(target_user) != str(user_id):
            return False
        target_org = metadata.get("organizationId")
        if target_org and str(target_org) != str(organization_id):
            return False
        return True


class EventBroker:
    def __init__(self, replay_size: int = REPLAY_SIZE, queue_size: int = SUBSCRIBER_QUEUE_SIZE) -> None:
        self._history: Deque[EventEnvelope] = deque(maxlen=replay_size)
        self._subscribers: Set[queue.Queue] = set()
        self._queue_size = queue_size
        self._lock = threading.Lock()

    def subscribe(self) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self._queue_size)
        with self._lock:
            self._subscribers.add(q)
        return q

    def unsubscribe(self, q: queue.Queue) -> None:
        with self._lock:
            self._subscribers.discard(q)

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def replay_since(
        self,
        *,
        last_event_id: str,
        organization_id: Optional[str],
        user_id: Optional[str],
    ) -> Tuple[List[EventEnvelope], bool]:
        """
        Events published after `last_event_id`, filtered for the subscriber.
        The flag is True when the anchor fell out of history and the client
        must refetch everything.
        """
        with self._lock:
            history = list(self._history)
        if not history:
            return [], False
        for position in range(len(history) - 1, -1, -1):
            if history[position].id == last_event_id:
                break
        else:
            return [], True
        missed = history[position + 1:]
        return [e for e in missed if e.visible_to(organization_id=organization_id, user_id=user_id)], False

    def publish(self, event: EventEnvelope) -> None:
        with self._lock:
            self._history.append(event)
            targets = list(self._subscribers)
        for q in targets:
            self._offer(q, event)

    @staticmethod
    def _offer(q: queue.Queue, event: EventEnvelope) -> None:
        while True:
            try:
                q.put_nowait(event)
                return
            except queue.Full:
                # Slow consumer: drop its oldest event.
                try:
                    q.get_nowait()
                except queue.Empty:
                    pass

    def clear(self) -> None:
        with self._lock:
            self._history.clear()


broker = EventBroker()


def publish_event(event: EventEnvelope) -> EventEnvelope:
    broker.publish(event)
    return event


def publish_change(
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> EventEnvelope:
    """Publish a row-change notification (the realtime channel clients refetch on)."""
    payload: Dict[str, Any] = dict(metadata or {})
    if organization_id:
        payload["organizationId"] = organization_id
    if user_id:
        payload["userId"] = user_id
    return publish_event(
        EventEnvelope(
            id=generate_uuid7(),
            type=f"{entity_type}.{action}".lower(),
            entityType=entity_type,
            entityId=str(entity_id),
            action=action,
            timestamp=datetime.now(timezone.utc).isoformat(),
            actor={"userId": actor_user_id} if actor_user_id else None,
            metadata=payload,
        )
    )


def format_sse(data: str, event: Optional[str] = None, event_id: Optional[str] = None) -> str:
    head = []
    if event_id:
        head.append(f"id: {event_id}")
    if event:
        head.append(f"event: {event}")
    body = [f"data: {line}" for line in data.splitlines()]
    return "\n".join(head + body) + "\n\n"


def keepalive_message() -> str:
    return format_sse(json.dumps({"type": "heartbeat", "ts": time.time()}), event="heartbeat")
