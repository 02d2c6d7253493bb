from __future__ import annotations

import asyncio

import logging
from typing import Dict, Optional, Set
from uuid import UUID

from starlette.websockets import WebSocket, WebSocketState

from quality_hold.schemas.realtime import IncidentEvent, WsEnvelope

logger = logging.getLogger(__name__)

ALL_BRANCHES = "all"


class BroadcastManager:
    """
    Simple in-process pub-sub manager for WebSocket topics.

    Topics:
      - quality:{branch_id}  incidents of one branch
      - quality:all          every incident (HQ)
    """

    def __init__(self) -> None:
        self._topics: Dict[str, Set[WebSocket]] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._global_lock = asyncio.Lock()

    def _topic_lock(self, topic: str) -> asyncio.Lock:
        if topic not in self._locks:
            self._locks[topic] = asyncio.Lock()
        return self._locks[topic]

    # PUBLIC_INTERFACE
    def quality_topic(self, branch_id: UUID | str | None = None) -> str:
        """Return quality topic name for a branch, or the all-branches topic."""
        return f"quality:{branch_id or ALL_BRANCHES}"

    async def _ensure_topic(self, topic: str) -> None:
        async with self._global_lock:
            if topic not in self._topics:
                self._topics[topic] = set()

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    # PUBLIC_INTERFACE
    async def connect(self, topic: str, websocket: WebSocket) -> None:
        """
        Add an accepted websocket to topic subscribers.
        """
        await self._ensure_topic(topic)
        async with self._topic_lock(topic):
            self._topics[topic].add(websocket)
            logger.info("WebSocket connected to topic=%s; subscribers=%d", topic, len(self._topics[topic]))

    # PUBLIC_INTERFACE
    async def disconnect(self, topic: str, websocket: WebSocket) -> None:
        """Remove websocket from topic subscribers."""
        if topic not in self._topics:
            return
        async with self._topic_lock(topic):
            self._topics[topic].discard(websocket)
            logger.info("WebSocket disconnected from topic=%s; subscribers=%d", topic, len(self._topics[topic]))

    # PUBLIC_INTERFACE
    async def broadcast(self, topic: str, message: dict, exclude: Optional[WebSocket] = None) -> None:
        """
        Broadcast a dict message to all subscribers in the topic.
        """
        await self._ensure_topic(topic)
        async with self._topic_lock(topic):
            to_drop: list[WebSocket] = []
            for ws in list(self._topics[topic]):
                if exclude is not None and ws is exclude:
                    continue
                try:
                    if ws.application_state == WebSocketState.DISCONNECTED or ws.client_state == WebSocketState.DISCONNECTED:
                        to_drop.append(ws)
                        continue
                    await ws.send_json(message)
                except Exception:
                    logger.exception("Failed to send message to websocket; scheduling drop")
                    to_drop.append(ws)
            for ws in to_drop:
                self._topics[topic].discard(ws)

    # PUBLIC_INTERFACE
    async def publish_incident_event(self, event: IncidentEvent) -> None:
        """Publish an incident event to its branch topic and to the all-branches topic."""
        channel = str(event.branch_id) if event.branch_id else None
        env = WsEnvelope(
            type=f"quality.{event.event}",
            payload=event.model_dump(mode="json"),
            user_id=event.user_id,
            channel=channel,
        ).model_dump(mode="json")
        if channel:
            await self.broadcast(self.quality_topic(channel), env)
        await self.broadcast(self.quality_topic(), env)


# Singleton instance
broadcast_manager = BroadcastManager()


# PUBLIC_INTERFACE
async def notify_incident(event: IncidentEvent) -> None:
    """Best-effort publish; a failed notification never fails the request."""
    try:
        await broadcast_manager.publish_incident_event(event)
    except Exception:
        logger.exception("Failed to publish %s for incident %s", event.event, event.incident_id)
