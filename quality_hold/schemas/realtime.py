from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class WsEnvelope(BaseModel):
    """Envelope for WebSocket messages."""
    type: str = Field(..., description="Message type (e.g., 'quality.incident.submitted').")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Message payload.")
    at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Timestamp (UTC).")
    user_id: Optional[str] = Field(default=None, description="Acting user id, if applicable.")
    channel: Optional[str] = Field(default=None, description="Branch channel, if any.")


class IncidentEvent(BaseModel):
    """Notification about a quality incident state change."""
    event: str = Field(..., description="Event name (e.g., 'incident.created', 'incident.reviewed').")
    incident_id: UUID = Field(..., description="Incident id")
    shipment_id: UUID = Field(..., description="Shipment id")
    branch_id: Optional[UUID] = Field(default=None, description="Branch of the incident")
    status: str = Field(..., description="Incident status after the change")
    details: Dict[str, Any] = Field(default_factory=dict, description="Event details.")
    user_id: Optional[str] = Field(default=None, description="Acting user id")
