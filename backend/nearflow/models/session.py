# /nearflow/models/session.py

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, ConfigDict


def utcnow() -> datetime:
    # Naive UTC, matching what MongoDB hands back without tz_aware clients.
    return datetime.utcnow()


class SessionStatus(str, Enum):
    ACTIVE = "active"
    IDLE = "idle"
    EXPIRED = "expired"


class SuspendedFlow(BaseModel):
    """Snapshot of an interrupted flow kept on the suspended stack."""
    flow_id: str
    step_id: str
    slots: Dict[str, Any] = Field(default_factory=dict)
    visited_steps: List[str] = Field(default_factory=list)
    suspended_at: datetime = Field(default_factory=utcnow)


class Session(BaseModel):
    """
    Durable per-user conversation state.

    This is a PURE DATA model. All transitions are computed by the engine and
    the interruption controller and persisted through a SessionStore.
    """
    user_key: str = Field(..., description="User identity (WhatsApp phone number)")
    status: SessionStatus = Field(default=SessionStatus.IDLE)
    active_flow: Optional[str] = Field(default=None, description="Active flow identifier")
    current_step: Optional[str] = Field(default=None, description="Current step within the active flow")
    slots: Dict[str, Any] = Field(default_factory=dict, description="Values collected in the current flow instance")
    visited_steps: List[str] = Field(default_factory=list, description="Steps visited in the current flow instance")
    suspended_stack: List[SuspendedFlow] = Field(default_factory=list, description="LIFO stack of interrupted flows")
    last_message_id: Optional[str] = Field(default=None, description="Last processed inbound message id")
    last_activity_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)
    version: int = Field(default=0, description="0 until first commit, then strictly increasing")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_active(self) -> bool:
        return self.status == SessionStatus.ACTIVE and self.active_flow is not None

    def suspended_flow_ids(self) -> List[str]:
        return [entry.flow_id for entry in self.suspended_stack]

    def to_document(self) -> Dict[str, Any]:
        """Serialize for the persistence layer, keyed by user_key."""
        document = self.model_dump(mode="python")
        document["_id"] = document.pop("user_key")
        document["status"] = self.status.value
        return document

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> "Session":
        data = dict(document)
        if "_id" in data:
            data["user_key"] = data.pop("_id")
        return cls.model_validate(data)
