# /nearflow/models/events.py

from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, Union
from pydantic import BaseModel, Field

from nearflow.models.flow import InputKind

# Value handed to a handler when the user skips an optional step.
SKIPPED = "__skipped__"

# next_step_id a handler may return to end the flow without a terminal step.
TERMINATE_STEP = "__terminate__"


class EventKind(str, Enum):
    TEXT = "text"
    CHOICE = "choice"
    LOCATION = "location"
    MEDIA = "media"
    NONE = "none"


class InboundEvent(BaseModel):
    """An already channel-normalized chat event delivered by the transport layer."""
    user_key: str = Field(..., min_length=1)
    kind: EventKind = Field(default=EventKind.TEXT)
    payload: Any = Field(default=None, description="Text, choice id(s), coordinates or attachment reference")
    message_id: Optional[str] = Field(default=None, description="Channel message id, used to detect duplicate delivery")
    received_at: Optional[datetime] = Field(default=None)


class NormalizedInput(BaseModel):
    """Flow-independent representation of one unit of user input."""
    kind: InputKind
    value: Any = None
    raw_text: Optional[str] = None

    @property
    def is_skipped(self) -> bool:
        return self.value == SKIPPED


class InstructionKind(str, Enum):
    PROMPT = "prompt"
    REPROMPT = "reprompt"
    TERMINATE = "terminate"
    ERROR = "error"


class OutboundInstruction(BaseModel):
    """
    What the transport layer should present next. The engine never builds
    user-facing copy; render_hints is an opaque bag filled by handlers.
    """
    kind: InstructionKind
    flow_id: Optional[str] = None
    step_id: Optional[str] = None
    render_hints: Dict[str, Any] = Field(default_factory=dict)
    error_code: Optional[str] = None
    reason: Optional[str] = None


# ---------------- Handler results ---------------- #

class Advance(BaseModel):
    """Move to next_step_id, merging slot_updates."""
    next_step_id: str
    slot_updates: Dict[str, Any] = Field(default_factory=dict)
    render_hints: Dict[str, Any] = Field(default_factory=dict)


class Retry(BaseModel):
    """Stay on the current step and ask again."""
    reason: str
    render_hints: Dict[str, Any] = Field(default_factory=dict)


class Terminate(BaseModel):
    """End the flow now."""
    render_hints: Dict[str, Any] = Field(default_factory=dict)


class SwitchFlow(BaseModel):
    """Discard the current flow and start another one (menu selections)."""
    target_flow_id: str
    render_hints: Dict[str, Any] = Field(default_factory=dict)


HandlerResult = Union[Advance, Retry, Terminate, SwitchFlow]
