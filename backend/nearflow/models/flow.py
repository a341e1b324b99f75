# /nearflow/models/flow.py

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict, Field


class InputKind(str, Enum):
    """Kinds of user input a step can expect."""
    FREE_TEXT = "free_text"
    SINGLE_CHOICE = "single_choice"
    MULTI_CHOICE = "multi_choice"
    LOCATION = "location"
    MEDIA = "media"
    NONE = "none"


class StepDefinition(BaseModel):
    """
    A single point in a flow awaiting one unit of user input.

    Edges to other steps are stored as step ids, never as object references.
    """
    model_config = ConfigDict(frozen=True)

    step_id: str = Field(..., description="Step identifier, unique within its flow")
    expected_input_kind: InputKind = Field(default=InputKind.FREE_TEXT)
    field_name: Optional[str] = Field(default=None, description="Slot written by this step")
    is_optional: bool = Field(default=False)
    is_terminal: bool = Field(default=False)
    next_step: Optional[str] = Field(default=None, description="Default forward edge")
    previous_step: Optional[str] = Field(default=None, description="Back edge")
    interruptible: bool = Field(default=True, description="Whether global commands may interrupt this step")


class FlowDefinition(BaseModel):
    """
    Immutable catalog entry for a multi-step conversation.
    """
    model_config = ConfigDict(frozen=True)

    flow_id: str
    label: str = ""
    steps: List[StepDefinition]
    initial_step: str
    requires_auth: bool = True
    timeout_minutes: int = 30
    resumable: bool = True

    def step_ids(self) -> List[str]:
        return [step.step_id for step in self.steps]

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        for step in self.steps:
            if step.step_id == step_id:
                return step
        return None
