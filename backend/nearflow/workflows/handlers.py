# /nearflow/workflows/handlers.py

"""
Flow handler contract.

A handler owns the semantics of one flow. The engine calls
process(slots, normalized_input, step) and applies whatever the handler
returns; handlers never write to the session themselves and must tolerate
being re-invoked with the same input after a version-conflict retry.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Mapping, Optional, Set

from nearflow.models.events import (
    Advance,
    HandlerResult,
    NormalizedInput,
    Retry,
    Terminate,
    TERMINATE_STEP,
)
from nearflow.models.flow import InputKind, StepDefinition
from nearflow.workflows.errors import ConfigurationError
from nearflow.workflows.normalizer import keyword_of

BACK_KEYWORDS = {"back", "previous"}
CONFIRM_KEYWORDS = {"confirm", "yes", "ok"}
DECLINE_KEYWORDS = {"no", "discard"}
EDIT_KEYWORDS = {"edit", "change"}


class FlowHandler(ABC):
    """Base class for all flow handlers."""

    flow_id: str = ""

    @abstractmethod
    async def process(
        self,
        slots: Mapping[str, Any],
        normalized_input: NormalizedInput,
        step: StepDefinition
    ) -> HandlerResult:
        """Interpret one input at one step."""

    def prompt_hints(self, step: StepDefinition, slots: Mapping[str, Any]) -> Dict[str, Any]:
        """Render hints for (re)prompting a step. Opaque to the engine."""
        return {"flow": self.flow_id, "step": step.step_id}


class LinearFlowHandler(FlowHandler):
    """
    Generic slot-collecting handler for flows that walk their steps in order.

    - "back" rewinds to the step's previous edge
    - steps writing the "confirmation" slot accept confirm / edit / decline
    - `choices` restricts single and multi choice slots to known ids
    - a `parse_<field_name>` method, when present, converts and validates the
      raw value; raising ValueError turns into a Retry
    """

    choices: Dict[str, Set[str]] = {}
    confirmation_field = "confirmation"

    async def process(self, slots, normalized_input, step):
        keyword = keyword_of(normalized_input)

        if keyword in BACK_KEYWORDS and step.previous_step:
            return Advance(next_step_id=step.previous_step)

        if step.field_name == self.confirmation_field:
            return await self.handle_confirmation(slots, keyword, step)

        if normalized_input.is_skipped:
            return Advance(next_step_id=self.next_step_for(step, slots, None))

        if not self.accepts_kind(step, normalized_input):
            return Retry(reason="unexpected_input")

        try:
            value = self.parse_value(step, normalized_input)
        except ValueError as e:
            return Retry(reason=str(e) or "invalid_value")

        updates = {step.field_name: value} if step.field_name else {}
        merged = {**slots, **updates}
        return Advance(
            next_step_id=self.next_step_for(step, merged, value),
            slot_updates=updates,
        )

    def accepts_kind(self, step: StepDefinition, normalized_input: NormalizedInput) -> bool:
        """Optional steps reach the handler with any input kind."""
        expected = step.expected_input_kind
        if expected == InputKind.NONE or normalized_input.kind == expected:
            return True
        return expected == InputKind.MULTI_CHOICE and normalized_input.kind == InputKind.SINGLE_CHOICE

    def parse_value(self, step: StepDefinition, normalized_input: NormalizedInput) -> Any:
        value = normalized_input.value
        allowed = self.choices.get(step.field_name or "")
        if allowed:
            values = value if isinstance(value, list) else [value]
            unknown = [item for item in values if item not in allowed]
            if unknown:
                raise ValueError("invalid_choice")

        parser = getattr(self, f"parse_{step.field_name}", None) if step.field_name else None
        if parser is not None:
            return parser(value)
        return value

    def next_step_for(self, step: StepDefinition, slots: Mapping[str, Any], value: Any) -> str:
        """Forward edge; override for branching flows."""
        return step.next_step or TERMINATE_STEP

    async def handle_confirmation(self, slots, keyword: Optional[str], step: StepDefinition) -> HandlerResult:
        if keyword in CONFIRM_KEYWORDS:
            await self.on_confirmed(slots)
            return Advance(
                next_step_id=step.next_step or TERMINATE_STEP,
                slot_updates={self.confirmation_field: True},
                render_hints={"summary": dict(slots)},
            )
        if keyword in EDIT_KEYWORDS and step.previous_step:
            return Advance(next_step_id=step.previous_step)
        if keyword in DECLINE_KEYWORDS:
            return Terminate(render_hints={"discarded": True})
        return Retry(reason="confirmation_required")

    async def on_confirmed(self, slots: Mapping[str, Any]) -> None:
        """Hook for business modules to persist the collected data."""
        return None

    def prompt_hints(self, step, slots):
        hints = super().prompt_hints(step, slots)
        allowed = self.choices.get(step.field_name or "")
        if allowed:
            hints["options"] = sorted(allowed)
        if step.field_name == self.confirmation_field:
            hints["summary"] = dict(slots)
        if step.is_optional:
            hints["skippable"] = True
        return hints


def build_handler_map(handlers: Iterable[FlowHandler]) -> Dict[str, FlowHandler]:
    """Static flow_id -> handler mapping; duplicates are a configuration error."""
    mapping: Dict[str, FlowHandler] = {}
    for handler in handlers:
        if not handler.flow_id:
            raise ConfigurationError(f"{type(handler).__name__} does not declare a flow_id")
        if handler.flow_id in mapping:
            raise ConfigurationError(f"Duplicate handler for flow '{handler.flow_id}'")
        mapping[handler.flow_id] = handler
    return mapping
