# /nearflow/workflows/registry.py

import logging
from types import MappingProxyType
from typing import Dict, Any, List, Iterable, Mapping, Optional

from nearflow.models.flow import FlowDefinition, StepDefinition, InputKind
from nearflow.models.session import Session
from nearflow.workflows.definitions import FLOWS
from nearflow.workflows.errors import (
    ConfigurationError,
    HandlerContractViolation,
    UnknownFlow,
    UnknownStep,
)

logger = logging.getLogger(__name__)


class FlowRegistry:
    """
    Static catalog of flow definitions.

    Read-only after construction, so it is safe to share between concurrent
    handle_event calls without synchronization.
    """

    def __init__(self, definitions: Iterable[FlowDefinition]):
        flows: Dict[str, FlowDefinition] = {}
        for flow in definitions:
            if flow.flow_id in flows:
                raise ConfigurationError(f"Flow '{flow.flow_id}' is defined twice")
            flows[flow.flow_id] = flow
        self._flows: Mapping[str, FlowDefinition] = MappingProxyType(flows)

    def __contains__(self, flow_id: object) -> bool:
        return flow_id in self._flows

    def __len__(self) -> int:
        return len(self._flows)

    def flow_ids(self) -> List[str]:
        return list(self._flows.keys())

    def resolve(self, flow_id: Optional[str]) -> FlowDefinition:
        flow = self._flows.get(flow_id) if flow_id else None
        if flow is None:
            raise UnknownFlow(f"Flow '{flow_id}' is not registered")
        return flow

    def steps_of(self, flow_id: str) -> List[StepDefinition]:
        return list(self.resolve(flow_id).steps)

    def initial_step_of(self, flow_id: str) -> StepDefinition:
        flow = self.resolve(flow_id)
        return self.step_of(flow_id, flow.initial_step)

    def step_of(self, flow_id: str, step_id: Optional[str]) -> StepDefinition:
        step = self.resolve(flow_id).get_step(step_id) if step_id else None
        if step is None:
            raise UnknownStep(f"Step '{step_id}' is not defined for flow '{flow_id}'")
        return step

    def min_timeout_minutes(self) -> int:
        return min((flow.timeout_minutes for flow in self._flows.values()), default=0)

    # ==================== Validation ====================

    def validate(self) -> None:
        """
        Structural validation run once at startup. Any failure is a
        configuration error and must stop the process before it serves traffic.
        """
        for flow in self._flows.values():
            step_ids = flow.step_ids()
            if not step_ids:
                raise ConfigurationError(f"Flow '{flow.flow_id}' has no steps")
            if len(set(step_ids)) != len(step_ids):
                raise ConfigurationError(f"Flow '{flow.flow_id}' has duplicate step ids")
            if flow.initial_step not in step_ids:
                raise UnknownStep(f"Initial step '{flow.initial_step}' is not defined for flow '{flow.flow_id}'")
            if flow.timeout_minutes < 1:
                raise ConfigurationError(f"Flow '{flow.flow_id}' must declare a positive timeout")

            for step in flow.steps:
                for edge in (step.next_step, step.previous_step):
                    if edge is not None and edge not in step_ids:
                        raise UnknownStep(
                            f"Step '{step.step_id}' of flow '{flow.flow_id}' references unknown step '{edge}'"
                        )
                if step.is_terminal and step.next_step is not None:
                    raise ConfigurationError(
                        f"Terminal step '{step.step_id}' of flow '{flow.flow_id}' cannot have a next step"
                    )
                if step.expected_input_kind == InputKind.NONE and step.field_name and not step.is_terminal:
                    raise ConfigurationError(
                        f"Step '{step.step_id}' of flow '{flow.flow_id}' writes a slot but expects no input"
                    )

        logger.info(f"Flow registry validated: {len(self._flows)} flows")

    def validate_handlers(self, handlers: Mapping[str, Any]) -> None:
        """
        Every handler-declared flow must round-trip through the registry and
        every registered flow must have exactly one handler.
        """
        for flow_id, handler in handlers.items():
            self.resolve(flow_id)
            declared = getattr(handler, "flow_id", flow_id)
            if declared != flow_id:
                raise ConfigurationError(
                    f"Handler registered for '{flow_id}' declares flow '{declared}'"
                )

        missing = [flow_id for flow_id in self._flows if flow_id not in handlers]
        if missing:
            raise ConfigurationError(f"No handler registered for flows: {', '.join(sorted(missing))}")

    def check_session(self, session: Session) -> None:
        """
        Runtime invariant: the current step belongs to the active flow and
        the active flow is not also suspended.
        """
        if session.active_flow is None:
            if session.current_step is not None:
                raise HandlerContractViolation("Session has a current step but no active flow")
            return

        if session.current_step not in self.resolve(session.active_flow).step_ids():
            raise HandlerContractViolation(
                f"Step '{session.current_step}' does not belong to flow '{session.active_flow}'"
            )
        if session.active_flow in session.suspended_flow_ids():
            raise HandlerContractViolation(
                f"Flow '{session.active_flow}' is both active and suspended"
            )


def parse_flow(flow_id: str, spec: Dict[str, Any]) -> FlowDefinition:
    """Convert a raw catalog entry into a FlowDefinition."""
    steps = [
        StepDefinition(
            step_id=raw["step_id"],
            expected_input_kind=InputKind(raw.get("input", InputKind.FREE_TEXT.value)),
            field_name=raw.get("field"),
            is_optional=raw.get("optional", False),
            is_terminal=raw.get("terminal", False),
            next_step=raw.get("next"),
            previous_step=raw.get("previous"),
            interruptible=raw.get("interruptible", True),
        )
        for raw in spec.get("steps", [])
    ]
    return FlowDefinition(
        flow_id=flow_id,
        label=spec.get("label", flow_id),
        steps=steps,
        initial_step=spec["initial_step"],
        requires_auth=spec.get("requires_auth", True),
        timeout_minutes=spec.get("timeout_minutes", 30),
        resumable=spec.get("resumable", True),
    )


def build_registry(catalog: Optional[Dict[str, Dict[str, Any]]] = None) -> FlowRegistry:
    """Build and validate the registry from the catalog (FLOWS by default)."""
    catalog = FLOWS if catalog is None else catalog
    registry = FlowRegistry(parse_flow(flow_id, spec) for flow_id, spec in catalog.items())
    registry.validate()
    return registry
