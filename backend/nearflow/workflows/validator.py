# /nearflow/workflows/validator.py

"""
Pure validation functions for flow transitions.

This module provides deterministic, side-effect-free checks that the engine
runs before it commits anything:
- flow and step existence
- input kind against a step's expected kind
- handler-proposed next steps
- handler-proposed slot updates

All functions are:
- Pure (no side effects)
- Deterministic (same input = same output)
- No database access
- No logging
"""

from typing import Dict, Optional, Any, TypedDict, Iterable

from nearflow.models.flow import FlowDefinition, StepDefinition, InputKind
from nearflow.models.events import NormalizedInput, TERMINATE_STEP


class ValidationResult(TypedDict):
    """Result of a validation check."""
    is_valid: bool
    error_code: Optional[str]
    message: Optional[str]


def _ok() -> ValidationResult:
    return {"is_valid": True, "error_code": None, "message": None}


def _fail(error_code: str, message: str) -> ValidationResult:
    return {"is_valid": False, "error_code": error_code, "message": message}


def validate_step(flow: FlowDefinition, step_id: Optional[str]) -> ValidationResult:
    """
    Validate that a step exists in the given flow.
    """
    if not step_id:
        return _fail("EMPTY_STEP", "Step cannot be empty")

    if flow.get_step(step_id) is None:
        return _fail("UNKNOWN_STEP", f"Step '{step_id}' is not defined for flow '{flow.flow_id}'")

    return _ok()


def validate_input_kind(
    step: StepDefinition,
    normalized: NormalizedInput
) -> ValidationResult:
    """
    Validate that the user's input matches what the step expects.

    Optional steps accept any kind; their handler decides what to do with an
    unexpected one. A step that expects no input accepts anything
    (acknowledgements, stray taps).

    Args:
        step: The step awaiting input
        normalized: The normalized user input

    Returns:
        ValidationResult with is_valid=True if the input may be handed to the handler
    """
    if step.is_optional:
        return _ok()

    expected = step.expected_input_kind
    if expected == InputKind.NONE or normalized.kind == expected:
        return _ok()

    # A single tap on a multi-select list is still a valid multi-choice answer.
    if expected == InputKind.MULTI_CHOICE and normalized.kind == InputKind.SINGLE_CHOICE:
        return _ok()

    return _fail(
        "TYPE_MISMATCH",
        f"Step '{step.step_id}' expects {expected.value}, received {normalized.kind.value}"
    )


def validate_next_step(flow: FlowDefinition, next_step_id: Optional[str]) -> ValidationResult:
    """
    Validate a handler-proposed next step: it must belong to the same flow or
    be the terminate sentinel.
    """
    if next_step_id == TERMINATE_STEP:
        return _ok()

    result = validate_step(flow, next_step_id)
    if not result["is_valid"]:
        return _fail(
            "INVALID_NEXT_STEP",
            f"Handler for flow '{flow.flow_id}' proposed next step '{next_step_id}' outside the flow"
        )
    return result


def allowed_slot_keys(flow: FlowDefinition, visited_steps: Iterable[str]) -> set:
    """Slot names declared by the given steps of a flow."""
    keys = set()
    for step_id in visited_steps:
        step = flow.get_step(step_id)
        if step is not None and step.field_name:
            keys.add(step.field_name)
    return keys


def validate_slot_updates(
    flow: FlowDefinition,
    visited_steps: Iterable[str],
    slot_updates: Dict[str, Any]
) -> ValidationResult:
    """
    Validate that every proposed slot key is declared by a step already
    visited in this flow instance (the current step counts as visited).
    """
    if slot_updates is None:
        return _ok()

    if not isinstance(slot_updates, dict):
        return _fail("MALFORMED_SLOT_UPDATES", "Slot updates must be a mapping")

    allowed = allowed_slot_keys(flow, visited_steps)
    undeclared = [key for key in slot_updates if key not in allowed]
    if undeclared:
        return _fail(
            "UNDECLARED_SLOTS",
            f"Slots not declared by visited steps of flow '{flow.flow_id}': {', '.join(sorted(undeclared))}"
        )

    return _ok()
