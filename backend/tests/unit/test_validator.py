# backend/tests/unit/test_validator.py
import pytest

from nearflow.models.events import NormalizedInput, TERMINATE_STEP, SKIPPED
from nearflow.models.flow import InputKind
from nearflow.workflows import definitions as flows
from nearflow.workflows.validator import (
    allowed_slot_keys,
    validate_input_kind,
    validate_next_step,
    validate_slot_updates,
    validate_step,
)


@pytest.fixture
def agreement(registry):
    return registry.resolve(flows.AGREEMENT_CREATE)


def test_validate_step(agreement):
    assert validate_step(agreement, "review")["is_valid"]
    assert validate_step(agreement, None)["error_code"] == "EMPTY_STEP"
    assert validate_step(agreement, "ask_name")["error_code"] == "UNKNOWN_STEP"


@pytest.mark.parametrize("step_id, kind, valid", [
    ("ask_direction", InputKind.SINGLE_CHOICE, True),
    ("ask_direction", InputKind.FREE_TEXT, False),
    ("ask_amount", InputKind.FREE_TEXT, True),
    ("ask_amount", InputKind.LOCATION, False),
    ("done", InputKind.MEDIA, True),
])
def test_validate_input_kind(agreement, step_id, kind, valid):
    step = agreement.get_step(step_id)
    result = validate_input_kind(step, NormalizedInput(kind=kind, value="x"))
    assert result["is_valid"] is valid
    if not valid:
        assert result["error_code"] == "TYPE_MISMATCH"


def test_single_tap_is_accepted_for_multi_choice(registry):
    step = registry.step_of(flows.FISH_SUBSCRIBE, "select_fish_types")
    assert validate_input_kind(step, NormalizedInput(kind=InputKind.SINGLE_CHOICE, value="tuna"))["is_valid"]


def test_skip_only_passes_on_optional_steps(registry):
    skipped = NormalizedInput(kind=InputKind.FREE_TEXT, value=SKIPPED, raw_text="skip")
    optional = registry.step_of(flows.PRODUCT_SEARCH, "ask_image")
    required = registry.step_of(flows.PRODUCT_SEARCH, "ask_location")

    assert validate_input_kind(optional, skipped)["is_valid"]
    assert not validate_input_kind(required, skipped)["is_valid"]


def test_optional_step_hands_any_kind_to_the_handler(registry):
    shop_name = registry.step_of(flows.REGISTRATION, "ask_shop_name")
    pin = NormalizedInput(kind=InputKind.LOCATION, value={"latitude": 9.9, "longitude": 76.2})

    assert validate_input_kind(shop_name, pin)["is_valid"]


def test_validate_next_step(agreement):
    assert validate_next_step(agreement, "review")["is_valid"]
    assert validate_next_step(agreement, TERMINATE_STEP)["is_valid"]
    assert validate_next_step(agreement, "enter_pay")["error_code"] == "INVALID_NEXT_STEP"


def test_allowed_slot_keys(agreement):
    assert allowed_slot_keys(agreement, ["ask_direction", "ask_amount"]) == {"direction", "amount"}


def test_validate_slot_updates(agreement):
    visited = ["ask_direction", "ask_amount"]
    assert validate_slot_updates(agreement, visited, {"amount": 5000})["is_valid"]
    assert validate_slot_updates(agreement, visited, {})["is_valid"]

    result = validate_slot_updates(agreement, visited, {"confirmation": True})
    assert result["error_code"] == "UNDECLARED_SLOTS"

    assert validate_slot_updates(agreement, visited, ["amount"])["error_code"] == "MALFORMED_SLOT_UPDATES"
