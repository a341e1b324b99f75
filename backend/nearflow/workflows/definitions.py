# /nearflow/workflows/definitions.py

"""
Flow catalog for every business module, as pure data (no logic).

Each flow specifies:
- label: Display name
- initial_step: The starting step id
- requires_auth: Whether the user must be registered to start it
- timeout_minutes: Inactivity window before the sweeper expires it
- resumable: Whether an interruption suspends it (True) or discards it (False)
- steps: Ordered list of step definitions

Each step defines:
- step_id: Step identifier
- input: Expected input kind (free_text, single_choice, multi_choice, location, media, none)
- field: Slot written by the step (optional)
- optional: Whether the user may skip it
- terminal: Whether reaching it ends the flow
- next / previous: Forward and back edges (step ids)
- interruptible: False for steps where global commands must be refused
"""

from typing import Dict, Any, List

# Type definition for a raw flow entry
FlowSpec = Dict[str, Any]

MAIN_MENU = "main_menu"
REGISTRATION = "registration"
SETTINGS = "settings"
OFFERS_UPLOAD = "offers_upload"
PRODUCT_SEARCH = "product_search"
AGREEMENT_CREATE = "agreement_create"
AGREEMENT_CONFIRM = "agreement_confirm"
AGREEMENT_LIST = "agreement_list"
FISH_SUBSCRIBE = "fish_subscribe"
FISH_POST_CATCH = "fish_post_catch"
JOB_POST = "job_post"
FLASH_DEAL_CREATE = "flash_deal_create"


def _linear(steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Fill in next/previous edges for steps listed in order, unless given."""
    for index, step in enumerate(steps):
        if "next" not in step and not step.get("terminal") and index + 1 < len(steps):
            step["next"] = steps[index + 1]["step_id"]
        if "previous" not in step and index > 0:
            step["previous"] = steps[index - 1]["step_id"]
    return steps


FLOWS: Dict[str, FlowSpec] = {
    MAIN_MENU: {
        "label": "Main Menu",
        "initial_step": "show_menu",
        "requires_auth": False,
        "timeout_minutes": 30,
        "resumable": False,
        "steps": [
            # Accepts list taps and typed quick actions alike
            {"step_id": "show_menu", "input": "none"},
        ],
    },

    REGISTRATION: {
        "label": "Registration",
        "initial_step": "ask_type",
        "requires_auth": False,
        "timeout_minutes": 60,
        "steps": _linear([
            {"step_id": "ask_type", "input": "single_choice", "field": "user_type"},
            {"step_id": "ask_name", "input": "free_text", "field": "name"},
            {"step_id": "ask_location", "input": "location", "field": "location"},
            {"step_id": "ask_shop_name", "input": "free_text", "field": "shop_name", "optional": True},
            {"step_id": "confirm", "input": "single_choice", "field": "confirmation"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    SETTINGS: {
        "label": "Settings",
        "initial_step": "show_settings",
        "timeout_minutes": 15,
        "resumable": False,
        "steps": _linear([
            {"step_id": "show_settings", "input": "single_choice", "field": "setting"},
            {"step_id": "update_value", "input": "free_text", "field": "new_value"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    OFFERS_UPLOAD: {
        "label": "Upload Offer",
        "initial_step": "upload_image",
        "timeout_minutes": 30,
        "steps": _linear([
            {"step_id": "upload_image", "input": "media", "field": "image"},
            {"step_id": "ask_validity", "input": "single_choice", "field": "validity"},
            {"step_id": "ask_caption", "input": "free_text", "field": "caption", "optional": True},
            {"step_id": "confirm", "input": "single_choice", "field": "confirmation"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    PRODUCT_SEARCH: {
        "label": "Product Search",
        "initial_step": "ask_category",
        "timeout_minutes": 120,
        "steps": _linear([
            {"step_id": "ask_category", "input": "single_choice", "field": "category"},
            {"step_id": "ask_description", "input": "free_text", "field": "description"},
            {"step_id": "ask_image", "input": "media", "field": "image", "optional": True},
            {"step_id": "ask_location", "input": "location", "field": "location"},
            {"step_id": "confirm", "input": "single_choice", "field": "confirmation"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    AGREEMENT_CREATE: {
        "label": "Create Agreement",
        "initial_step": "ask_direction",
        "timeout_minutes": 30,
        "steps": _linear([
            {"step_id": "ask_direction", "input": "single_choice", "field": "direction"},
            {"step_id": "ask_amount", "input": "free_text", "field": "amount"},
            {"step_id": "review", "input": "single_choice", "field": "confirmation"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    AGREEMENT_CONFIRM: {
        "label": "Confirm Agreement",
        "initial_step": "show_pending",
        "timeout_minutes": 30,
        "steps": _linear([
            {"step_id": "show_pending", "input": "single_choice", "field": "agreement_id"},
            {"step_id": "awaiting_confirm", "input": "single_choice", "field": "decision", "interruptible": False},
            {"step_id": "confirm_done", "input": "none", "terminal": True},
        ]),
    },

    AGREEMENT_LIST: {
        "label": "My Agreements",
        "initial_step": "my_list",
        "timeout_minutes": 30,
        "resumable": False,
        "steps": _linear([
            {"step_id": "my_list", "input": "single_choice", "field": "agreement_id"},
            {"step_id": "view_detail", "input": "single_choice", "field": "action"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    FISH_SUBSCRIBE: {
        "label": "Fish Alert Subscription",
        "initial_step": "select_location",
        "timeout_minutes": 15,
        "steps": _linear([
            {"step_id": "select_location", "input": "location", "field": "location"},
            {"step_id": "select_fish_types", "input": "multi_choice", "field": "fish_types"},
            {"step_id": "select_frequency", "input": "single_choice", "field": "frequency"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    FISH_POST_CATCH: {
        "label": "Post Fish Catch",
        "initial_step": "select_fish",
        "timeout_minutes": 15,
        "steps": _linear([
            {"step_id": "select_fish", "input": "single_choice", "field": "fish_type"},
            {"step_id": "select_quantity", "input": "single_choice", "field": "quantity_range"},
            {"step_id": "enter_price", "input": "free_text", "field": "price_per_kg"},
            {"step_id": "upload_photo", "input": "media", "field": "photo", "optional": True},
            {"step_id": "confirm", "input": "single_choice", "field": "confirmation", "interruptible": False},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    JOB_POST: {
        "label": "Post Task",
        "initial_step": "select_category",
        "timeout_minutes": 30,
        "steps": _linear([
            {"step_id": "select_category", "input": "single_choice", "field": "category"},
            {"step_id": "enter_title", "input": "free_text", "field": "title"},
            {"step_id": "enter_location", "input": "location", "field": "location"},
            {"step_id": "enter_pay", "input": "free_text", "field": "pay"},
            {"step_id": "enter_instructions", "input": "free_text", "field": "instructions", "optional": True},
            {"step_id": "confirm", "input": "single_choice", "field": "confirmation"},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },

    FLASH_DEAL_CREATE: {
        "label": "Create Flash Deal",
        "initial_step": "ask_title",
        "timeout_minutes": 30,
        "steps": _linear([
            {"step_id": "ask_title", "input": "free_text", "field": "title"},
            {"step_id": "ask_image", "input": "media", "field": "image", "optional": True},
            {"step_id": "ask_discount", "input": "free_text", "field": "discount_percent"},
            {"step_id": "ask_target", "input": "single_choice", "field": "target_claims"},
            {"step_id": "confirm", "input": "single_choice", "field": "confirmation", "interruptible": False},
            {"step_id": "done", "input": "none", "terminal": True},
        ]),
    },
}
