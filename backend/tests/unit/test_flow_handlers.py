# backend/tests/unit/test_flow_handlers.py
import pytest
from unittest.mock import AsyncMock

from nearflow.models.events import Advance, NormalizedInput, Retry, SwitchFlow, Terminate, SKIPPED
from nearflow.models.flow import InputKind
from nearflow.workflows import definitions as flows
from nearflow.workflows.errors import ConfigurationError
from nearflow.workflows.flows.agreements import AgreementCreateHandler, parse_amount
from nearflow.workflows.flows.main_menu import MainMenuHandler
from nearflow.workflows.flows.registration import RegistrationHandler
from nearflow.workflows.handlers import build_handler_map


def typed(body):
    return NormalizedInput(kind=InputKind.FREE_TEXT, value=body, raw_text=body)


def tapped(selection):
    return NormalizedInput(kind=InputKind.SINGLE_CHOICE, value=selection)


@pytest.mark.parametrize("raw, expected", [
    ("5000", 5000),
    ("5,000", 5000),
    ("₹ 12,500", 12500),
    ("Rs. 750/-", 750),
    ("99.50", 100),
])
def test_parse_amount(raw, expected):
    assert parse_amount(raw) == expected


@pytest.mark.parametrize("raw", ["five thousand", "0", "-10", "20000000"])
def test_parse_amount_rejects(raw):
    with pytest.raises(ValueError):
        parse_amount(raw)


@pytest.mark.asyncio
async def test_main_menu_switches_flow(registry):
    handler = MainMenuHandler()
    step = registry.step_of(flows.MAIN_MENU, "show_menu")

    result = await handler.process({}, tapped("create_agreement"), step)
    assert result == SwitchFlow(target_flow_id=flows.AGREEMENT_CREATE)

    result = await handler.process({}, typed("Sell Fish"), step)
    assert result.target_flow_id == flows.FISH_POST_CATCH


@pytest.mark.asyncio
async def test_main_menu_unknown_selection(registry):
    handler = MainMenuHandler()
    result = await handler.process({}, tapped("lottery"), registry.step_of(flows.MAIN_MENU, "show_menu"))
    assert isinstance(result, Retry)
    assert result.reason == "unknown_selection"
    assert "create_agreement" in result.render_hints["options"]


def test_main_menu_options_list_each_flow_once():
    options = MainMenuHandler().options()
    assert len(options) == len(set(options))
    assert "search_product" in options
    assert "search" not in options


@pytest.mark.asyncio
async def test_agreement_direction_and_amount(registry):
    handler = AgreementCreateHandler()

    result = await handler.process({}, tapped("giving"), registry.step_of(flows.AGREEMENT_CREATE, "ask_direction"))
    assert result == Advance(next_step_id="ask_amount", slot_updates={"direction": "giving"})

    result = await handler.process({}, tapped("lending"), registry.step_of(flows.AGREEMENT_CREATE, "ask_direction"))
    assert result == Retry(reason="invalid_choice")

    result = await handler.process({"direction": "giving"}, typed("₹5,000"), registry.step_of(flows.AGREEMENT_CREATE, "ask_amount"))
    assert result.slot_updates == {"amount": 5000}
    assert result.next_step_id == "review"


@pytest.mark.asyncio
async def test_back_goes_to_previous_step(registry):
    handler = AgreementCreateHandler()
    result = await handler.process({}, typed("back"), registry.step_of(flows.AGREEMENT_CREATE, "ask_amount"))
    assert result == Advance(next_step_id="ask_direction")


@pytest.mark.asyncio
async def test_confirmation_outcomes(registry, mocker):
    handler = AgreementCreateHandler()
    hook = mocker.patch.object(handler, "on_confirmed", new_callable=AsyncMock)
    review = registry.step_of(flows.AGREEMENT_CREATE, "review")
    slots = {"direction": "giving", "amount": 5000}

    confirmed = await handler.process(slots, tapped("confirm"), review)
    assert confirmed.next_step_id == "done"
    assert confirmed.slot_updates == {"confirmation": True}
    assert confirmed.render_hints["summary"] == slots
    hook.assert_awaited_once_with(slots)

    assert await handler.process(slots, tapped("edit"), review) == Advance(next_step_id="ask_amount")
    assert await handler.process(slots, tapped("discard"), review) == Terminate(render_hints={"discarded": True})
    assert await handler.process(slots, tapped("maybe"), review) == Retry(reason="confirmation_required")


@pytest.mark.asyncio
async def test_registration_skips_shop_name_for_customers(registry):
    handler = RegistrationHandler()
    step = registry.step_of(flows.REGISTRATION, "ask_location")
    location = NormalizedInput(kind=InputKind.LOCATION, value=(9.9, 76.2))

    customer = await handler.process({"user_type": "customer"}, location, step)
    shop = await handler.process({"user_type": "shop"}, location, step)

    assert customer.next_step_id == "confirm"
    assert shop.next_step_id == "ask_shop_name"


@pytest.mark.asyncio
async def test_skipped_optional_step_writes_no_slot(registry):
    handler = RegistrationHandler()
    step = registry.step_of(flows.REGISTRATION, "ask_shop_name")
    skipped = NormalizedInput(kind=InputKind.FREE_TEXT, value=SKIPPED, raw_text="skip")

    result = await handler.process({"user_type": "shop"}, skipped, step)
    assert result == Advance(next_step_id="confirm")


@pytest.mark.asyncio
async def test_optional_step_retries_unexpected_kind(registry):
    step = registry.step_of(flows.REGISTRATION, "ask_shop_name")
    pin = NormalizedInput(kind=InputKind.LOCATION, value=(9.9, 76.2))

    result = await RegistrationHandler().process({"user_type": "shop"}, pin, step)
    assert result == Retry(reason="unexpected_input")


@pytest.mark.asyncio
async def test_invalid_name_is_retried(registry):
    result = await RegistrationHandler().process({}, typed("A"), registry.step_of(flows.REGISTRATION, "ask_name"))
    assert result == Retry(reason="invalid_name")


@pytest.mark.asyncio
async def test_agreement_confirm_decision(handlers, registry):
    handler = handlers[flows.AGREEMENT_CONFIRM]
    step = registry.step_of(flows.AGREEMENT_CONFIRM, "awaiting_confirm")

    result = await handler.process({"agreement_id": "AGR-7"}, tapped("dispute"), step)
    assert result.next_step_id == "confirm_done"
    assert result.slot_updates == {"decision": "dispute"}

    assert isinstance(await handler.process({}, tapped("later"), step), Retry)


@pytest.mark.asyncio
async def test_fish_subscription_all_collapses(handlers, registry):
    handler = handlers[flows.FISH_SUBSCRIBE]
    step = registry.step_of(flows.FISH_SUBSCRIBE, "select_fish_types")
    picked = NormalizedInput(kind=InputKind.MULTI_CHOICE, value=["tuna", "all"])

    result = await handler.process({}, picked, step)
    assert result.slot_updates == {"fish_types": ["all"]}


@pytest.mark.asyncio
async def test_fish_price_bounds(handlers, registry):
    handler = handlers[flows.FISH_POST_CATCH]
    step = registry.step_of(flows.FISH_POST_CATCH, "enter_price")

    assert (await handler.process({}, typed("₹320"), step)).slot_updates == {"price_per_kg": 320}
    assert await handler.process({}, typed("9000"), step) == Retry(reason="price_out_of_range")


@pytest.mark.asyncio
async def test_flash_deal_discount(handlers, registry):
    handler = handlers[flows.FLASH_DEAL_CREATE]
    step = registry.step_of(flows.FLASH_DEAL_CREATE, "ask_discount")

    assert (await handler.process({}, typed("40%"), step)).slot_updates == {"discount_percent": 40}
    assert await handler.process({}, typed("95"), step) == Retry(reason="discount_out_of_range")


def test_prompt_hints(handlers, registry):
    hints = handlers[flows.PRODUCT_SEARCH].prompt_hints(registry.step_of(flows.PRODUCT_SEARCH, "ask_image"), {})
    assert hints == {"flow": flows.PRODUCT_SEARCH, "step": "ask_image", "skippable": True}


def test_duplicate_handlers_rejected():
    with pytest.raises(ConfigurationError):
        build_handler_map([AgreementCreateHandler(), AgreementCreateHandler()])
