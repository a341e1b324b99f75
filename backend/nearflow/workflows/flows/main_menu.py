# /nearflow/workflows/flows/main_menu.py

import logging
from typing import Dict

from nearflow.models.events import Retry, SwitchFlow
from nearflow.workflows import definitions as flows
from nearflow.workflows.handlers import FlowHandler
from nearflow.workflows.normalizer import keyword_of

logger = logging.getLogger(__name__)

# Menu list ids and quick-action words, both mapped to the flow they start.
MENU_SELECTIONS: Dict[str, str] = {
    # List / button ids
    "register": flows.REGISTRATION,
    "settings": flows.SETTINGS,
    "upload_offer": flows.OFFERS_UPLOAD,
    "search_product": flows.PRODUCT_SEARCH,
    "create_agreement": flows.AGREEMENT_CREATE,
    "pending_agreements": flows.AGREEMENT_CONFIRM,
    "my_agreements": flows.AGREEMENT_LIST,
    "fish_subscribe": flows.FISH_SUBSCRIBE,
    "fish_post_catch": flows.FISH_POST_CATCH,
    "post_job": flows.JOB_POST,
    "create_flash_deal": flows.FLASH_DEAL_CREATE,
    # Quick actions typed as text
    "search": flows.PRODUCT_SEARCH,
    "find": flows.PRODUCT_SEARCH,
    "agree": flows.AGREEMENT_CREATE,
    "agreement": flows.AGREEMENT_CREATE,
    "upload": flows.OFFERS_UPLOAD,
    "alerts": flows.FISH_SUBSCRIBE,
    "catch": flows.FISH_POST_CATCH,
    "sell fish": flows.FISH_POST_CATCH,
    "job": flows.JOB_POST,
    "deal": flows.FLASH_DEAL_CREATE,
}


class MainMenuHandler(FlowHandler):
    """Entry point of every conversation: turns a menu selection into a flow switch."""

    flow_id = flows.MAIN_MENU

    async def process(self, slots, normalized_input, step):
        selection = keyword_of(normalized_input)
        target = MENU_SELECTIONS.get(selection) if selection else None
        if target is None:
            logger.warning(f"Unknown menu selection: {selection!r}")
            return Retry(reason="unknown_selection", render_hints={"options": self.options()})
        return SwitchFlow(target_flow_id=target)

    def options(self):
        first = {}
        for selection_id, flow_id in MENU_SELECTIONS.items():
            first.setdefault(flow_id, selection_id)
        return list(first.values())

    def prompt_hints(self, step, slots):
        hints = super().prompt_hints(step, slots)
        hints["options"] = self.options()
        return hints
