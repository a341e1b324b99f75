# /nearflow/workflows/flows/agreements.py

"""
Peer-to-peer payment agreement flows: create, confirm and list.

Amount-to-words conversion, PDF generation and counterparty notification
belong to the agreement service and hang off the on_confirmed hooks.
"""

import re
from typing import Any

from nearflow.models.events import Advance, Retry, Terminate
from nearflow.workflows import definitions as flows
from nearflow.workflows.handlers import LinearFlowHandler
from nearflow.workflows.normalizer import keyword_of

MAX_AGREEMENT_AMOUNT = 10_000_000
AMOUNT_PATTERN = re.compile(r"^(?:rs\.?|inr|₹)?\s*([\d,]+(?:\.\d{1,2})?)\s*(?:/-)?$", re.IGNORECASE)


def parse_amount(value: Any) -> int:
    """Parse '5000', '5,000', '₹5000' or 'Rs. 5000/-' into whole rupees."""
    match = AMOUNT_PATTERN.match(str(value).strip())
    if not match:
        raise ValueError("invalid_amount")
    amount = float(match.group(1).replace(",", ""))
    if amount <= 0 or amount > MAX_AGREEMENT_AMOUNT:
        raise ValueError("amount_out_of_range")
    return int(round(amount))


class AgreementCreateHandler(LinearFlowHandler):
    flow_id = flows.AGREEMENT_CREATE
    choices = {"direction": {"giving", "receiving"}}

    def parse_amount(self, value: Any) -> int:
        return parse_amount(value)


class AgreementConfirmHandler(LinearFlowHandler):
    """Counterparty confirmation; the decision step refuses interruptions."""

    flow_id = flows.AGREEMENT_CONFIRM
    DECISIONS = {"confirm", "reject", "dispute"}

    async def process(self, slots, normalized_input, step):
        if step.step_id != "awaiting_confirm":
            return await super().process(slots, normalized_input, step)

        decision = keyword_of(normalized_input)
        if decision not in self.DECISIONS:
            return Retry(reason="decision_required", render_hints={"options": sorted(self.DECISIONS)})
        return Advance(
            next_step_id=step.next_step,
            slot_updates={"decision": decision},
            render_hints={"agreement_id": slots.get("agreement_id"), "decision": decision},
        )


class AgreementListHandler(LinearFlowHandler):
    flow_id = flows.AGREEMENT_LIST
    choices = {"action": {"mark_complete", "download_pdf", "back_to_list"}}

    async def process(self, slots, normalized_input, step):
        if step.step_id == "view_detail" and keyword_of(normalized_input) == "back_to_list":
            return Advance(next_step_id="my_list")
        if step.step_id == "view_detail" and keyword_of(normalized_input) == "close":
            return Terminate()
        return await super().process(slots, normalized_input, step)
