# /nearflow/workflows/flows/registration.py

from nearflow.workflows import definitions as flows
from nearflow.workflows.handlers import LinearFlowHandler

MIN_NAME_LENGTH = 2
MAX_NAME_LENGTH = 50


class RegistrationHandler(LinearFlowHandler):
    """Customer / shop registration. Only shops are asked for a shop name."""

    flow_id = flows.REGISTRATION
    choices = {"user_type": {"customer", "shop"}}

    def parse_name(self, value):
        name = " ".join(str(value).split())
        if not MIN_NAME_LENGTH <= len(name) <= MAX_NAME_LENGTH:
            raise ValueError("invalid_name")
        return name

    def parse_shop_name(self, value):
        return self.parse_name(value)

    def next_step_for(self, step, slots, value):
        if step.step_id == "ask_location" and slots.get("user_type") != "shop":
            return "confirm"
        return super().next_step_for(step, slots, value)
