# /nearflow/workflows/flows/fish.py

from nearflow.workflows import definitions as flows
from nearflow.workflows.handlers import LinearFlowHandler

FISH_TYPES = {
    "sardine", "mackerel", "tuna", "seer_fish", "pomfret", "prawns",
    "squid", "crab", "anchovy", "sole", "barracuda", "pearl_spot",
}
ALERT_FREQUENCIES = {"anytime", "early_morning", "morning", "twice_daily"}
QUANTITY_RANGES = {"5_10", "10_25", "25_50", "50_plus"}
MAX_PRICE_PER_KG = 5000


class FishSubscribeHandler(LinearFlowHandler):
    flow_id = flows.FISH_SUBSCRIBE
    choices = {"fish_types": FISH_TYPES | {"all"}, "frequency": ALERT_FREQUENCIES}

    def parse_fish_types(self, value):
        values = value if isinstance(value, list) else [value]
        return ["all"] if "all" in values else values


class FishPostCatchHandler(LinearFlowHandler):
    flow_id = flows.FISH_POST_CATCH
    choices = {"fish_type": FISH_TYPES, "quantity_range": QUANTITY_RANGES}

    def parse_price_per_kg(self, value):
        try:
            price = int(str(value).replace("₹", "").replace(",", "").strip())
        except ValueError:
            raise ValueError("invalid_price")
        if not 0 < price <= MAX_PRICE_PER_KG:
            raise ValueError("price_out_of_range")
        return price
