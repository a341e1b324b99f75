# /nearflow/workflows/flows/marketplace.py

"""Offers, product requests, gig jobs, flash deals and settings."""

from nearflow.workflows import definitions as flows
from nearflow.workflows.handlers import LinearFlowHandler

SHOP_CATEGORIES = {
    "grocery", "electronics", "clothes", "medical", "furniture", "mobile",
    "appliances", "hardware", "restaurant", "bakery", "stationery", "beauty",
    "automotive", "jewelry", "sports", "other",
}
JOB_CATEGORIES = {
    "delivery", "cleaning", "moving", "queue_standing", "cooking",
    "gardening", "repairs", "tutoring", "other",
}


def _bounded_text(value, max_length: int, error: str) -> str:
    text = " ".join(str(value).split())
    if not text or len(text) > max_length:
        raise ValueError(error)
    return text


class OfferUploadHandler(LinearFlowHandler):
    flow_id = flows.OFFERS_UPLOAD
    choices = {"validity": {"today", "3days", "week"}}

    def parse_caption(self, value):
        return _bounded_text(value, 500, "caption_too_long")


class ProductSearchHandler(LinearFlowHandler):
    flow_id = flows.PRODUCT_SEARCH
    choices = {"category": SHOP_CATEGORIES | {"all"}}

    def parse_description(self, value):
        return _bounded_text(value, 500, "invalid_description")


class JobPostHandler(LinearFlowHandler):
    flow_id = flows.JOB_POST
    choices = {"category": JOB_CATEGORIES}

    def parse_title(self, value):
        return _bounded_text(value, 100, "invalid_title")

    def parse_pay(self, value):
        try:
            pay = int(str(value).replace("₹", "").replace(",", "").strip())
        except ValueError:
            raise ValueError("invalid_pay")
        if pay < 50:
            raise ValueError("pay_too_low")
        return pay


class FlashDealCreateHandler(LinearFlowHandler):
    flow_id = flows.FLASH_DEAL_CREATE
    choices = {"target_claims": {"10", "20", "30", "50"}}

    def parse_discount_percent(self, value):
        try:
            discount = int(str(value).rstrip("%").strip())
        except ValueError:
            raise ValueError("invalid_discount")
        if not 5 <= discount <= 90:
            raise ValueError("discount_out_of_range")
        return discount

    def parse_target_claims(self, value):
        return int(value)


class SettingsHandler(LinearFlowHandler):
    flow_id = flows.SETTINGS
    choices = {"setting": {"name", "language", "notifications"}}
