# /nearflow/workflows/flows/catalog.py

from typing import Dict

from nearflow.workflows.handlers import FlowHandler, build_handler_map
from nearflow.workflows.flows.agreements import (
    AgreementConfirmHandler,
    AgreementCreateHandler,
    AgreementListHandler,
)
from nearflow.workflows.flows.fish import FishPostCatchHandler, FishSubscribeHandler
from nearflow.workflows.flows.main_menu import MainMenuHandler
from nearflow.workflows.flows.marketplace import (
    FlashDealCreateHandler,
    JobPostHandler,
    OfferUploadHandler,
    ProductSearchHandler,
    SettingsHandler,
)
from nearflow.workflows.flows.registration import RegistrationHandler


def default_handlers() -> Dict[str, FlowHandler]:
    """One handler per registered flow."""
    return build_handler_map([
        MainMenuHandler(),
        RegistrationHandler(),
        SettingsHandler(),
        OfferUploadHandler(),
        ProductSearchHandler(),
        AgreementCreateHandler(),
        AgreementConfirmHandler(),
        AgreementListHandler(),
        FishSubscribeHandler(),
        FishPostCatchHandler(),
        JobPostHandler(),
        FlashDealCreateHandler(),
    ])
