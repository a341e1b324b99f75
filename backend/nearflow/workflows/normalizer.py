# /nearflow/workflows/normalizer.py

"""
Turns transport-level InboundEvents into flow-independent NormalizedInputs.

The transport layer has already parsed the channel payload; this module only
maps event kinds onto input kinds and checks payload shape.
"""

from typing import Any, Iterable, List, Optional

from nearflow.config.settings import settings
from nearflow.models.events import InboundEvent, EventKind, NormalizedInput, SKIPPED
from nearflow.models.flow import InputKind
from nearflow.workflows.errors import InvalidInput

SKIP_CHOICE_ID = "skip"


def _text_of(payload: Any) -> str:
    if payload is None:
        return ""
    if isinstance(payload, dict):
        payload = payload.get("text") or payload.get("body") or ""
    return str(payload).strip()


def _choice_ids(payload: Any) -> List[str]:
    if isinstance(payload, dict):
        payload = payload.get("ids", payload.get("id"))
    if payload is None:
        return []
    if isinstance(payload, (list, tuple)):
        ids: List[str] = []
        for item in payload:
            item = str(item).strip()
            if item and item not in ids:
                ids.append(item)
        return ids
    value = str(payload).strip()
    return [value] if value else []


def _coordinates(payload: Any) -> tuple:
    try:
        if isinstance(payload, dict):
            latitude = float(payload["latitude"])
            longitude = float(payload["longitude"])
        else:
            latitude, longitude = (float(part) for part in payload)
    except (KeyError, TypeError, ValueError):
        raise InvalidInput(f"Location payload is not a coordinate pair: {payload!r}")

    if not -90.0 <= latitude <= 90.0 or not -180.0 <= longitude <= 180.0:
        raise InvalidInput(f"Coordinates out of range: ({latitude}, {longitude})")
    return (latitude, longitude)


def _attachment(payload: Any) -> dict:
    if isinstance(payload, str) and payload.strip():
        return {"media_id": payload.strip(), "mime_type": None}
    if isinstance(payload, dict):
        reference = payload.get("media_id") or payload.get("id") or payload.get("url")
        if reference:
            return {"media_id": str(reference), "mime_type": payload.get("mime_type")}
    raise InvalidInput("Media payload carries no attachment reference")


def normalize(event: InboundEvent) -> NormalizedInput:
    """
    Classify an inbound event.

    Raises:
        InvalidInput: if the payload does not have the shape its kind requires
    """
    if event.kind == EventKind.TEXT:
        text = _text_of(event.payload)
        if not text:
            return NormalizedInput(kind=InputKind.NONE)
        return NormalizedInput(kind=InputKind.FREE_TEXT, value=text, raw_text=text)

    if event.kind == EventKind.CHOICE:
        ids = _choice_ids(event.payload)
        if not ids:
            raise InvalidInput("Choice event carries no selection id")
        if len(ids) > 1 or isinstance(event.payload, (list, tuple)) or (
            isinstance(event.payload, dict) and "ids" in event.payload
        ):
            return NormalizedInput(kind=InputKind.MULTI_CHOICE, value=ids)
        return NormalizedInput(kind=InputKind.SINGLE_CHOICE, value=ids[0])

    if event.kind == EventKind.LOCATION:
        return NormalizedInput(kind=InputKind.LOCATION, value=_coordinates(event.payload))

    if event.kind == EventKind.MEDIA:
        return NormalizedInput(kind=InputKind.MEDIA, value=_attachment(event.payload))

    return NormalizedInput(kind=InputKind.NONE)


def keyword_of(normalized: NormalizedInput) -> Optional[str]:
    """Lower-cased text or choice id, used for keyword matching."""
    if normalized.kind == InputKind.FREE_TEXT and normalized.raw_text:
        return normalized.raw_text.strip().lower()
    if normalized.kind == InputKind.SINGLE_CHOICE and isinstance(normalized.value, str):
        return normalized.value.strip().lower()
    return None


def is_skip(normalized: NormalizedInput, skip_keywords: Optional[Iterable[str]] = None) -> bool:
    """Whether the input is a recognized skip token."""
    keywords = settings.skip_keywords if skip_keywords is None else skip_keywords
    keyword = keyword_of(normalized)
    if keyword is None:
        return False
    if normalized.kind == InputKind.SINGLE_CHOICE:
        return keyword == SKIP_CHOICE_ID
    return keyword in keywords


def as_skipped(normalized: NormalizedInput) -> NormalizedInput:
    """Replace the value with the skipped sentinel, keeping the original text."""
    return NormalizedInput(kind=normalized.kind, value=SKIPPED, raw_text=normalized.raw_text)
