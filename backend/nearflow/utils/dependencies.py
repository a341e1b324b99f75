# /nearflow/utils/dependencies.py

import secrets
from fastapi import HTTPException, Request

from nearflow.config.settings import settings
from nearflow.workflows.engine import FlowEngine

# Request-scoped accessors for the objects the lifespan stores on app.state,
# plus the API key guard for operational endpoints.


async def verify_api_key(request: Request):
    if settings.api_key:
        provided_key = request.headers.get("X-API-KEY")
        if not (provided_key and secrets.compare_digest(provided_key, settings.api_key)):
            raise HTTPException(status_code=403, detail="Invalid or missing API key")


def get_engine(request: Request) -> FlowEngine:
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(status_code=503, detail="Flow engine is not ready")
    return engine


def get_message_guard(request: Request):
    return getattr(request.app.state, "message_guard", None)
