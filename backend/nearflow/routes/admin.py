# /nearflow/routes/admin.py

import logging
from fastapi import APIRouter, Depends, Request

from nearflow.config.settings import settings
from nearflow.jobs.session_sweeper import sweep_expired_sessions
from nearflow.models.api import APIResponse
from nearflow.models.session import utcnow
from nearflow.utils.dependencies import verify_api_key

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["Admin"],
    dependencies=[Depends(verify_api_key)]
)


@router.post("/sweep", response_model=APIResponse)
async def run_session_sweep(request: Request):
    """Run the inactive session sweeper once, now."""
    report = await sweep_expired_sessions(
        utcnow(),
        request.app.state.store,
        request.app.state.registry,
        request.app.state.notifier
    )
    return APIResponse(
        success=True,
        message=f"Expired {report.expired} sessions",
        data={"scanned": report.scanned, "expired": report.expired, "skipped": report.skipped, "pruned": report.pruned},
        version=settings.api_version
    )


@router.get("/flows", response_model=APIResponse)
async def list_flows(request: Request):
    """List registered flows and their steps."""
    registry = request.app.state.registry
    flows = [
        {
            "flow_id": flow_id,
            "label": registry.resolve(flow_id).label,
            "initial_step": registry.resolve(flow_id).initial_step,
            "steps": registry.resolve(flow_id).step_ids(),
        }
        for flow_id in registry.flow_ids()
    ]
    return APIResponse(
        success=True,
        message=f"Retrieved {len(flows)} flows",
        data={"flows": flows},
        version=settings.api_version
    )
