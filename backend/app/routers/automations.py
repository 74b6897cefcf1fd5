from fastapi import APIRouter, Depends

from backend.app.dependencies import get_scheduler, require_cron_secret
from backend.app.routers.schemas import AutomationSummaryOut
from backend.app.services.automation import AutomationScheduler


router = APIRouter(dependencies=[Depends(require_cron_secret)])


@router.api_route("/automations/run", methods=["GET", "POST"], response_model=AutomationSummaryOut)
async def run_automations(scheduler: AutomationScheduler = Depends(get_scheduler)) -> AutomationSummaryOut:
    """Timer entry point: runs every sweep and reports per-sweep counts and errors."""
    return AutomationSummaryOut.model_validate(await scheduler.run_all())
