"""
Job Routes for Rientro.

Manual triggers for the scheduled jobs plus scheduler health. Protected by
the same shared secret as the database webhook.
"""
from fastapi import APIRouter, Depends, HTTPException

from rientro.services.engine import RientroEngine, get_engine
from rientro.services.scheduler import RETENTION_JOB_ID, get_scheduler, run_monitored_job

from .hook_routes import verify_webhook_secret


router = APIRouter(
    prefix="/api/jobs",
    tags=["Jobs"],
    dependencies=[Depends(verify_webhook_secret)]
)


@router.post(
    "/sweep",
    summary="Run Escalation Sweep",
    description="Evaluate every in-progress trip now"
)
async def run_sweep(engine: RientroEngine = Depends(get_engine)):
    report = await engine.sweeper.run()
    return report.to_dict()


@router.post(
    "/retention",
    summary="Run Retention Cleanup",
    description=(
        "Purge terminal trips and notifications past the retention window. "
        "A successful run resumes the scheduled job if it was paused."
    )
)
async def run_retention(engine: RientroEngine = Depends(get_engine)):
    return await run_monitored_job(RETENTION_JOB_ID, engine.retention.run)


@router.post("/{job_id}/resume", summary="Resume Paused Job")
async def resume_job(job_id: str):
    scheduler = get_scheduler()
    if job_id not in scheduler.jobs_config:
        raise HTTPException(status_code=404, detail=f"Unknown job: {job_id}")

    return {"job_id": job_id, "resumed": scheduler.resume_job(job_id)}


@router.get("/status", summary="Scheduler Status")
async def scheduler_status():
    return get_scheduler().get_health_status()
