from fastapi import APIRouter, HTTPException, Depends, status, Query
from database import database
from middleware import require_admin
from models import AuditAction, UserRole
from services.payment_service import payment_service
from services.tier_catalog import get_catalog
from utils.audit import create_audit_log, get_audit_logs_for_resource
from datetime import datetime, timezone
import logging

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/payments/challenged")
async def list_challenged_payments(limit: int = Query(100, ge=1, le=500)):
    """Orders held by the fraud check, oldest first (manual review queue)."""
    orders = await payment_service.list_challenged(limit=limit)
    return {"orders": orders, "count": len(orders)}


@router.get("/payments/{order_id}/audit")
async def get_payment_audit_trail(order_id: str):
    db = database.get_db()
    order = await db.transactions.find_one({"order_id": order_id}, {"_id": 0, "snap_token": 0})
    if not order:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return {
        "order": order,
        "audit_logs": await get_audit_logs_for_resource("transaction", order_id),
    }


@router.get("/jobs/status")
async def get_jobs_status():
    """Scheduled jobs and their next run times (read-only monitoring)."""
    from server import scheduler
    return {
        "scheduled_jobs": [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if job.next_run_time else None,
            }
            for job in scheduler.get_jobs()
        ],
        "scheduler_running": scheduler.running,
    }


@router.post("/jobs/{job_name}/run")
async def run_job_now(job_name: str, admin: dict = Depends(require_admin)):
    """Run a single background job by name. Returns the job's message for the admin toast."""
    from job_runner import JOB_RUNNERS

    job_id = (job_name or "").strip()
    if job_id not in JOB_RUNNERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid job. Use one of: {', '.join(sorted(JOB_RUNNERS.keys()))}"
        )
    try:
        result = await JOB_RUNNERS[job_id]()
    except Exception as e:
        logger.error(f"Manual job run error ({job_id}): {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to run job: {job_id}"
        )

    await create_audit_log(
        action=AuditAction.ADMIN_JOB_TRIGGERED,
        actor_role=UserRole.ADMIN,
        actor_id=admin["user_id"],
        metadata={"job_id": job_id, "count": result.get("count")},
    )
    return {
        "success": True,
        "job": job_id,
        "message": result.get("message") or f"Job {job_id} completed",
        "count": result.get("count"),
    }


@router.get("/system/feature-matrix")
async def get_feature_matrix():
    """Tier catalog with prices, features and limits."""
    return {
        "tiers": get_catalog(),
        "generated_at": datetime.now(timezone.utc).isoformat(),
    }
