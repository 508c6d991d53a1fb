"""
Queue admin endpoints - operational visibility into the notification queue.

- GET  /api/v1/queue/stats                  - counts by status and type
- GET  /api/v1/queue/failed                 - dead-letter export
- POST /api/v1/queue/failed/{job_id}/retry  - requeue a copy of a dead-lettered job
"""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request

from wilnara.config import get_settings
from wilnara.services.notification_queue import NotificationQueue

logger = logging.getLogger(__name__)


def get_notification_queue(request: Request) -> NotificationQueue:
    """FastAPI dependency returning the process-wide queue built in the lifespan."""
    queue = getattr(request.app.state, "notification_queue", None)
    if queue is None:
        raise HTTPException(status_code=503, detail="Notification queue not initialized")
    return queue


async def require_admin_key(x_admin_key: Optional[str] = Header(None)) -> None:
    """Require X-Admin-Key. Without ADMIN_API_KEY the routes are open in development only."""
    settings = get_settings()
    expected = settings.admin_api_key
    if not expected:
        if settings.app_env == "development":
            return
        logger.warning("Rejected queue admin request: ADMIN_API_KEY not configured")
        raise HTTPException(status_code=503, detail="Admin API key not configured")
    if not x_admin_key or not hmac.compare_digest(x_admin_key, expected):
        logger.warning("Rejected queue admin request: bad or missing X-Admin-Key")
        raise HTTPException(status_code=401, detail="Invalid admin key")


router = APIRouter(
    prefix="/api/v1/queue",
    tags=["queue"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("/stats")
async def queue_stats(queue: NotificationQueue = Depends(get_notification_queue)):
    stats = await queue.get_queue_stats()
    if stats is None:
        raise HTTPException(status_code=503, detail="Queue statistics unavailable")
    return {
        **stats,
        "in_flight": queue.in_flight,
        "processing": queue.is_processing,
    }


@router.get("/failed")
async def failed_jobs(
    limit: int = Query(50, ge=1, le=500),
    queue: NotificationQueue = Depends(get_notification_queue),
):
    jobs = await queue.list_failed_jobs(limit=limit)
    if jobs is None:
        raise HTTPException(status_code=503, detail="Failed job export unavailable")
    return {"jobs": jobs, "count": len(jobs)}


@router.post("/failed/{job_id}/retry")
async def retry_failed_job(
    job_id: str,
    queue: NotificationQueue = Depends(get_notification_queue),
):
    new_job_id = await queue.requeue_failed_job(job_id)
    if new_job_id is None:
        raise HTTPException(status_code=404, detail="Failed job not found")
    return {"status": "requeued", "job_id": job_id, "new_job_id": new_job_id}
