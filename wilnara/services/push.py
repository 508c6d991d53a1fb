"""
Push notification service - forwards queued push jobs to the push gateway.
The gateway resolves user IDs to device tokens (FCM/APNs); this side only
posts the notification and checks the response.
"""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from wilnara.config import get_settings
from wilnara.schemas.job_payloads import PushJob

logger = logging.getLogger(__name__)

PUSH_TIMEOUT_SECONDS = 10.0


async def send_push_job(payload: dict, client: Optional[httpx.AsyncClient] = None) -> bool:
    """Queue sender for push jobs."""
    try:
        job = PushJob.model_validate(payload)
    except ValidationError as e:
        logger.error("Push job payload invalid: %s", str(e))
        return False

    settings = get_settings()
    if not settings.push_gateway_url:
        logger.error("No push gateway configured - cannot send push notification")
        return False

    headers = {"Content-Type": "application/json"}
    if settings.push_gateway_token:
        headers["Authorization"] = f"Bearer {settings.push_gateway_token}"

    body = {
        "user_ids": job.user_id,
        "title": job.title,
        "body": job.body,
    }
    for optional in ("data", "icon", "image"):
        value = getattr(job, optional)
        if value is not None:
            body[optional] = value

    try:
        if client is not None:
            response = await client.post(
                settings.push_gateway_url, json=body, headers=headers,
                timeout=PUSH_TIMEOUT_SECONDS,
            )
        else:
            async with httpx.AsyncClient(timeout=PUSH_TIMEOUT_SECONDS) as owned_client:
                response = await owned_client.post(
                    settings.push_gateway_url, json=body, headers=headers,
                )
    except httpx.HTTPError as e:
        logger.error("Push gateway request failed: %s", str(e), extra={"provider": "push"})
        return False
    except Exception as e:
        logger.error("Push gateway call raised: %s", str(e), extra={"provider": "push"})
        return False

    if not response.is_success:
        logger.error(
            "Push gateway rejected notification: status=%d", response.status_code,
            extra={"provider": "push", "status_code": response.status_code},
        )
        return False

    logger.info(
        "Push notification sent to %d user(s): %s", len(job.user_id), job.title[:40],
        extra={"provider": "push"},
    )
    return True
