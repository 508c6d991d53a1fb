"""
Outbound webhook service - delivers queued webhook jobs over HTTP.

Success is any 2xx or 3xx response (redirects are not followed).
Timeouts, connection errors and 4xx/5xx responses are failures and go
back to the queue for retry.
"""
import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from wilnara.schemas.job_payloads import MAX_WEBHOOK_TIMEOUT_SECONDS, WebhookJob

logger = logging.getLogger(__name__)


def _default_timeout() -> float:
    from wilnara.config import get_settings
    return get_settings().webhook_default_timeout_seconds


def is_ok_status(status_code: int) -> bool:
    return 200 <= status_code < 400


async def send_webhook_job(payload: dict, client: Optional[httpx.AsyncClient] = None) -> bool:
    """Queue sender for webhook jobs."""
    try:
        job = WebhookJob.model_validate(payload)
    except ValidationError as e:
        logger.error("Webhook job payload invalid: %s", str(e))
        return False

    timeout = job.timeout or min(_default_timeout(), MAX_WEBHOOK_TIMEOUT_SECONDS)
    headers = {"Content-Type": "application/json", **(job.headers or {})}
    request_kwargs = {"headers": headers, "timeout": timeout}
    if job.payload is not None:
        request_kwargs["json"] = job.payload

    try:
        if client is not None:
            response = await client.request(job.method, job.url, **request_kwargs)
        else:
            async with httpx.AsyncClient(follow_redirects=False) as owned_client:
                response = await owned_client.request(job.method, job.url, **request_kwargs)
    except httpx.TimeoutException:
        logger.warning("Webhook %s %s timed out after %.1fs", job.method, job.url, timeout)
        return False
    except httpx.HTTPError as e:
        logger.warning("Webhook %s %s failed: %s", job.method, job.url, str(e))
        return False
    except Exception as e:
        logger.error("Webhook %s %s raised: %s", job.method, job.url, str(e))
        return False

    if not is_ok_status(response.status_code):
        logger.warning(
            "Webhook %s %s returned %d", job.method, job.url, response.status_code,
            extra={"status_code": response.status_code},
        )
        return False

    logger.info(
        "Webhook delivered: %s %s -> %d", job.method, job.url, response.status_code,
        extra={"status_code": response.status_code},
    )
    return True
