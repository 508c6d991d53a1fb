"""
Transactional email service - SendGrid delivery for queued email jobs.

Renders the job's template, sends one message to all recipients
(cc/bcc/attachments included), and reports success as a bool so the queue
can drive retries. Never raises.
"""
import asyncio
import logging

from pydantic import ValidationError

from wilnara.config import get_settings
from wilnara.schemas.job_payloads import EmailJob
from wilnara.utils.email_templates import UnknownTemplateError, render_email
from wilnara.utils.logging import mask_email

logger = logging.getLogger(__name__)

SENDGRID_TIMEOUT_SECONDS = 30


async def _send_via_sendgrid(job: EmailJob, html_content: str, text_content: str) -> dict:
    """
    Send a rendered email via SendGrid.

    Returns: {"message_id": str|None, "status": str, "error": str|None}
    """
    settings = get_settings()
    if not settings.sendgrid_api_key:
        logger.error("No SendGrid API key configured for transactional email")
        return {"message_id": None, "status": "error", "error": "SendGrid not configured"}

    recipients = ", ".join(mask_email(addr) for addr in job.to)

    try:
        from sendgrid import SendGridAPIClient
        from sendgrid.helpers.mail import (
            Attachment, Bcc, Cc, Content, Disposition, Email,
            FileContent, FileName, FileType, Mail, To,
        )

        message = Mail(
            from_email=Email(settings.sendgrid_from_email, settings.sendgrid_from_name),
            to_emails=[To(addr) for addr in job.to],
            subject=job.subject,
        )
        message.content = [
            Content("text/plain", text_content),
            Content("text/html", html_content),
        ]
        for addr in job.cc or []:
            message.add_cc(Cc(addr))
        for addr in job.bcc or []:
            message.add_bcc(Bcc(addr))
        for attachment in job.attachments or []:
            message.add_attachment(Attachment(
                FileContent(attachment.content),
                FileName(attachment.filename),
                FileType(attachment.content_type),
                Disposition("attachment"),
            ))

        sg = SendGridAPIClient(api_key=settings.sendgrid_api_key)
        sg.client.timeout = SENDGRID_TIMEOUT_SECONDS
        # Offload synchronous SendGrid SDK call to thread pool
        loop = asyncio.get_running_loop()
        response = await loop.run_in_executor(None, lambda: sg.send(message))

        if response.status_code >= 300:
            logger.error(
                "SendGrid rejected email: to=%s status=%d",
                recipients, response.status_code,
                extra={"provider": "sendgrid", "status_code": response.status_code},
            )
            return {
                "message_id": None,
                "status": "error",
                "error": f"SendGrid returned {response.status_code}",
            }

        message_id = response.headers.get("X-Message-Id", "")
        logger.info(
            "Email sent: to=%s subject=%s",
            recipients, job.subject[:40],
            extra={"provider": "sendgrid"},
        )
        return {"message_id": message_id, "status": "sent", "error": None}

    except Exception as e:
        logger.error(
            "Email send failed: to=%s error=%s",
            recipients, str(e),
            extra={"provider": "sendgrid"},
        )
        return {"message_id": None, "status": "error", "error": str(e)}


async def send_email_job(payload: dict) -> bool:
    """Queue sender for email jobs."""
    try:
        job = EmailJob.model_validate(payload)
    except ValidationError as e:
        logger.error("Email job payload invalid: %s", str(e))
        return False

    try:
        html, text = render_email(
            job.template, job.variables, app_url=get_settings().app_base_url,
        )
    except UnknownTemplateError:
        logger.error("Unknown email template: %s", job.template)
        return False

    result = await _send_via_sendgrid(job, html, text)
    return result["status"] == "sent"
