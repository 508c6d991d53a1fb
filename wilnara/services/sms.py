"""
SMS service - Twilio delivery for queued SMS jobs.
Tracks segment count and encoding, and caps messages at 3 segments.

Carrier errors that can never succeed on retry (invalid number, landline,
carrier opt-out) are logged as permanent so operators can spot them in the
dead-letter export.
"""
import asyncio
import logging
import math
from typing import Optional

from pydantic import ValidationError

from wilnara.schemas.job_payloads import SMSJob
from wilnara.utils.logging import mask_phone

logger = logging.getLogger(__name__)

# SMS segment limits
GSM_SINGLE_SEGMENT = 160
GSM_MULTI_SEGMENT = 153
UCS2_SINGLE_SEGMENT = 70
UCS2_MULTI_SEGMENT = 67

MAX_SEGMENTS = 3
MAX_GSM_CHARS = GSM_MULTI_SEGMENT * MAX_SEGMENTS  # 459
MAX_UCS2_CHARS = UCS2_MULTI_SEGMENT * MAX_SEGMENTS  # 201

PERMANENT_ERRORS = {
    "21211",  # Invalid "To" phone number
    "21610",  # Unsubscribed recipient (carrier-level opt-out)
    "21612",  # Invalid "To" phone number for SMS
    "30006",  # Landline or unreachable
}

TWILIO_CLIENT_TIMEOUT = 10

# GSM-7 basic character set (for encoding detection)
_GSM7_BASIC = set(
    "@£$¥èéùìòÇ\nØø\rÅåΔ_ΦΓΛΩΠΨΣΘΞ ÆæßÉ"
    " !\"#¤%&'()*+,-./0123456789:;<=>?"
    "¡ABCDEFGHIJKLMNOPQRSTUVWXYZ"
    "ÄÖÑÜabcdefghijklmnopqrstuvwxyz"
    "äöñüà§"
)
_GSM7_EXTENDED = set("^{}\\[~]|€")


def _get_twilio_client():
    """Get a Twilio REST client with configured timeout."""
    from twilio.rest import Client as TwilioClient
    from twilio.http.http_client import TwilioHttpClient
    from wilnara.config import get_settings
    settings = get_settings()
    http_client = TwilioHttpClient(timeout=TWILIO_CLIENT_TIMEOUT)
    return TwilioClient(
        settings.twilio_account_sid,
        settings.twilio_auth_token,
        http_client=http_client,
    )


async def _run_sync(func, *args, **kwargs):
    """Run a synchronous function in the thread pool to avoid blocking the event loop."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, lambda: func(*args, **kwargs))


def is_gsm7(message: str) -> bool:
    return all(c in _GSM7_BASIC or c in _GSM7_EXTENDED for c in message)


def count_segments(message: str) -> int:
    """Count SMS segments. Portuguese accents like ã/ç/ê force UCS-2."""
    if is_gsm7(message):
        length = sum(2 if c in _GSM7_EXTENDED else 1 for c in message)
        if length <= GSM_SINGLE_SEGMENT:
            return 1
        return math.ceil(length / GSM_MULTI_SEGMENT)
    if len(message) <= UCS2_SINGLE_SEGMENT:
        return 1
    return math.ceil(len(message) / UCS2_MULTI_SEGMENT)


def enforce_message_length(message: str) -> tuple[str, int, str]:
    """
    Truncate to MAX_SEGMENTS with an ellipsis.
    Returns: (message, segment_count, encoding)
    """
    encoding = "gsm7" if is_gsm7(message) else "ucs2"
    segments = count_segments(message)
    if segments <= MAX_SEGMENTS:
        return message, segments, encoding

    max_len = (MAX_GSM_CHARS if encoding == "gsm7" else MAX_UCS2_CHARS) - 3
    truncated = message[:max_len] + "..."
    new_segments = count_segments(truncated)
    logger.warning(
        "Message truncated from %d to %d segments (%s encoding)",
        segments, new_segments, encoding,
    )
    return truncated, new_segments, encoding


async def send_sms(
    to: str,
    body: str,
    from_phone: Optional[str] = None,
    messaging_service_sid: Optional[str] = None,
) -> dict:
    """
    Send one SMS via Twilio.

    Returns: {
        "sid": str|None, "status": str, "segments": int, "encoding": str,
        "error": str|None, "error_code": str|None,
    }
    """
    from twilio.base.exceptions import TwilioRestException

    body, segments, encoding = enforce_message_length(body)
    masked = mask_phone(to)
    result = {
        "sid": None, "status": "error", "segments": segments,
        "encoding": encoding, "error": None, "error_code": None,
    }

    create_kwargs = {"to": to, "body": body}
    if from_phone:
        create_kwargs["from_"] = from_phone
    elif messaging_service_sid:
        create_kwargs["messaging_service_sid"] = messaging_service_sid
    else:
        result["error"] = "No sender number or messaging service configured"
        logger.error("SMS to %s not sent: %s", masked, result["error"])
        return result

    try:
        client = _get_twilio_client()
        message = await _run_sync(client.messages.create, **create_kwargs)
    except TwilioRestException as e:
        code = str(e.code) if e.code else None
        result["error"] = e.msg or str(e)
        result["error_code"] = code
        logger.error(
            "SMS to %s failed (%s): %s",
            masked, "permanent" if code in PERMANENT_ERRORS else "transient", result["error"],
            extra={"provider": "twilio", "error_code": code},
        )
        return result
    except Exception as e:
        result["error"] = str(e)
        logger.error("SMS to %s failed: %s", masked, str(e), extra={"provider": "twilio"})
        return result

    result["sid"] = message.sid
    result["status"] = "sent"
    logger.info(
        "SMS sent to %s (%d segments, %s)", masked, segments, encoding,
        extra={"provider": "twilio"},
    )
    return result


async def send_sms_job(payload: dict) -> bool:
    """Queue sender for SMS jobs. Succeeds only if every target was accepted."""
    try:
        job = SMSJob.model_validate(payload)
    except ValidationError as e:
        logger.error("SMS job payload invalid: %s", str(e))
        return False

    from wilnara.config import get_settings
    settings = get_settings()
    if not settings.twilio_account_sid or not settings.twilio_auth_token:
        logger.error("Twilio not configured - cannot send SMS")
        return False

    from_phone = job.sender or settings.twilio_from_number or None
    messaging_service_sid = settings.twilio_messaging_service_sid or None

    all_sent = True
    for phone in job.phone:
        result = await send_sms(
            to=phone,
            body=job.message,
            from_phone=from_phone,
            messaging_service_sid=messaging_service_sid,
        )
        if result["error"]:
            all_sent = False
    return all_sent
