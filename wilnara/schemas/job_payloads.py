"""
Job payload schemas - validated input for each notification channel.
Producers validate against these before a row is written; senders parse
the stored JSON back through them.
"""
from typing import Literal, Optional, Union
from pydantic import BaseModel, Field, field_validator

# Bounds on the runtime of one attempt. The queue refuses a processing lease
# that is not comfortably longer.
MAX_WEBHOOK_TIMEOUT_SECONDS = 120.0
MAX_SMS_TARGETS = 20  # sent one after another


def _as_target_list(value: Union[str, list[str]], field_name: str) -> list[str]:
    """Normalize a single target or a list of targets into a non-empty list."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"{field_name} must be a string or a list of strings")
    targets = [v.strip() for v in value if isinstance(v, str) and v.strip()]
    if not targets:
        raise ValueError(f"{field_name} requires at least one target")
    return targets


class EmailAttachment(BaseModel):
    filename: str
    content: str  # base64
    content_type: str = Field("application/octet-stream", alias="contentType")

    model_config = {"populate_by_name": True}


class EmailJob(BaseModel):
    """Templated email to one or more recipients."""
    to: list[str]
    cc: Optional[list[str]] = None
    bcc: Optional[list[str]] = None
    subject: str = Field(..., min_length=1)
    template: str = Field(..., min_length=1)
    variables: dict = Field(default_factory=dict)
    attachments: Optional[list[EmailAttachment]] = None

    @field_validator("to", mode="before")
    @classmethod
    def _normalize_to(cls, value):
        return _as_target_list(value, "to")


class SMSJob(BaseModel):
    """Text message to one or more phone numbers."""
    phone: list[str] = Field(..., max_length=MAX_SMS_TARGETS)
    message: str = Field(..., min_length=1)
    sender: Optional[str] = None

    @field_validator("phone", mode="before")
    @classmethod
    def _normalize_phone(cls, value):
        return _as_target_list(value, "phone")

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message must not be blank")
        return value


class PushJob(BaseModel):
    """Push notification to one or more users."""
    user_id: list[str]
    title: str = Field(..., min_length=1)
    body: str = Field(..., min_length=1)
    data: Optional[dict] = None
    icon: Optional[str] = None
    image: Optional[str] = None

    @field_validator("user_id", mode="before")
    @classmethod
    def _normalize_user_id(cls, value):
        return _as_target_list(value, "user_id")


class WebhookJob(BaseModel):
    """Outbound HTTP call."""
    url: str = Field(..., min_length=1)
    method: Literal["GET", "POST", "PUT", "DELETE"] = "POST"
    headers: Optional[dict[str, str]] = None
    payload: Optional[dict] = None
    timeout: Optional[float] = Field(None, gt=0, le=MAX_WEBHOOK_TIMEOUT_SECONDS)  # seconds

    @field_validator("method", mode="before")
    @classmethod
    def _upper_method(cls, value):
        return value.upper() if isinstance(value, str) else value

    @field_validator("url")
    @classmethod
    def _http_url(cls, value: str) -> str:
        if not value.startswith(("http://", "https://")):
            raise ValueError("url must start with http:// or https://")
        return value
