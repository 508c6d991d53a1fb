"""
Job payload schema tests - target normalization and channel-specific validation.
"""
import pytest
from pydantic import ValidationError

from wilnara.schemas.job_payloads import (
    MAX_SMS_TARGETS,
    MAX_WEBHOOK_TIMEOUT_SECONDS,
    EmailJob,
    PushJob,
    SMSJob,
    WebhookJob,
)


class TestEmailJob:

    def test_single_recipient_becomes_list(self):
        job = EmailJob.model_validate({"to": "ana@example.com", "subject": "Oi", "template": "welcome"})
        assert job.to == ["ana@example.com"]
        assert job.variables == {}

    def test_blank_recipients_dropped(self):
        job = EmailJob.model_validate({
            "to": [" ana@example.com ", "", "  "], "subject": "Oi", "template": "welcome",
        })
        assert job.to == ["ana@example.com"]

    def test_requires_recipient(self):
        with pytest.raises(ValidationError):
            EmailJob.model_validate({"to": [], "subject": "Oi", "template": "welcome"})

    def test_rejects_non_string_recipient(self):
        with pytest.raises(ValidationError):
            EmailJob.model_validate({"to": 42, "subject": "Oi", "template": "welcome"})

    def test_requires_subject_and_template(self):
        with pytest.raises(ValidationError):
            EmailJob.model_validate({"to": "ana@example.com", "subject": "", "template": "welcome"})
        with pytest.raises(ValidationError):
            EmailJob.model_validate({"to": "ana@example.com", "subject": "Oi"})

    def test_attachment_accepts_camel_case_content_type(self):
        job = EmailJob.model_validate({
            "to": "ana@example.com",
            "subject": "Fatura",
            "template": "order_confirmation",
            "attachments": [{"filename": "fatura.pdf", "content": "JVBERi0=", "contentType": "application/pdf"}],
        })
        assert job.attachments[0].content_type == "application/pdf"


class TestSMSJob:

    def test_phone_normalized(self):
        job = SMSJob.model_validate({"phone": "+5511999990000", "message": "Oi"})
        assert job.phone == ["+5511999990000"]
        assert job.sender is None

    def test_blank_message_rejected(self):
        with pytest.raises(ValidationError):
            SMSJob.model_validate({"phone": "+5511999990000", "message": "  "})

    def test_target_count_capped(self):
        phones = [f"+55119999900{i:02d}" for i in range(MAX_SMS_TARGETS + 1)]
        assert len(SMSJob.model_validate({"phone": phones[:-1], "message": "Oi"}).phone) == MAX_SMS_TARGETS
        with pytest.raises(ValidationError):
            SMSJob.model_validate({"phone": phones, "message": "Oi"})


class TestPushJob:

    def test_user_ids_normalized(self):
        job = PushJob.model_validate({"user_id": ["u1", "u2"], "title": "t", "body": "b"})
        assert job.user_id == ["u1", "u2"]

    def test_requires_title_and_body(self):
        with pytest.raises(ValidationError):
            PushJob.model_validate({"user_id": "u1", "title": "t"})


class TestWebhookJob:

    def test_defaults(self):
        job = WebhookJob.model_validate({"url": "https://example.com/hook"})
        assert job.method == "POST"
        assert job.headers is None
        assert job.payload is None
        assert job.timeout is None

    def test_method_upper_cased(self):
        assert WebhookJob.model_validate({"url": "https://example.com", "method": "delete"}).method == "DELETE"

    def test_unsupported_method_rejected(self):
        with pytest.raises(ValidationError):
            WebhookJob.model_validate({"url": "https://example.com", "method": "PATCH"})

    def test_url_must_be_http(self):
        with pytest.raises(ValidationError):
            WebhookJob.model_validate({"url": "ftp://example.com/hook"})

    def test_timeout_must_be_positive(self):
        with pytest.raises(ValidationError):
            WebhookJob.model_validate({"url": "https://example.com", "timeout": 0})

    def test_timeout_capped(self):
        job = WebhookJob.model_validate({"url": "https://example.com", "timeout": MAX_WEBHOOK_TIMEOUT_SECONDS})
        assert job.timeout == MAX_WEBHOOK_TIMEOUT_SECONDS
        with pytest.raises(ValidationError):
            WebhookJob.model_validate({"url": "https://example.com", "timeout": 3600})
