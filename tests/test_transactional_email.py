"""
Transactional email tests - SendGrid delivery for queued email jobs.
All SendGrid calls are mocked.
"""
from unittest.mock import patch, MagicMock

from wilnara.services.transactional_email import SENDGRID_TIMEOUT_SECONDS, _send_via_sendgrid, send_email_job
from wilnara.schemas.job_payloads import EmailJob


def _mock_settings(api_key="SG_test_key"):
    settings = MagicMock()
    settings.sendgrid_api_key = api_key
    settings.sendgrid_from_email = "noreply@wilnaratrancas.com"
    settings.sendgrid_from_name = "Wilnara Tranças"
    settings.app_base_url = "https://wilnaratrancas.com"
    return settings


def _mock_response(status_code=202, message_id="msg_123"):
    response = MagicMock()
    response.status_code = status_code
    response.headers = {"X-Message-Id": message_id}
    return response


def _job(**overrides) -> EmailJob:
    data = {
        "to": ["ana@example.com"],
        "subject": "Bem-vinda",
        "template": "welcome",
        "variables": {"user_name": "Ana"},
    }
    data.update(overrides)
    return EmailJob.model_validate(data)


class TestSendViaSendgrid:

    @patch("wilnara.services.transactional_email.get_settings")
    async def test_no_api_key_returns_error(self, mock_settings):
        mock_settings.return_value = _mock_settings(api_key="")
        result = await _send_via_sendgrid(_job(), "<p>HTML</p>", "Text")
        assert result["status"] == "error"
        assert result["error"] == "SendGrid not configured"
        assert result["message_id"] is None

    @patch("wilnara.services.transactional_email.get_settings")
    async def test_successful_send(self, mock_settings):
        mock_settings.return_value = _mock_settings()

        with patch("sendgrid.SendGridAPIClient") as mock_sg_cls:
            mock_sg = MagicMock()
            mock_sg.send.return_value = _mock_response()
            mock_sg_cls.return_value = mock_sg

            result = await _send_via_sendgrid(_job(), "<p>HTML</p>", "Text")

        assert result == {"message_id": "msg_123", "status": "sent", "error": None}
        mock_sg_cls.assert_called_once_with(api_key="SG_test_key")
        assert mock_sg.client.timeout == SENDGRID_TIMEOUT_SECONDS

    @patch("wilnara.services.transactional_email.get_settings")
    async def test_all_recipients_and_copies_in_one_message(self, mock_settings):
        mock_settings.return_value = _mock_settings()
        job = _job(
            to=["ana@example.com", "bia@example.com"],
            cc=["gerente@example.com"],
            bcc=["arquivo@example.com"],
        )

        with patch("sendgrid.SendGridAPIClient") as mock_sg_cls:
            mock_sg = MagicMock()
            mock_sg.send.return_value = _mock_response()
            mock_sg_cls.return_value = mock_sg

            await _send_via_sendgrid(job, "<p>HTML</p>", "Text")

        mock_sg.send.assert_called_once()
        personalization = mock_sg.send.call_args.args[0].get()["personalizations"][0]
        assert [r["email"] for r in personalization["to"]] == ["ana@example.com", "bia@example.com"]
        assert [r["email"] for r in personalization["cc"]] == ["gerente@example.com"]
        assert [r["email"] for r in personalization["bcc"]] == ["arquivo@example.com"]

    @patch("wilnara.services.transactional_email.get_settings")
    async def test_rejected_status_returns_error(self, mock_settings):
        mock_settings.return_value = _mock_settings()

        with patch("sendgrid.SendGridAPIClient") as mock_sg_cls:
            mock_sg = MagicMock()
            mock_sg.send.return_value = _mock_response(status_code=400)
            mock_sg_cls.return_value = mock_sg

            result = await _send_via_sendgrid(_job(), "<p>HTML</p>", "Text")

        assert result["status"] == "error"
        assert "400" in result["error"]

    @patch("wilnara.services.transactional_email.get_settings")
    async def test_exception_returns_error(self, mock_settings):
        mock_settings.return_value = _mock_settings()

        with patch("sendgrid.SendGridAPIClient") as mock_sg_cls:
            mock_sg = MagicMock()
            mock_sg.send.side_effect = Exception("SendGrid down")
            mock_sg_cls.return_value = mock_sg

            result = await _send_via_sendgrid(_job(), "<p>HTML</p>", "Text")

        assert result["status"] == "error"
        assert result["error"] == "SendGrid down"


class TestSendEmailJob:

    @patch("wilnara.services.transactional_email._send_via_sendgrid")
    @patch("wilnara.services.transactional_email.get_settings")
    async def test_renders_template_and_sends(self, mock_settings, mock_send):
        mock_settings.return_value = _mock_settings()
        mock_send.return_value = {"message_id": "m1", "status": "sent", "error": None}

        ok = await send_email_job({
            "to": "ana@example.com",
            "subject": "Bem-vinda",
            "template": "welcome",
            "variables": {"user_name": "Ana"},
        })

        assert ok is True
        job, html, text = mock_send.call_args.args
        assert job.to == ["ana@example.com"]
        assert "Ana" in html
        assert "https://wilnaratrancas.com" in text

    @patch("wilnara.services.transactional_email._send_via_sendgrid")
    @patch("wilnara.services.transactional_email.get_settings")
    async def test_send_error_returns_false(self, mock_settings, mock_send):
        mock_settings.return_value = _mock_settings()
        mock_send.return_value = {"message_id": None, "status": "error", "error": "boom"}

        ok = await send_email_job({"to": "ana@example.com", "subject": "Oi", "template": "welcome"})
        assert ok is False

    @patch("wilnara.services.transactional_email._send_via_sendgrid")
    @patch("wilnara.services.transactional_email.get_settings")
    async def test_unknown_template_returns_false(self, mock_settings, mock_send):
        mock_settings.return_value = _mock_settings()

        ok = await send_email_job({"to": "ana@example.com", "subject": "Oi", "template": "nope"})

        assert ok is False
        mock_send.assert_not_called()

    @patch("wilnara.services.transactional_email._send_via_sendgrid")
    async def test_invalid_payload_returns_false(self, mock_send):
        ok = await send_email_job({"subject": "Oi", "template": "welcome"})
        assert ok is False
        mock_send.assert_not_called()
