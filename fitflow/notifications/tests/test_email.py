"""Tests for email channel."""

import uuid
from unittest.mock import MagicMock, patch

import pytest

from fitflow.notifications.channels.email import (
    EmailTransport,
    markdown_to_html,
    markdown_to_plain_text,
    send_email,
)
from fitflow.notifications.errors import TransportError


class TestSendEmail:
    @patch("fitflow.notifications.channels.email._get_sendgrid_client")
    def test_sends_email_via_sendgrid(self, mock_get_client):
        mock_client = MagicMock()
        mock_get_client.return_value = mock_client
        mock_response = MagicMock()
        mock_response.status_code = 202
        mock_response.headers = {"X-Message-Id": "sg-abc"}
        mock_client.send.return_value = mock_response

        result = send_email(
            to_email="alice@example.com",
            subject="Test Subject",
            body="Test [link](https://example.com)",
        )

        assert result == "sg-abc"
        mock_client.send.assert_called_once()
        message = mock_client.send.call_args[0][0].get()
        assert message["subject"] == "Test Subject"
        contents = {c["type"]: c["value"] for c in message["content"]}
        assert contents["text/plain"] == "Test link (https://example.com)"
        assert '<a href="https://example.com">link</a>' in contents["text/html"]

    @patch("fitflow.notifications.channels.email._get_sendgrid_client")
    def test_missing_message_id_is_empty_string(self, mock_get_client):
        mock_response = MagicMock(status_code=202, headers={})
        mock_get_client.return_value.send.return_value = mock_response

        assert send_email("alice@example.com", "Test", "Test") == ""

    @patch("fitflow.notifications.channels.email._get_sendgrid_client")
    def test_raises_transport_error_on_failure(self, mock_get_client):
        error = Exception("API error")
        error.status_code = 503
        mock_get_client.return_value.send.side_effect = error

        with pytest.raises(TransportError) as exc_info:
            send_email(to_email="alice@example.com", subject="Test", body="Test")

        assert exc_info.value.status_code == 503

    @patch("fitflow.notifications.channels.email._get_sendgrid_client")
    def test_raises_on_unexpected_status(self, mock_get_client):
        mock_get_client.return_value.send.return_value = MagicMock(status_code=500, headers={})

        with pytest.raises(TransportError) as exc_info:
            send_email("alice@example.com", "Test", "Test")

        assert exc_info.value.status_code == 500

    def test_raises_when_not_configured(self):
        with patch.dict("os.environ", {}, clear=True):
            with patch("fitflow.notifications.channels.email.SENDGRID_API_KEY", None), patch(
                "fitflow.notifications.channels.email._client", None
            ):
                with pytest.raises(TransportError, match="not configured"):
                    send_email(to_email="alice@example.com", subject="Test", body="Test")


class TestEmailTransport:
    @pytest.mark.asyncio
    async def test_sends_job_in_thread(self):
        job = MagicMock(
            id=uuid.uuid4(), recipient="alice@example.com", subject="Hi", content="Body"
        )

        with patch(
            "fitflow.notifications.channels.email.send_email", return_value="sg-1"
        ) as mock_send:
            message_id = await EmailTransport().send(job)

        assert message_id == "sg-1"
        mock_send.assert_called_once_with("alice@example.com", "Hi", "Body")

    @pytest.mark.asyncio
    async def test_propagates_transport_error(self):
        job = MagicMock(id=uuid.uuid4(), recipient="a@example.com", subject="Hi", content="Body")

        with patch(
            "fitflow.notifications.channels.email.send_email",
            side_effect=TransportError("SendGrid returned 429", status_code=429),
        ):
            with pytest.raises(TransportError):
                await EmailTransport().send(job)


class TestMarkdownConversion:
    def test_markdown_to_html_converts_links(self):
        text = "Click [here](https://example.com) to continue."
        html = markdown_to_html(text)

        assert '<a href="https://example.com">here</a>' in html
        assert "[here]" not in html

    def test_markdown_to_html_preserves_newlines(self):
        html = markdown_to_html("Line 1\nLine 2")

        assert "<br>" in html

    def test_markdown_to_html_wraps_in_html_structure(self):
        html = markdown_to_html("Hello")

        assert "<!DOCTYPE html>" in html
        assert "<body" in html

    def test_markdown_to_plain_text_converts_multiple_links(self):
        text = "[Link 1](https://one.com) and [Link 2](https://two.com)"
        plain = markdown_to_plain_text(text)

        assert plain == "Link 1 (https://one.com) and Link 2 (https://two.com)"

    def test_markdown_to_plain_text_preserves_non_links(self):
        text = "No links here, just text."

        assert markdown_to_plain_text(text) == text
