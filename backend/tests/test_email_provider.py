"""
Tests for outreach.services.email_provider.ResendClient with a mocked
requests session.
"""
from unittest.mock import MagicMock

import pytest
import requests

from outreach.core.exceptions import EmailProviderException, ServiceNotConfiguredException
from outreach.services.email_provider import ResendClient


def make_client(status_code=200, payload=None, raises=None):
    client = ResendClient(api_key="re_test", base_url="https://resend.test/")
    client.session = MagicMock()
    if raises:
        client.session.post.side_effect = raises
    else:
        resp = MagicMock(status_code=status_code, content=b"{}", text="error text")
        resp.json.return_value = payload or {}
        client.session.post.return_value = resp
    return client


class TestResendClient:

    def test_send_posts_payload(self):
        client = make_client(payload={"id": "re_msg_1"})

        sent = client.send_email("Dana <dana@example.com>", "ana@example.com", "Hi", "<p>Hi</p>", reply_to="dana@example.com")

        assert sent.id == "re_msg_1"
        url = client.session.post.call_args.args[0]
        kwargs = client.session.post.call_args.kwargs
        assert url == "https://resend.test/emails"
        assert kwargs["json"]["to"] == ["ana@example.com"]
        assert kwargs["json"]["reply_to"] == "dana@example.com"
        assert "X-Entity-Ref-ID" in kwargs["json"]["headers"]
        assert kwargs["headers"]["Authorization"] == "Bearer re_test"

    def test_rejection_raises_with_message(self):
        client = make_client(status_code=422, payload={"message": "Invalid `to` field"})

        with pytest.raises(EmailProviderException) as exc_info:
            client.send_email("a@example.com", "bad", "Hi", "<p>Hi</p>")

        assert "Invalid `to` field" in exc_info.value.message
        assert exc_info.value.details == {"status_code": 422}

    def test_network_error(self):
        client = make_client(raises=requests.exceptions.Timeout("timed out"))
        with pytest.raises(EmailProviderException):
            client.send_email("a@example.com", "b@example.com", "Hi", "<p>Hi</p>")

    def test_not_configured(self):
        client = ResendClient(api_key="")
        assert client.is_configured() is False
        with pytest.raises(ServiceNotConfiguredException):
            client.send_email("a@example.com", "b@example.com", "Hi", "<p>Hi</p>")

    def test_accepted_with_unreadable_body(self):
        client = make_client()
        client.session.post.return_value.json.side_effect = ValueError("Expecting value")

        sent = client.send_email("a@example.com", "b@example.com", "Hi", "<p>Hi</p>")

        assert sent.id is None
