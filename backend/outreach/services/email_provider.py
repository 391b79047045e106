"""
Resend REST client.
"""
import uuid
import logging
from dataclasses import dataclass
from typing import Optional

import requests

from outreach.core.config import settings
from outreach.core.exceptions import EmailProviderException, ServiceNotConfiguredException

logger = logging.getLogger(__name__)


@dataclass
class SentEmail:
    id: Optional[str]


class ResendClient:
    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: Optional[int] = None):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.base_url = (base_url or settings.RESEND_API_URL).rstrip("/")
        self.timeout = timeout or settings.EMAIL_PROVIDER_TIMEOUT
        self.session = requests.Session()

    def is_configured(self) -> bool:
        return bool(self.api_key)

    def send_email(self, from_: str, to: str, subject: str, html: str, reply_to: Optional[str] = None) -> SentEmail:
        if not self.is_configured():
            raise ServiceNotConfiguredException("Resend API key not configured. Set RESEND_API_KEY.")

        payload = {
            "from": from_,
            "to": [to],
            "subject": subject,
            "html": html,
            "headers": {"X-Entity-Ref-ID": str(uuid.uuid4())},
        }
        if reply_to:
            payload["reply_to"] = reply_to

        try:
            response = self.session.post(
                f"{self.base_url}/emails",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Resend request to {to} failed: {e}")
            raise EmailProviderException(f"Email provider unreachable: {e}") from e

        if response.status_code >= 400:
            try:
                message = response.json().get("message") or response.text
            except ValueError:
                message = response.text
            logger.error(f"Resend rejected email to {to}: {response.status_code} {message}")
            raise EmailProviderException(
                f"Email provider error: {message}",
                details={"status_code": response.status_code},
            )

        # 2xx means accepted, readable body or not
        try:
            data = response.json() if response.content else {}
        except ValueError:
            logger.warning(f"Resend accepted email to {to} with an unreadable body: {response.text[:200]}")
            data = {}
        return SentEmail(id=data.get("id"))


_client: Optional[ResendClient] = None


def get_email_client() -> ResendClient:
    global _client
    if _client is None:
        _client = ResendClient()
    return _client
