"""
Thin requests-based client for the campaign API.
"""
import logging
from typing import Any, Dict, List, Optional

import requests
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_fixed

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000/api/v1"


class OutreachAPIError(Exception):
    """Non-2xx response. ``error`` is the server's error message."""

    def __init__(self, status_code: int, error: str, payload: Optional[Dict[str, Any]] = None):
        self.status_code = status_code
        self.error = error
        self.payload = payload or {}
        super().__init__(f"{status_code}: {error}")


def _is_not_found(exc: BaseException) -> bool:
    return isinstance(exc, OutreachAPIError) and exc.status_code == 404


class OutreachClient:
    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        token: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            logger.error(f"{method} {url} failed: {e}")
            raise OutreachAPIError(0, str(e)) from e

        try:
            data = response.json() if response.content else {}
        except ValueError:
            data = {"error": response.text}

        if response.status_code >= 400:
            error = response.reason
            if isinstance(data, dict):
                error = data.get("error") or data.get("detail") or error
            logger.warning(f"{method} {url} -> {response.status_code}: {error}")
            raise OutreachAPIError(response.status_code, str(error), data if isinstance(data, dict) else None)
        return data

    def login(self, username: str, password: str) -> str:
        data = self._request(
            "POST", "/login/access-token",
            data={"username": username, "password": password},
        )
        token = data["access_token"]
        self.session.headers["Authorization"] = f"Bearer {token}"
        return token

    # ---------- campaigns ----------

    # a campaign that was just created can briefly 404 behind a replica
    @retry(
        retry=retry_if_exception(_is_not_found),
        stop=stop_after_attempt(3),
        wait=wait_fixed(1),
        reraise=True,
    )
    def get_campaign(self, campaign_id: int) -> Dict[str, Any]:
        return self._request("GET", f"/campaigns/{campaign_id}")

    def start_campaign(self, campaign_id: int, schedule: bool = True) -> Dict[str, Any]:
        return self._request("POST", f"/campaigns/{campaign_id}/start", json={"schedule": schedule})

    def pause_campaign(self, campaign_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/campaigns/{campaign_id}/pause")

    def send_next(self, campaign_id: int) -> Dict[str, Any]:
        return self._request("POST", f"/campaigns/{campaign_id}/send")

    # ---------- recipients ----------

    def list_recipients(self, campaign_id: int, status: Optional[str] = None) -> List[Dict[str, Any]]:
        params = {"status": status} if status else None
        return self._request("GET", f"/campaigns/{campaign_id}/recipients/", params=params)

    def update_recipient(self, campaign_id: int, recipient_id: int, **fields) -> Dict[str, Any]:
        return self._request("PATCH", f"/campaigns/{campaign_id}/recipients/{recipient_id}", json=fields)

    def delete_recipient(self, campaign_id: int, recipient_id: int) -> Dict[str, Any]:
        return self._request("DELETE", f"/campaigns/{campaign_id}/recipients/{recipient_id}")
