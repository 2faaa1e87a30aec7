# mail_client.py
"""
Client for the mail-polling service that reports codes a platform e-mailed
to one of our accounts.
"""
import logging
from typing import Any, Dict

import requests

logger = logging.getLogger(__name__)


class MailLookupError(Exception):
    pass


class MailLookupClient:
    def __init__(self, base_url: str, api_key: str = "", timeout: float = 15):
        self.base_url = base_url.rstrip('/')
        self.api_key = api_key
        self.timeout = timeout

    def lookup(self, email: str, platform: str) -> Dict[str, Any]:
        """Ask for the latest code delivered to ``email`` by ``platform``.

        Returns the decoded body, e.g. ``{"status": "success", "code": "123456"}``
        or ``{"status": "not_found"}``.
        """
        if not self.base_url:
            raise MailLookupError("mail lookup endpoint is not configured")

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["X-API-KEY"] = self.api_key

        try:
            response = requests.post(
                self.base_url,
                json={"email": email, "platform": platform},
                headers=headers,
                timeout=self.timeout,
            )
            response.raise_for_status()
            data = response.json()
        except (requests.RequestException, ValueError) as e:
            logger.error(f"Mail lookup for {platform} failed: {str(e)}")
            raise MailLookupError(str(e)) from e

        if not isinstance(data, dict):
            raise MailLookupError("unexpected response body")
        return data
