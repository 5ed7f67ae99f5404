"""Delivery of one-time codes to the account holder."""

from typing import Optional, Protocol

import httpx

from ..config.settings import (
    EMAIL_API_URL,
    EMAIL_API_KEY,
    EMAIL_SENDER_ADDRESS,
    EMAIL_SENDER_NAME,
    EMAIL_API_TIMEOUT_SECONDS,
)
from ..core.logging import SecurityLogger, get_logger

SUBJECT = "Login confirmation - security code"
BODY_TEMPLATE = (
    "<p>Use the following code to finish signing in:</p>"
    "<h2>{code}</h2>"
    "<p>The code expires in 15 minutes. If you did not try to sign in, ignore this message.</p>"
)


class CodeDelivery(Protocol):
    def send_one_time_code(self, destination: str, code: str) -> None: ...


class HttpEmailCodeDelivery:
    """Send codes through an HTTP e-mail API (JSON POST with an API key header)."""

    def __init__(
        self,
        api_url: str = EMAIL_API_URL,
        api_key: str = EMAIL_API_KEY,
        sender_address: str = EMAIL_SENDER_ADDRESS,
        sender_name: str = EMAIL_SENDER_NAME,
        timeout: float = EMAIL_API_TIMEOUT_SECONDS,
        client: Optional[httpx.Client] = None,
        logger: Optional[SecurityLogger] = None
    ):
        self.api_url = api_url
        self.api_key = api_key
        self.sender_address = sender_address
        self.sender_name = sender_name
        self.client = client or httpx.Client(timeout=timeout)
        self.logger = logger or get_logger(__name__)

    def send_one_time_code(self, destination: str, code: str) -> None:
        if not self.api_url:
            raise ValueError("EMAIL_API_URL is not configured")

        response = self.client.post(
            self.api_url,
            json={
                "sender": {"name": self.sender_name, "email": self.sender_address},
                "to": [{"email": destination}],
                "subject": SUBJECT,
                "htmlContent": BODY_TEMPLATE.format(code=code),
            },
            headers={
                "api-key": self.api_key,
                "Content-Type": "application/json",
                "Accept": "application/json"
            }
        )
        response.raise_for_status()
        self.logger.info("One-time code e-mail accepted by provider", extra={"status_code": response.status_code})
