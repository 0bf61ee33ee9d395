"""
SendGrid Email Gateway
======================
Sends email through the SendGrid v3 Mail Send API.
"""

from typing import Any, Dict, List

import httpx
import structlog

from ..models import DeliveryMethod
from .base import BaseGateway, SendResult, error_details
from .templates import RenderedMessage

logger = structlog.get_logger(__name__)

SENDGRID_MAIL_SEND_URL = "https://api.sendgrid.com/v3/mail/send"


class SendGridEmailGateway(BaseGateway):
    """SendGrid gateway. The API answers 202 for an accepted message."""

    name = "sendgrid"
    channel = DeliveryMethod.EMAIL

    def __init__(self, api_key: str, from_email: str, from_name: str = "", **kwargs):
        super().__init__(**kwargs)
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name

    async def initialize(self) -> None:
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Bearer {self.api_key}"},
            timeout=self.timeout,
            transport=self.transport,
        )
        await super().initialize()

    def build_payload(self, recipient: str, message: RenderedMessage) -> Dict[str, Any]:
        content: List[Dict[str, str]] = [{"type": "text/plain", "value": message.text}]
        if message.html:
            content.append({"type": "text/html", "value": message.html})

        sender = {"email": self.from_email}
        if self.from_name:
            sender["name"] = self.from_name

        return {
            "personalizations": [{"to": [{"email": recipient}]}],
            "from": sender,
            "subject": message.subject or message.kind.value,
            "content": content,
        }

    async def send(self, recipient: str, message: RenderedMessage) -> SendResult:
        response = await self._post(
            SENDGRID_MAIL_SEND_URL,
            json=self.build_payload(recipient, message),
        )

        if response.status_code == 202:
            return SendResult(
                success=True,
                provider_message_id=response.headers.get("X-Message-Id"),
            )

        error_data = error_details(response)
        errors = error_data.get("errors") or [{}]
        first = errors[0] if isinstance(errors, list) and errors else {}
        logger.warning("SendGrid rejected message", status_code=response.status_code)
        return SendResult(
            success=False,
            error_code=str(response.status_code),
            error_message=first.get("message", "Unknown error") if isinstance(first, dict) else str(first),
            raw_response=error_data,
        )
