"""
Twilio SMS Gateway
==================
Sends SMS through the Twilio Messages REST API.
"""

from base64 import b64encode
from typing import Optional

import httpx
import structlog

from ..models import DeliveryMethod
from .base import BaseGateway, SendResult, error_details
from .templates import RenderedMessage

logger = structlog.get_logger(__name__)

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class TwilioSMSGateway(BaseGateway):
    """
    Twilio SMS gateway.

    Sends from ``messaging_service_sid`` when set, otherwise from
    ``from_number``. Twilio answers 201 for an accepted message.
    """

    name = "twilio"
    channel = DeliveryMethod.SMS

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str = "",
        messaging_service_sid: str = "",
        **kwargs,
    ):
        super().__init__(**kwargs)
        if not from_number and not messaging_service_sid:
            raise ValueError("Twilio needs a from_number or a messaging_service_sid")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.from_number = from_number
        self.messaging_service_sid = messaging_service_sid
        self.base_url = f"{TWILIO_API_BASE}/Accounts/{account_sid}"

    async def initialize(self) -> None:
        """Create HTTP client with auth."""
        auth = b64encode(f"{self.account_sid}:{self.auth_token}".encode()).decode()
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Basic {auth}"},
            timeout=self.timeout,
            transport=self.transport,
        )
        await super().initialize()

    async def send(self, recipient: str, message: RenderedMessage) -> SendResult:
        payload = {
            "To": recipient,
            "Body": message.text,
        }
        if self.messaging_service_sid:
            payload["MessagingServiceSid"] = self.messaging_service_sid
        else:
            payload["From"] = self.from_number

        response = await self._post(f"{self.base_url}/Messages.json", data=payload)

        if response.status_code == 201:
            data = response.json()
            return SendResult(
                success=True,
                provider_message_id=data.get("sid"),
                raw_response=data,
            )

        error_data = error_details(response)
        logger.warning(
            "Twilio rejected message",
            status_code=response.status_code,
            error_code=error_data.get("code"),
        )
        return SendResult(
            success=False,
            error_code=str(error_data.get("code", response.status_code)),
            error_message=error_data.get("message", "Unknown error"),
            raw_response=error_data,
        )

    async def health_check(self) -> bool:
        """Check Twilio API availability."""
        if not self._client:
            return False
        try:
            response = await self._client.get(f"{self.base_url}.json")
            return response.status_code == 200
        except httpx.HTTPError:
            return False
