"""
Delivery Dispatcher
===================
Single entry point for sending any message kind over any channel.

``dispatch()`` never raises: gateway errors, rejections and missing
gateways all come back as ``False`` and are logged with the channel, the
message kind, the masked recipient and the caller's correlation id.
"""

from typing import Dict, Optional

import structlog

from ..config import DeliveryConfig
from ..logging_config import mask_recipient
from ..metrics import ServiceMetrics
from ..models import DeliveryMethod
from .base import BaseGateway
from .console import LoggingGateway
from .sendgrid import SendGridEmailGateway
from .templates import MessageKind, render
from .twilio import TwilioSMSGateway

logger = structlog.get_logger(__name__)


class DeliveryDispatcher:
    """Routes rendered messages to the gateway registered for each channel."""

    def __init__(
        self,
        gateways: Dict[DeliveryMethod, BaseGateway],
        product_name: str = "AccessOTP",
        metrics: Optional[ServiceMetrics] = None,
    ):
        self.gateways = dict(gateways)
        self.product_name = product_name
        self.metrics = metrics

    @classmethod
    def from_config(
        cls,
        config: DeliveryConfig,
        log_content: bool = False,
        metrics: Optional[ServiceMetrics] = None,
        fallback_to_logging: bool = False,
    ) -> "DeliveryDispatcher":
        """
        Build gateways from credentials.

        Channels without credentials get a ``LoggingGateway`` when
        ``fallback_to_logging`` is set and no gateway otherwise, so sends on
        them fail instead of reporting a delivery that never happened.
        """
        gateways: Dict[DeliveryMethod, BaseGateway] = {}

        if config.sms_configured:
            gateways[DeliveryMethod.SMS] = TwilioSMSGateway(
                account_sid=config.twilio_account_sid,
                auth_token=config.twilio_auth_token,
                from_number=config.twilio_from_number,
                messaging_service_sid=config.twilio_messaging_service_sid,
                timeout=config.timeout,
            )
        elif fallback_to_logging:
            logger.warning("Twilio not configured, SMS messages will only be logged")
            gateways[DeliveryMethod.SMS] = LoggingGateway(DeliveryMethod.SMS, log_content=log_content)
        else:
            logger.error("Twilio not configured, SMS delivery disabled")

        if config.email_configured:
            gateways[DeliveryMethod.EMAIL] = SendGridEmailGateway(
                api_key=config.sendgrid_api_key,
                from_email=config.email_from,
                from_name=config.email_from_name,
                timeout=config.timeout,
            )
        elif fallback_to_logging:
            logger.warning("SendGrid not configured, email messages will only be logged")
            gateways[DeliveryMethod.EMAIL] = LoggingGateway(DeliveryMethod.EMAIL, log_content=log_content)
        else:
            logger.error("SendGrid not configured, email delivery disabled")

        return cls(gateways, product_name=config.product_name, metrics=metrics)

    async def initialize(self) -> None:
        for gateway in self.gateways.values():
            await gateway.initialize()

    async def close(self) -> None:
        for gateway in self.gateways.values():
            await gateway.close()

    async def dispatch(
        self,
        method: DeliveryMethod,
        kind: MessageKind,
        recipient: Optional[str],
        name: str = "",
        correlation_id: Optional[str] = None,
        **context,
    ) -> bool:
        """
        Render ``kind`` for ``method`` and hand it to the channel's gateway.

        Returns:
            True if the gateway accepted the message
        """
        log = logger.bind(
            channel=method.value,
            kind=kind.value,
            recipient=mask_recipient(recipient or ""),
            correlation_id=correlation_id,
        )

        gateway = self.gateways.get(method)
        if gateway is None:
            log.error("No gateway registered for channel")
            return self._finish(method, kind, False)
        if not recipient:
            log.warning("No recipient for channel")
            return self._finish(method, kind, False)

        try:
            message = render(method, kind, name=name, product=self.product_name, **context)
            result = await gateway.send(recipient, message)
        except Exception:
            log.exception("Delivery failed", gateway=gateway.name)
            return self._finish(method, kind, False)

        if not result.success:
            log.warning(
                "Delivery rejected",
                gateway=gateway.name,
                error_code=result.error_code,
                error=result.error_message,
            )
            return self._finish(method, kind, False)

        log.info("Message delivered", gateway=gateway.name, provider_message_id=result.provider_message_id)
        return self._finish(method, kind, True)

    async def send_code(
        self,
        method: DeliveryMethod,
        recipient: str,
        code: str,
        name: str = "",
        expiry_minutes: int = 5,
        correlation_id: Optional[str] = None,
    ) -> bool:
        return await self.dispatch(
            method,
            MessageKind.OTP_CODE,
            recipient,
            name=name,
            correlation_id=correlation_id,
            code=code,
            expiry_minutes=expiry_minutes,
        )

    async def send_welcome(self, method: DeliveryMethod, recipient: str, name: str = "") -> bool:
        return await self.dispatch(method, MessageKind.WELCOME, recipient, name=name)

    async def send_security_alert(
        self,
        method: DeliveryMethod,
        recipient: str,
        name: str = "",
        alert_type: str = "Suspicious activity",
        correlation_id: Optional[str] = None,
    ) -> bool:
        return await self.dispatch(
            method,
            MessageKind.SECURITY_ALERT,
            recipient,
            name=name,
            correlation_id=correlation_id,
            alert_type=alert_type,
        )

    async def health(self) -> Dict[str, bool]:
        status = {method.value: False for method in DeliveryMethod}
        for method, gateway in self.gateways.items():
            try:
                status[method.value] = await gateway.health_check()
            except Exception:
                logger.exception("Gateway health check failed", gateway=gateway.name)
                status[method.value] = False
        return status

    def _finish(self, method: DeliveryMethod, kind: MessageKind, success: bool) -> bool:
        if self.metrics is not None:
            self.metrics.record_delivery(method.value, kind.value, success)
        return success
