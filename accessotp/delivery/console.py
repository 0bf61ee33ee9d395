"""
Logging Gateway
===============
Development gateway that records messages instead of sending them.
"""

import uuid
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional

import structlog

from ..logging_config import mask_recipient
from ..models import DeliveryMethod
from .base import BaseGateway, SendResult
from .templates import MessageKind, RenderedMessage

logger = structlog.get_logger(__name__)

OUTBOX_LIMIT = 100


@dataclass
class OutboxEntry:
    recipient: str
    message: RenderedMessage


class LoggingGateway(BaseGateway):
    """
    Keeps the most recent ``max_entries`` messages in ``outbox`` and logs
    each one.

    Message bodies are only logged when ``log_content`` is set, since they
    contain live codes.
    """

    name = "logging"

    def __init__(
        self,
        channel: DeliveryMethod,
        log_content: bool = False,
        max_entries: int = OUTBOX_LIMIT,
    ):
        super().__init__()
        self.channel = channel
        self.log_content = log_content
        self.outbox: Deque[OutboxEntry] = deque(maxlen=max_entries)

    async def send(self, recipient: str, message: RenderedMessage) -> SendResult:
        self.outbox.append(OutboxEntry(recipient=recipient, message=message))
        extra = {"text": message.text} if self.log_content else {}
        logger.info(
            "Message captured",
            channel=self.channel.value,
            kind=message.kind.value,
            recipient=mask_recipient(recipient),
            **extra,
        )
        return SendResult(success=True, provider_message_id=f"log-{uuid.uuid4().hex[:12]}")

    def last_code(self, recipient: Optional[str] = None) -> Optional[str]:
        """The most recent OTP code sent, optionally to one recipient."""
        for entry in reversed(self.outbox):
            if entry.message.kind != MessageKind.OTP_CODE:
                continue
            if recipient is None or entry.recipient == recipient:
                return entry.message.metadata.get("code")
        return None

    def messages(self, kind: Optional[MessageKind] = None) -> List[OutboxEntry]:
        return [e for e in self.outbox if kind is None or e.message.kind == kind]
