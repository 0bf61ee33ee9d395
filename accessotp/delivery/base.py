"""
Gateway Base
============
Base class for SMS and email gateway integrations.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
import structlog
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..models import DeliveryMethod
from .templates import RenderedMessage

logger = structlog.get_logger(__name__)


@dataclass
class SendResult:
    """Result of a gateway send."""
    success: bool
    provider_message_id: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    raw_response: Optional[Dict[str, Any]] = None


def _log_retry(retry_state) -> None:
    logger.warning(
        "Gateway request failed, retrying",
        attempt=retry_state.attempt_number,
        error=str(retry_state.outcome.exception()),
    )


class BaseGateway(ABC):
    """
    Abstract base for delivery gateways.

    HTTP gateways create their ``httpx.AsyncClient`` in ``initialize()`` and
    send through ``_post()``, which retries transport errors.
    """

    name: str = "base"
    channel: DeliveryMethod = DeliveryMethod.SMS

    def __init__(
        self,
        timeout: float = 10.0,
        max_attempts: int = 3,
        retry_wait=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.max_attempts = max_attempts
        self.retry_wait = retry_wait or wait_exponential(multiplier=0.5, min=0.5, max=4)
        self.transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._is_initialized = False

    async def initialize(self) -> None:
        """Create HTTP clients and the like."""
        self._is_initialized = True
        logger.info("Gateway initialized", gateway=self.name, channel=self.channel.value)

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None
        self._is_initialized = False
        logger.info("Gateway closed", gateway=self.name)

    @property
    def is_initialized(self) -> bool:
        return self._is_initialized

    @abstractmethod
    async def send(self, recipient: str, message: RenderedMessage) -> SendResult:
        """Send ``message`` to ``recipient``."""

    async def health_check(self) -> bool:
        return self._is_initialized

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if not self._client:
            raise RuntimeError(f"Gateway {self.name} not initialized")

        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(httpx.TransportError),
            stop=stop_after_attempt(self.max_attempts),
            wait=self.retry_wait,
            before_sleep=_log_retry,
            reraise=True,
        ):
            with attempt:
                response = await self._client.post(url, **kwargs)
        return response


def error_details(response: httpx.Response) -> Dict[str, Any]:
    """Best-effort JSON body of an error response."""
    try:
        data = response.json()
    except ValueError:
        return {"message": response.text[:200]}
    return data if isinstance(data, dict) else {"errors": data}
