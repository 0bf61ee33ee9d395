"""
Delivery
========
Message templates, gateways and the dispatcher.
"""

from .base import BaseGateway, SendResult
from .console import LoggingGateway, OutboxEntry
from .dispatcher import DeliveryDispatcher
from .sendgrid import SendGridEmailGateway
from .templates import MessageKind, RenderedMessage, render
from .twilio import TwilioSMSGateway

__all__ = [
    "DeliveryDispatcher",
    "BaseGateway",
    "SendResult",
    "LoggingGateway",
    "OutboxEntry",
    "TwilioSMSGateway",
    "SendGridEmailGateway",
    "MessageKind",
    "RenderedMessage",
    "render",
]
