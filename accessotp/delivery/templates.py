"""
Message Templates
=================
Renders the OTP code, welcome and security-alert messages for SMS and email.
"""

from dataclasses import dataclass, field
from enum import Enum
from html import escape
from typing import Any, Dict, Optional

from ..models import DeliveryMethod


class MessageKind(str, Enum):
    """Kinds of message the dispatcher can send."""
    OTP_CODE = "OTPCode"
    WELCOME = "Welcome"
    SECURITY_ALERT = "SecurityAlert"


@dataclass
class RenderedMessage:
    """A message ready for a gateway. ``subject`` and ``html`` are email-only."""
    kind: MessageKind
    text: str
    subject: Optional[str] = None
    html: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


_HTML_SHELL = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; background-color: #f4f4f4; padding: 20px;">
<div style="max-width: 600px; margin: 0 auto; background-color: #ffffff; padding: 30px; border-radius: 10px;">
{body}
<p style="text-align: center; color: #666666; font-size: 14px;">&copy; {product}. All rights reserved.</p>
</div>
</body>
</html>"""


def _html(title: str, body: str, product: str) -> str:
    return _HTML_SHELL.format(title=escape(title), body=body, product=escape(product))


def _render_otp_code(method, name, product, context) -> RenderedMessage:
    code = context["code"]
    minutes = context.get("expiry_minutes", 5)

    if method == DeliveryMethod.SMS:
        return RenderedMessage(
            kind=MessageKind.OTP_CODE,
            text=f"Hi {name}, your {product} code is: {code}. Valid for {minutes} minutes. Do not share this code.",
            metadata={"code": code},
        )

    subject = f"Your {product} Code"
    text = (
        f"Hi {name},\n\n"
        f"Here's your one-time password to access your account:\n\n{code}\n\n"
        f"This code is valid for {minutes} minutes.\n\n"
        "If you didn't request this code, please ignore this email or contact support "
        "if you have concerns."
    )
    body = (
        f"<p>Hi {escape(name)},</p>"
        "<p>Here's your one-time password to access your account:</p>"
        '<div style="font-size: 32px; font-weight: bold; text-align: center; letter-spacing: 5px; '
        f'color: #007bff; padding: 20px;">{escape(code)}</div>'
        f"<p><strong>This code is valid for {minutes} minutes.</strong></p>"
        "<p>If you didn't request this code, please ignore this email.</p>"
    )
    return RenderedMessage(
        kind=MessageKind.OTP_CODE,
        text=text,
        subject=subject,
        html=_html(subject, body, product),
        metadata={"code": code},
    )


def _render_welcome(method, name, product, context) -> RenderedMessage:
    if method == DeliveryMethod.SMS:
        return RenderedMessage(
            kind=MessageKind.WELCOME,
            text=(
                f"Welcome to {product}, {name}! Your account has been successfully created. "
                "You can now log in using OTP authentication."
            ),
        )

    subject = f"Welcome to {product}!"
    text = (
        f"Hi {name}!\n\n"
        f"Your {product} account has been successfully created.\n\n"
        "You can now log in using secure, passwordless OTP authentication."
    )
    body = (
        f"<h2>Hi {escape(name)}!</h2>"
        f"<p>Your {escape(product)} account has been successfully created.</p>"
        "<p>You can now log in using secure, passwordless OTP authentication.</p>"
    )
    return RenderedMessage(
        kind=MessageKind.WELCOME,
        text=text,
        subject=subject,
        html=_html(subject, body, product),
    )


def _render_security_alert(method, name, product, context) -> RenderedMessage:
    alert = context.get("alert_type", "Suspicious activity")

    if method == DeliveryMethod.SMS:
        return RenderedMessage(
            kind=MessageKind.SECURITY_ALERT,
            text=(
                f"Security Alert: {alert} detected for your {product} account, {name}. "
                "If this wasn't you, please contact support immediately."
            ),
            metadata={"alert_type": alert},
        )

    subject = f"Security Alert - {alert}"
    text = (
        f"Hi {name},\n\n"
        f"Security Alert: {alert} has been detected for your {product} account.\n\n"
        "If this activity wasn't initiated by you, please contact our support team immediately."
    )
    body = (
        f"<p>Hi {escape(name)},</p>"
        f"<p><strong>Security Alert: {escape(alert)}</strong> has been detected for your "
        f"{escape(product)} account.</p>"
        "<p>If this activity wasn't initiated by you, please contact our support team immediately.</p>"
    )
    return RenderedMessage(
        kind=MessageKind.SECURITY_ALERT,
        text=text,
        subject=subject,
        html=_html(subject, body, product),
        metadata={"alert_type": alert},
    )


_RENDERERS = {
    MessageKind.OTP_CODE: _render_otp_code,
    MessageKind.WELCOME: _render_welcome,
    MessageKind.SECURITY_ALERT: _render_security_alert,
}


def render(
    method: DeliveryMethod,
    kind: MessageKind,
    name: str = "",
    product: str = "AccessOTP",
    **context: Any,
) -> RenderedMessage:
    """
    Render ``kind`` for ``method``.

    Context keys: ``code`` and ``expiry_minutes`` for OTP codes,
    ``alert_type`` for security alerts.
    """
    return _RENDERERS[kind](method, name or "there", product, context)
