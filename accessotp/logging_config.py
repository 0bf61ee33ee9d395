"""
Structured Logging
==================
structlog configuration and request-scoped logging context.

Usage:
    from accessotp.logging_config import setup_logging, RequestContextMiddleware

    setup_logging(service_name="accessotp", json_output=True)
    app.add_middleware(RequestContextMiddleware)
"""

import logging
import sys
import time
import uuid

import structlog

REQUEST_ID_HEADER = "x-request-id"


def setup_logging(
    service_name: str,
    level: str = "INFO",
    json_output: bool = True,
) -> None:
    """
    Configure structlog (and the stdlib root logger it writes through).

    Args:
        service_name: Name stamped on every log line
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_output: JSON lines for production, coloured console otherwise
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service(service_name),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )

    structlog.get_logger(__name__).info(
        "Logging configured", service=service_name, level=level.upper()
    )


def _add_service(service_name: str):
    def processor(logger, method_name, event_dict):
        event_dict.setdefault("service", service_name)
        return event_dict
    return processor


def mask_recipient(recipient: str) -> str:
    """
    Mask an email address or phone number for logs.

    ``alice@example.com`` -> ``al***@example.com``, ``+14155551234`` -> ``+1415***34``
    """
    if not recipient:
        return "****"
    if "@" in recipient:
        local, _, domain = recipient.partition("@")
        return f"{local[:2]}***@{domain}"
    if len(recipient) > 6:
        return f"{recipient[:5]}***{recipient[-2:]}"
    return "****"


class RequestContextMiddleware:
    """
    ASGI middleware binding a request id to every log line of a request.

    The id is taken from ``X-Request-ID`` when the caller supplies one and
    echoed back on the response.
    """

    def __init__(self, app):
        self.app = app
        self.logger = structlog.get_logger("accessotp.http")

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = dict(scope.get("headers", []))
        request_id = headers.get(REQUEST_ID_HEADER.encode(), b"").decode()[:64] or uuid.uuid4().hex[:16]
        method = scope.get("method", "")
        path = scope.get("path", "")

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=method,
            path=path,
        )

        start_time = time.perf_counter()
        status_code = 500

        async def send_wrapper(message):
            nonlocal status_code
            if message["type"] == "http.response.start":
                status_code = message.get("status", 500)
                message.setdefault("headers", [])
                message["headers"] = list(message["headers"]) + [
                    (REQUEST_ID_HEADER.encode(), request_id.encode())
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        finally:
            duration_ms = round((time.perf_counter() - start_time) * 1000, 2)
            if status_code >= 500:
                log = self.logger.error
            elif status_code >= 400:
                log = self.logger.warning
            else:
                log = self.logger.info
            log("Request completed", status_code=status_code, duration_ms=duration_ms)
            structlog.contextvars.clear_contextvars()
