"""
HTTP API
========
FastAPI surface for the OTP service.
"""

from .app import create_app

__all__ = ["create_app"]
