"""Passkey relying-party server exposing the Flask app factory."""

from .app import create_app
from .config import RPSettings

__all__ = ["create_app", "RPSettings"]
