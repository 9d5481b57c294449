"""Web interface for the StudyHub presence service."""

from .server import create_app

__all__ = ["create_app"]
