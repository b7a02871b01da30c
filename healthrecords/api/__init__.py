"""API modules for the health records service."""

from healthrecords.api.main import app

__all__ = [
    "app",
]
