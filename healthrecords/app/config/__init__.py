"""Configuration modules for the health records API."""

from healthrecords.app.config.share_defaults import get_share_defaults, ShareDefaults

__all__ = [
    "get_share_defaults",
    "ShareDefaults",
]
