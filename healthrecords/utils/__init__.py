"""Utility modules for the health records service."""

from healthrecords.utils.config import settings, LatencyConfig
from healthrecords.utils.logging import (
    get_logger,
    get_latency_logger,
    get_compliance_logger,
    monitor_latency,
    RequestContext,
)
from healthrecords.utils.cache import CacheManager, cached

__all__ = [
    "settings",
    "LatencyConfig",
    "get_logger",
    "get_latency_logger",
    "get_compliance_logger",
    "monitor_latency",
    "RequestContext",
    "CacheManager",
    "cached",
]
