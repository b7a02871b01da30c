"""App modules for the health records service."""

from healthrecords.app import config
from healthrecords.app import models
from healthrecords.app import routers
from healthrecords.app import services

__all__ = [
    "config",
    "models",
    "routers",
    "services",
]
