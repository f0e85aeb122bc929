"""Configuration package exports."""

from .loader import ConfigLocator, ConfigRepository
from .models import (
    CatalogProvider,
    GlobalConfig,
    ScheduleConfig,
    ScheduleType,
    SourceConfig,
    SourcePriority,
)

__all__ = [
    "CatalogProvider",
    "ConfigLocator",
    "ConfigRepository",
    "GlobalConfig",
    "ScheduleConfig",
    "ScheduleType",
    "SourceConfig",
    "SourcePriority",
]
