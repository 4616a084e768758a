"""
Configuration for ALB Courier.
"""

from .settings import (
    CanarySettings,
    CourierSettings,
    DatadogSettings,
    DestinationSettings,
    MetricSettings,
    load_settings,
)

__all__ = [
    "CanarySettings",
    "CourierSettings",
    "DatadogSettings",
    "DestinationSettings",
    "MetricSettings",
    "load_settings",
]
