"""Glowmarkt client package.

A client for the Glowmarkt smart meter API with a command-line tool that
lists devices and resources, prints readings, and can forward readings to
InfluxDB.
"""

__version__ = "0.1.0"

from glowmarkt.client import (
    APPLICATION_ID,
    BASE_URL,
    GlowmarktApi,
    GlowmarktAuthError,
    GlowmarktClientError,
    GlowmarktEndpoint,
    GlowmarktError,
    GlowmarktNetworkError,
    GlowmarktNotFoundError,
    GlowmarktResponseError,
    GlowmarktServerError,
)
from glowmarkt.models import Device, DeviceType, Reading, Resource, ResourceType, VirtualEntity
from glowmarkt.periods import ReadingPeriod, align_to_period, split_periods

__all__ = [
    "APPLICATION_ID",
    "BASE_URL",
    "Device",
    "DeviceType",
    "GlowmarktApi",
    "GlowmarktAuthError",
    "GlowmarktClientError",
    "GlowmarktEndpoint",
    "GlowmarktError",
    "GlowmarktNetworkError",
    "GlowmarktNotFoundError",
    "GlowmarktResponseError",
    "GlowmarktServerError",
    "Reading",
    "ReadingPeriod",
    "Resource",
    "ResourceType",
    "VirtualEntity",
    "align_to_period",
    "split_periods",
]
