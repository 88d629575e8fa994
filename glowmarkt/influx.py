"""InfluxDB output module.

This module handles:
- Building InfluxDB measurements for readings, tagged with device and resource details
- Rendering measurements as line protocol for the CLI
- Pushing measurements to InfluxDB with their actual timestamps
"""

import logging
import math
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from influxdb_client import InfluxDBClient, Point, WritePrecision
from influxdb_client.client.write_api import SYNCHRONOUS

from glowmarkt.models import Device, Reading, Resource
from glowmarkt.periods import to_utc

# Configure module logger
logger = logging.getLogger(__name__)

READING_MEASUREMENT = "reading"

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def to_epoch_ns(timestamp: datetime) -> int:
    """Convert a datetime to integer nanoseconds since the unix epoch."""
    delta = to_utc(timestamp) - _EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1_000_000_000 + delta.microseconds * 1_000


class Measurement:
    """A single InfluxDB point.

    Attributes:
        id: Measurement name
        timestamp: Time of the point (UTC nanoseconds when written)
        tags: Tag set, sorted by key when rendered
        fields: Field set, at least one is required to render
    """

    def __init__(self, id: str, timestamp: datetime, tags: Optional[Dict[str, str]] = None):
        self.id = id
        self.timestamp = timestamp
        self.tags: Dict[str, str] = dict(tags or {})
        self.fields: Dict[str, float] = {}

    def add_field(self, key: str, value: float) -> None:
        if not math.isfinite(value):
            raise ValueError(f"Field {key} must be finite, got {value}")
        self.fields[key] = float(value)

    def to_point(self) -> Point:
        point = Point(self.id)
        for key, value in sorted(self.tags.items()):
            point.tag(key, value)
        for key, value in sorted(self.fields.items()):
            point.field(key, value)
        return point.time(to_epoch_ns(self.timestamp), WritePrecision.NS)

    def to_line_protocol(self) -> str:
        """Render as a line protocol record.

        Raises:
            ValueError: If the measurement has no fields
        """
        if not self.fields:
            raise ValueError(f"Measurement {self.id} has no fields")
        return self.to_point().to_line_protocol()

    def __str__(self) -> str:
        return self.to_line_protocol()

    def __repr__(self) -> str:
        return f"Measurement(id={self.id!r}, timestamp={self.timestamp!r}, tags={self.tags!r}, fields={self.fields!r})"


def device_tags(device: Device) -> Dict[str, str]:
    tags = {
        "device-id": device.id,
        "device-active": str(device.active).lower(),
        "hardware-id": device.hardware_id,
    }
    if device.description:
        tags["device"] = device.description
    tags.update(device.hardware_ids)
    return tags


def resource_tags(resource: Resource) -> Dict[str, str]:
    tags = {
        "resource-id": resource.id,
        "resource": resource.name,
        "resource-active": str(resource.active).lower(),
    }
    if resource.classifier:
        tags["classifier"] = resource.classifier
        tags["class"] = resource.classifier.split(".")[0]
    if resource.base_unit:
        tags["unit"] = resource.base_unit
    return tags


def field_for_classifier(classifier: Optional[str]) -> str:
    """Pick the field name for a resource's readings.

    Example:
        >>> field_for_classifier("electricity.consumption.cost")
        'cost'
        >>> field_for_classifier(None)
        'value'
    """
    if classifier:
        return classifier.split(".")[-1]
    return "value"


def reading_measurements(
    readings: Iterable[Reading],
    resource: Resource,
    device: Optional[Device] = None,
) -> List[Measurement]:
    """Build one measurement per reading of a resource."""
    tags = resource_tags(resource)
    if device is not None:
        tags.update(device_tags(device))

    field_name = field_for_classifier(resource.classifier)
    measurements = []
    for reading in readings:
        measurement = Measurement(READING_MEASUREMENT, reading.start, tags)
        measurement.add_field(field_name, reading.value)
        measurements.append(measurement)
    return measurements


class InfluxDBExporter:
    """InfluxDB exporter for Glowmarkt readings.

    Pushes readings to InfluxDB with their actual timestamps, enabling
    proper time-series visualization in Grafana.

    Attributes:
        url: InfluxDB server URL
        token: InfluxDB API token
        org: InfluxDB organization
        bucket: InfluxDB bucket name
    """

    def __init__(
        self,
        url: str = "http://localhost:8086",
        token: str = "",
        org: str = "glowmarkt",
        bucket: str = "energy",
    ):
        self.url = url
        self.token = token
        self.org = org
        self.bucket = bucket
        self._client: Optional[InfluxDBClient] = None
        self._write_api = None

    def connect(self) -> bool:
        """Connect to InfluxDB.

        Returns:
            True if connection successful, False otherwise
        """
        try:
            self._client = InfluxDBClient(url=self.url, token=self.token, org=self.org)
            self._write_api = self._client.write_api(write_options=SYNCHRONOUS)

            if self._client.ping():
                logger.info(f"Connected to InfluxDB at {self.url}")
                return True
            logger.error(f"InfluxDB at {self.url} did not answer ping")
            return False
        except Exception as e:
            logger.error(f"Failed to connect to InfluxDB: {e}")
            return False

    def close(self) -> None:
        """Close the InfluxDB connection."""
        if self._client:
            self._client.close()
            self._client = None
            self._write_api = None
            logger.info("InfluxDB connection closed")

    def write_measurements(self, measurements: List[Measurement]) -> int:
        """Write measurements to InfluxDB in a single batch.

        Args:
            measurements: Measurements to write

        Returns:
            Number of points written

        Raises:
            RuntimeError: If not connected to InfluxDB
        """
        if not self._write_api:
            raise RuntimeError("Not connected to InfluxDB. Call connect() first.")

        if not measurements:
            logger.warning("No measurements to write")
            return 0

        points = [m.to_point() for m in measurements if m.fields]

        try:
            self._write_api.write(bucket=self.bucket, org=self.org, record=points)
            logger.info(f"Wrote {len(points)} points to InfluxDB bucket {self.bucket}")
        except Exception as e:
            logger.error(f"Failed to write to InfluxDB: {e}")
            raise

        return len(points)
