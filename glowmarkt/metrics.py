"""Prometheus metrics module.

This module handles:
- Defining operational gauges for InfluxDB export runs
- Exposing the latest reading of every exported resource
- Serving the metrics over HTTP on a configurable port
"""

import logging
import time
from typing import List, Optional

from prometheus_client import REGISTRY, CollectorRegistry, Gauge, start_http_server

from glowmarkt.models import Reading, Resource

# Configure module logger
logger = logging.getLogger(__name__)


class ExportMetrics:
    """Prometheus gauges describing export runs.

    Exposes the following metrics:
    - glowmarkt_export_success: Whether the last export succeeded (1=success, 0=failure)
    - glowmarkt_export_timestamp: Unix timestamp of the last export
    - glowmarkt_export_duration_seconds: Duration of the last export
    - glowmarkt_export_points: Points written by the last export
    - glowmarkt_last_reading_value: Most recent reading per resource
    - glowmarkt_last_reading_timestamp: Start time of the most recent reading per resource

    Attributes:
        port: HTTP server port (default 9120)
    """

    def __init__(self, port: int = 9120, registry: Optional[CollectorRegistry] = None):
        """Initialize the metrics.

        Args:
            port: Port to run the HTTP server on
            registry: Optional custom registry for testing. If None, uses default REGISTRY.
        """
        self.port = port
        self._registry = registry if registry is not None else REGISTRY
        self._server_started = False

        self._export_success = Gauge(
            'glowmarkt_export_success',
            'Whether the last export succeeded (1=success, 0=failure)',
            registry=self._registry
        )
        self._export_timestamp = Gauge(
            'glowmarkt_export_timestamp',
            'Unix timestamp of the last export',
            registry=self._registry
        )
        self._export_duration = Gauge(
            'glowmarkt_export_duration_seconds',
            'Duration of the last export in seconds',
            registry=self._registry
        )
        self._export_points = Gauge(
            'glowmarkt_export_points',
            'Number of points written by the last export',
            registry=self._registry
        )
        self._last_reading_value = Gauge(
            'glowmarkt_last_reading_value',
            'Value of the most recent reading of a resource',
            ['resource_id', 'resource', 'unit'],
            registry=self._registry
        )
        self._last_reading_timestamp = Gauge(
            'glowmarkt_last_reading_timestamp',
            'Unix timestamp of the start of the most recent reading of a resource',
            ['resource_id'],
            registry=self._registry
        )

    def update_readings(self, resource: Resource, readings: List[Reading]) -> None:
        """Record the most recent reading of a resource.

        Args:
            resource: The resource the readings belong to
            readings: Readings fetched for it (any order)
        """
        if not readings:
            logger.warning(f"No readings to update metrics with for resource {resource.id}")
            return

        latest = max(readings, key=lambda r: r.start)
        self._last_reading_value.labels(
            resource_id=resource.id,
            resource=resource.name,
            unit=resource.base_unit or "",
        ).set(latest.value)
        self._last_reading_timestamp.labels(resource_id=resource.id).set(latest.start.timestamp())

    def set_export_result(self, success: bool, duration: float, points: int = 0) -> None:
        """Update operational metrics after an export attempt.

        Args:
            success: Whether the export succeeded
            duration: How long the export took in seconds
            points: How many points were written
        """
        self._export_success.set(1 if success else 0)
        self._export_timestamp.set(time.time())
        self._export_duration.set(duration)
        self._export_points.set(points)

    def start(self) -> None:
        """Start the HTTP server to expose metrics.

        The server runs in a daemon thread and exposes metrics at
        http://localhost:{port}/metrics
        """
        if self._server_started:
            logger.warning("Prometheus server already started")
            return

        logger.info(f"Starting Prometheus HTTP server on port {self.port}")
        start_http_server(self.port, registry=self._registry)
        self._server_started = True
