"""Reading export job.

This module handles:
- Fetching recent readings for every device resource of the account
- Pushing them to InfluxDB with their actual timestamps
- Scheduling daily exports with APScheduler
- Keeping Prometheus operational metrics up to date
"""

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional, Tuple

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from glowmarkt.client import GlowmarktApi, GlowmarktEndpoint, GlowmarktError
from glowmarkt.config import Config
from glowmarkt.influx import InfluxDBExporter, Measurement, reading_measurements
from glowmarkt.metrics import ExportMetrics
from glowmarkt.periods import align_to_period

# Configure module logger
logger = logging.getLogger(__name__)


def api_from_config(config: Config) -> GlowmarktApi:
    """Create an API client, authenticating unless a token is configured."""
    endpoint = GlowmarktEndpoint(config.base_url, config.app_id)
    if config.token:
        return GlowmarktApi(config.token, endpoint=endpoint)
    return GlowmarktApi.authenticate(config.username, config.password, endpoint=endpoint)


class ExportJob:
    """Exports recent readings to InfluxDB.

    A new API client is created for every run so that an expired token
    never outlives a single export.

    Attributes:
        config: Export settings
        influx: InfluxDB exporter (connected by the caller)
        metrics: Optional Prometheus metrics
    """

    def __init__(
        self,
        config: Config,
        api_factory: Optional[Callable[[Config], GlowmarktApi]] = None,
        influx: Optional[InfluxDBExporter] = None,
        metrics: Optional[ExportMetrics] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.influx = influx
        self.metrics = metrics
        self._api_factory = api_factory or api_from_config
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def window(self) -> Tuple[datetime, datetime]:
        """The (start, end) range of readings the next run fetches."""
        end = self._clock()
        try:
            end = align_to_period(end, self.config.period)
        except ValueError:
            pass  # Only half-hour and hour periods can be aligned
        return end - timedelta(days=self.config.lookback_days), end

    def collect(self) -> List[Measurement]:
        """Fetch readings for every selected device resource.

        Returns:
            Measurements for all readings in the export window
        """
        start, end = self.window()
        wanted = set(self.config.resources)

        with self._api_factory(self.config) as api:
            devices = api.devices()
            resources = api.resources()

            measurements: List[Measurement] = []
            for device in devices.values():
                for resource_id in device.resource_ids():
                    if wanted and resource_id not in wanted:
                        continue

                    resource = resources.get(resource_id)
                    if resource is None:
                        logger.warning(f"Device {device.id} references unknown resource {resource_id}")
                        continue

                    readings = api.readings_range(resource_id, start, end, self.config.period)
                    logger.info(f"Fetched {len(readings)} readings for {resource.name} ({resource_id})")

                    measurements.extend(reading_measurements(readings, resource, device))
                    if self.metrics:
                        self.metrics.update_readings(resource, readings)

        return measurements

    def run(self) -> bool:
        """Execute the fetch and export flow.

        This function:
        1. Authenticates and lists devices and resources
        2. Fetches readings over the look-back window
        3. Pushes them to InfluxDB
        4. Updates Prometheus operational metrics

        Returns:
            True if the export succeeded, False otherwise
        """
        logger.info("Starting export")
        start_time = time.time()
        points = 0

        try:
            measurements = self.collect()
            if self.influx:
                points = self.influx.write_measurements(measurements)
                logger.info(f"Wrote {points} points to InfluxDB")
            else:
                points = len(measurements)

            if self.metrics:
                self.metrics.set_export_result(True, time.time() - start_time, points)

            logger.info("Export completed successfully")
            return True

        except GlowmarktError as e:
            logger.error(f"Export failed (API error): {e}")
        except Exception as e:
            logger.error(f"Export failed (unexpected error): {e}")

        if self.metrics:
            self.metrics.set_export_result(False, time.time() - start_time)
        return False

    def schedule(self) -> None:
        """Run once now, then daily at the configured hour (blocks)."""
        scheduler = BlockingScheduler()

        trigger = CronTrigger(hour=self.config.export_hour, minute=0)
        scheduler.add_job(
            self.run,
            trigger=trigger,
            id="daily_export",
            name=f"Daily export at {self.config.export_hour}:00"
        )
        logger.info(f"Scheduled daily export at {self.config.export_hour}:00")

        logger.info("Running initial export at startup")
        self.run()

        logger.info("Starting scheduler, press Ctrl+C to exit")
        try:
            scheduler.start()
        except (KeyboardInterrupt, SystemExit):
            logger.info("Received interrupt, shutting down")
            if scheduler.running:
                scheduler.shutdown(wait=False)
        finally:
            if self.influx:
                self.influx.close()
