"""Configuration module.

This module handles:
- Loading configuration from environment variables (and a .env file)
- Falling back to defaults, with a warning, for invalid values
- Reporting which settings an InfluxDB export still needs
"""

import logging
import os
from dataclasses import dataclass, field
from typing import List, Mapping, Optional

from dotenv import load_dotenv

from glowmarkt.client import APPLICATION_ID, BASE_URL
from glowmarkt.periods import ReadingPeriod

# Configure module logger
logger = logging.getLogger(__name__)


@dataclass
class Config:
    """Settings shared by the CLI and the export job.

    Attributes:
        username: Glowmarkt account username
        password: Glowmarkt account password
        token: Previously issued JWT token, used instead of credentials
        base_url: API base URL
        app_id: API application ID
        resources: Resource IDs to export (empty means every device resource)
        period: Reading period to export
        lookback_days: How many days of readings each export fetches
        export_hour: Hour of the day the scheduled export runs
        exporter_port: Prometheus port (0 disables the metrics server)
        influxdb_url: InfluxDB server URL
        influxdb_token: InfluxDB API token
        influxdb_org: InfluxDB organization
        influxdb_bucket: InfluxDB bucket
    """
    username: str = ""
    password: str = ""
    token: str = ""
    base_url: str = BASE_URL
    app_id: str = APPLICATION_ID
    resources: List[str] = field(default_factory=list)
    period: ReadingPeriod = ReadingPeriod.HALF_HOUR
    lookback_days: int = 2
    export_hour: int = 4
    exporter_port: int = 9120
    influxdb_url: str = "http://localhost:8086"
    influxdb_token: str = ""
    influxdb_org: str = "glowmarkt"
    influxdb_bucket: str = "energy"


def _int_setting(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(f"Invalid {name}, using default: {default}")
        return default


def _period_setting(environ: Mapping[str, str], name: str, default: ReadingPeriod) -> ReadingPeriod:
    value = environ.get(name)
    if not value:
        return default
    try:
        return ReadingPeriod(value)
    except ValueError:
        logger.warning(f"Invalid {name}, using default: {default.value}")
        return default


def load_config(environ: Optional[Mapping[str, str]] = None, dotenv: bool = True) -> Config:
    """Load configuration from environment variables.

    Credentials:
        GLOWMARKT_USERNAME, GLOWMARKT_PASSWORD: Account credentials
        GLOWMARKT_TOKEN: Existing token (skips authentication)

    Optional:
        GLOWMARKT_BASE_URL: API URL (default: public API)
        GLOWMARKT_APP_ID: Application ID (default: public application)
        GLOWMARKT_RESOURCES: Comma separated resource IDs to export (default: all)
        GLOWMARKT_PERIOD: Reading period (default: half-hour)
        GLOWMARKT_LOOKBACK_DAYS: Days fetched per export (default: 2)
        EXPORT_HOUR: Hour to run the daily export (default: 4)
        EXPORTER_PORT: Prometheus port, 0 disables it (default: 9120)
        INFLUXDB_URL: InfluxDB server URL (default: http://localhost:8086)
        INFLUXDB_TOKEN: InfluxDB API token
        INFLUXDB_ORG: InfluxDB organization (default: glowmarkt)
        INFLUXDB_BUCKET: InfluxDB bucket (default: energy)

    Args:
        environ: Mapping to read instead of os.environ
        dotenv: Whether to load a .env file first (only applies to os.environ)

    Returns:
        The loaded configuration
    """
    if environ is None:
        if dotenv:
            load_dotenv()
        environ = os.environ

    defaults = Config()
    resources = [r.strip() for r in environ.get("GLOWMARKT_RESOURCES", "").split(",") if r.strip()]

    config = Config(
        username=environ.get("GLOWMARKT_USERNAME", ""),
        password=environ.get("GLOWMARKT_PASSWORD", ""),
        token=environ.get("GLOWMARKT_TOKEN", ""),
        base_url=environ.get("GLOWMARKT_BASE_URL") or defaults.base_url,
        app_id=environ.get("GLOWMARKT_APP_ID") or defaults.app_id,
        resources=resources,
        period=_period_setting(environ, "GLOWMARKT_PERIOD", defaults.period),
        lookback_days=_int_setting(environ, "GLOWMARKT_LOOKBACK_DAYS", defaults.lookback_days),
        export_hour=_int_setting(environ, "EXPORT_HOUR", defaults.export_hour),
        exporter_port=_int_setting(environ, "EXPORTER_PORT", defaults.exporter_port),
        influxdb_url=environ.get("INFLUXDB_URL") or defaults.influxdb_url,
        influxdb_token=environ.get("INFLUXDB_TOKEN", ""),
        influxdb_org=environ.get("INFLUXDB_ORG") or defaults.influxdb_org,
        influxdb_bucket=environ.get("INFLUXDB_BUCKET") or defaults.influxdb_bucket,
    )

    if not 0 <= config.export_hour <= 23:
        logger.warning(f"EXPORT_HOUR must be 0-23, using default: {defaults.export_hour}")
        config.export_hour = defaults.export_hour
    if config.lookback_days < 1:
        logger.warning(f"GLOWMARKT_LOOKBACK_DAYS must be positive, using default: {defaults.lookback_days}")
        config.lookback_days = defaults.lookback_days

    logger.debug(f"Configuration loaded: base_url={config.base_url}, "
                 f"period={config.period.value}, "
                 f"influxdb_url={config.influxdb_url}")
    return config


def missing_for_export(config: Config) -> List[str]:
    """List the environment variables an InfluxDB export still needs."""
    missing = []
    if not config.token:
        if not config.username:
            missing.append("GLOWMARKT_USERNAME")
        if not config.password:
            missing.append("GLOWMARKT_PASSWORD")
    if not config.influxdb_token:
        missing.append("INFLUXDB_TOKEN")
    return missing
