"""Glowmarkt API records.

This module handles:
- Typed records for the JSON documents returned by the Glowmarkt API
- Parsing the API's timestamp formats into datetimes
- Converting records back to plain JSON-friendly dicts for output

Every record is built with `from_api()`. Missing required keys raise
KeyError and malformed values raise ValueError or TypeError; the client
reports both as a GlowmarktResponseError.
"""

import math
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from glowmarkt.periods import ReadingPeriod

TARIFF_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_rfc3339(value: str) -> datetime:
    """Parse an RFC 3339 timestamp such as `2021-03-09T11:29:45.215Z`."""
    if not isinstance(value, str):
        raise TypeError(f"Expected RFC 3339 string, got {type(value).__name__}")
    if value.endswith(("Z", "z")):
        value = value[:-1] + "+00:00"
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        raise ValueError(f"Timestamp has no UTC offset: {value}")
    return parsed


def parse_timestamp(value: Any) -> datetime:
    """Parse a unix timestamp (seconds) into an aware UTC datetime."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"Expected unix timestamp, got {value!r}")
    try:
        return datetime.fromtimestamp(value, tz=timezone.utc)
    except (OverflowError, OSError) as e:
        raise ValueError(f"Unix timestamp out of range: {value!r}") from e


def parse_tariff_datetime(value: Optional[str]) -> Optional[datetime]:
    """Parse the naive `YYYY-MM-DD HH:MM:SS` format used by tariffs."""
    if value is None:
        return None
    return datetime.strptime(value, TARIFF_DATETIME_FORMAT)


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.strftime(TARIFF_DATETIME_FORMAT)
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value):
        return {f.name: _json_value(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, dict):
        return {k: _json_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_json_value(v) for v in value]
    return value


class _Record:
    """Mixin giving dataclass records a JSON-friendly dict form."""

    def to_dict(self) -> Dict[str, Any]:
        return _json_value(self)


@dataclass
class ResourceInfo(_Record):
    resource_id: str
    resource_type_id: str

    @classmethod
    def from_api(cls, data: dict) -> "ResourceInfo":
        return cls(
            resource_id=data["resourceId"],
            resource_type_id=data["resourceTypeId"],
        )


@dataclass
class VirtualEntity(_Record):
    """A grouping of resources belonging to an account.

    Attributes:
        id: Virtual entity ID (`veId`)
        name: Display name
        active: Whether the entity is active
        type_id: Virtual entity type (`veTypeId`)
        owner_id: Owning account
        resources: Resources attached to the entity
    """
    id: str
    name: str
    active: bool
    type_id: str
    owner_id: str
    resources: List[ResourceInfo] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "VirtualEntity":
        return cls(
            id=data["veId"],
            name=data["name"],
            active=data["active"],
            type_id=data["veTypeId"],
            owner_id=data["ownerId"],
            resources=[ResourceInfo.from_api(r) for r in data.get("resources", [])],
        )


@dataclass
class Sensor(_Record):
    protocol_id: str
    resource_type_id: str

    @classmethod
    def from_api(cls, data: dict) -> "Sensor":
        return cls(protocol_id=data["protocolId"], resource_type_id=data["resourceTypeId"])


@dataclass
class Protocol(_Record):
    protocol: str
    sensors: List[Sensor] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "Protocol":
        return cls(
            protocol=data["protocol"],
            sensors=[Sensor.from_api(s) for s in data.get("sensors", [])],
        )


@dataclass
class DeviceType(_Record):
    id: str
    description: Optional[str]
    active: bool
    protocol: Protocol
    configuration: Any
    updated_at: datetime
    created_at: datetime

    @classmethod
    def from_api(cls, data: dict) -> "DeviceType":
        return cls(
            id=data["deviceTypeId"],
            description=data.get("description"),
            active=data["active"],
            protocol=Protocol.from_api(data["protocol"]),
            configuration=data.get("configuration"),
            updated_at=parse_rfc3339(data["updatedAt"]),
            created_at=parse_rfc3339(data["createdAt"]),
        )


@dataclass
class DeviceSensor(_Record):
    protocol_id: str
    resource_id: str
    resource_type_id: str

    @classmethod
    def from_api(cls, data: dict) -> "DeviceSensor":
        return cls(
            protocol_id=data["protocolId"],
            resource_id=data["resourceId"],
            resource_type_id=data["resourceTypeId"],
        )


@dataclass
class DeviceProtocol(_Record):
    protocol: str
    sensors: List[DeviceSensor] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "DeviceProtocol":
        return cls(
            protocol=data["protocol"],
            sensors=[DeviceSensor.from_api(s) for s in data.get("sensors", [])],
        )


@dataclass
class Device(_Record):
    """A metering device registered to the account.

    Attributes:
        id: Device ID (`deviceId`)
        description: Optional human readable description
        active: Whether the device is active
        hardware_id: Primary hardware identifier (e.g. the CAD MAC address)
        device_type_id: Device type
        owner_id: Owning account
        hardware_id_names: Names of the hardware identifiers
        hardware_ids: Hardware identifiers by name (e.g. MPAN, MPRN)
        parent_hardware_id: Parent hardware identifiers
        tags: Free-form tags
        protocol: Protocol and the sensors (resources) it exposes
        updated_at: Last modification time
        created_at: Creation time
    """
    id: str
    description: Optional[str]
    active: bool
    hardware_id: str
    device_type_id: str
    owner_id: str
    hardware_id_names: List[str]
    hardware_ids: Dict[str, str]
    parent_hardware_id: List[str]
    tags: List[str]
    protocol: DeviceProtocol
    updated_at: datetime
    created_at: datetime

    @classmethod
    def from_api(cls, data: dict) -> "Device":
        return cls(
            id=data["deviceId"],
            description=data.get("description"),
            active=data["active"],
            hardware_id=data["hardwareId"],
            device_type_id=data["deviceTypeId"],
            owner_id=data["ownerId"],
            hardware_id_names=list(data.get("hardwareIdNames", [])),
            hardware_ids=dict(data.get("hardwareIds", {})),
            parent_hardware_id=list(data.get("parentHardwareId", [])),
            tags=list(data.get("tags", [])),
            protocol=DeviceProtocol.from_api(data["protocol"]),
            updated_at=parse_rfc3339(data["updatedAt"]),
            created_at=parse_rfc3339(data["createdAt"]),
        )

    def resource_ids(self) -> List[str]:
        """IDs of the resources fed by this device's sensors."""
        return [sensor.resource_id for sensor in self.protocol.sensors]


@dataclass
class DataSourceResourceTypeInfo(_Record):
    data_type: Optional[str] = None
    unit: Optional[str] = None
    range: Optional[str] = None
    is_cost: Optional[bool] = None
    method: Optional[str] = None

    @classmethod
    def from_api(cls, data: Any) -> Optional["DataSourceResourceTypeInfo"]:
        """Build from either a bare type string or a full object."""
        if data is None:
            return None
        if isinstance(data, str):
            return cls(data_type=data)
        if not isinstance(data, dict):
            raise TypeError(f"Expected string or object, got {type(data).__name__}")
        return cls(
            data_type=data.get("type"),
            unit=data.get("unit"),
            range=data.get("range"),
            is_cost=data.get("isCost"),
            method=data.get("method"),
        )


@dataclass
class Field(_Record):
    field_name: str
    datatype: str
    negative: bool

    @classmethod
    def from_api(cls, data: dict) -> "Field":
        return cls(field_name=data["fieldName"], datatype=data["datatype"], negative=data["negative"])


@dataclass
class Storage(_Record):
    storage_type: str
    sampling: str
    start: Any
    fields: List[Field] = field(default_factory=list)

    @classmethod
    def from_api(cls, data: dict) -> "Storage":
        return cls(
            storage_type=data["type"],
            sampling=data["sampling"],
            start=data.get("start"),
            fields=[Field.from_api(f) for f in data.get("fields", [])],
        )


@dataclass
class ResourceType(_Record):
    id: str
    name: str
    description: Optional[str]
    label: Optional[str]
    active: bool
    classifier: Optional[str]
    base_unit: Optional[str]
    data_source_type: str
    data_source_resource_type_info: Optional[DataSourceResourceTypeInfo]
    units: Dict[str, str]
    storage: List[Storage]

    @classmethod
    def from_api(cls, data: dict) -> "ResourceType":
        return cls(
            id=data["resourceTypeId"],
            name=data["name"],
            description=data.get("description"),
            label=data.get("label"),
            active=data["active"],
            classifier=data.get("classifier"),
            base_unit=data.get("baseUnit"),
            data_source_type=data["dataSourceType"],
            data_source_resource_type_info=DataSourceResourceTypeInfo.from_api(
                data.get("dataSourceResourceTypeInfo")
            ),
            units=dict(data.get("units") or {}),
            storage=[Storage.from_api(s) for s in data.get("storage", [])],
        )


@dataclass
class Resource(_Record):
    """A data stream (consumption, cost, ...) produced by a device.

    Attributes:
        id: Resource ID (`resourceId`)
        name: Resource name, e.g. "electricity consumption"
        classifier: Dotted classifier, e.g. `electricity.consumption`
        base_unit: Unit readings are reported in, e.g. `kWh` or `pence`
    """
    id: str
    name: str
    description: Optional[str]
    label: Optional[str]
    active: bool
    type_id: str
    owner_id: str
    classifier: Optional[str]
    base_unit: Optional[str]
    data_source_type: str
    data_source_resource_type_info: Optional[DataSourceResourceTypeInfo]
    data_source_unit_info: Any
    updated_at: datetime
    created_at: datetime

    @classmethod
    def from_api(cls, data: dict) -> "Resource":
        return cls(
            id=data["resourceId"],
            name=data["name"],
            description=data.get("description"),
            label=data.get("label"),
            active=data["active"],
            type_id=data["resourceTypeId"],
            owner_id=data["ownerId"],
            classifier=data.get("classifier"),
            base_unit=data.get("baseUnit"),
            data_source_type=data["dataSourceType"],
            data_source_resource_type_info=DataSourceResourceTypeInfo.from_api(
                data.get("dataSourceResourceTypeInfo")
            ),
            data_source_unit_info=data.get("dataSourceUnitInfo"),
            updated_at=parse_rfc3339(data["updatedAt"]),
            created_at=parse_rfc3339(data["createdAt"]),
        )


@dataclass
class Plan(_Record):
    plan_detail: List[Dict[str, Any]]
    week_name: Optional[str] = None
    source: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "Plan":
        return cls(
            plan_detail=list(data["planDetail"]),
            week_name=data.get("weekName"),
            source=data.get("source"),
        )


@dataclass
class TariffData(_Record):
    """The tariff currently applied to a resource."""
    plan: List[Plan]
    cid: str
    commodity: str
    from_date: datetime
    name: str

    @classmethod
    def from_api(cls, data: dict) -> "TariffData":
        return cls(
            plan=[Plan.from_api(p) for p in data["plan"]],
            cid=data["cid"],
            commodity=data["commodity"],
            from_date=parse_tariff_datetime(data["from"]),
            name=data["name"],
        )


@dataclass
class TariffListData(_Record):
    """One entry of a resource's tariff history."""
    id: str
    plan: List[Plan]
    effective_date: Optional[datetime] = None
    from_date: Optional[datetime] = None
    display_name: Optional[str] = None
    name: Optional[str] = None

    @classmethod
    def from_api(cls, data: dict) -> "TariffListData":
        return cls(
            id=data["id"],
            plan=[Plan.from_api(p) for p in data["plan"]],
            effective_date=parse_tariff_datetime(data.get("effectiveDate")),
            from_date=parse_tariff_datetime(data.get("from")),
            display_name=data.get("displayName"),
            name=data.get("name"),
        )


@dataclass
class Reading(_Record):
    """A single meter reading.

    Attributes:
        start: Start of the period the reading covers (UTC)
        period: Length of the period
        value: Total usage over the period
    """
    start: datetime
    period: ReadingPeriod
    value: float

    @classmethod
    def from_api(cls, data: Any, period: ReadingPeriod) -> "Reading":
        """Build from a `[timestamp, value]` pair of the readings response."""
        timestamp, value = data
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise TypeError(f"Expected numeric reading value, got {value!r}")
        if not math.isfinite(value):
            raise ValueError(f"Reading value must be finite, got {value!r}")
        return cls(start=parse_timestamp(timestamp), period=period, value=float(value))
