"""Shared fixtures: sample API documents and a fake HTTP session."""

import json
from typing import Any, List
from unittest.mock import MagicMock

import pytest
import requests

from glowmarkt.client import GlowmarktApi, GlowmarktEndpoint

TEST_ENDPOINT = GlowmarktEndpoint("https://api.example.test/api/v0-1", "test-app")


def make_response(payload: Any = None, status: int = 200, url: str = "https://api.example.test/api/v0-1/x",
                  text: str = None) -> requests.Response:
    """Build a real requests.Response carrying a JSON (or raw) body."""
    response = requests.Response()
    response.status_code = status
    response.url = url
    response.reason = "OK" if status < 400 else "Error"
    response.encoding = "utf-8"
    body = text if text is not None else json.dumps(payload)
    response._content = body.encode("utf-8")
    return response


def fake_session(*responses: Any) -> MagicMock:
    """A session whose request() returns (or raises) the given items in order."""
    session = MagicMock(spec=requests.Session)
    session.request.side_effect = list(responses)
    return session


def make_api(*responses: Any) -> GlowmarktApi:
    return GlowmarktApi(
        "test-token",
        endpoint=TEST_ENDPOINT,
        session=fake_session(*responses),
        retry_delay=0,
    )


def device_payload(device_id: str = "dev-1", resource_ids: List[str] = ("res-elec", "res-cost")) -> dict:
    return {
        "deviceId": device_id,
        "description": "Home CAD",
        "active": True,
        "hardwareId": "AA:BB:CC",
        "deviceTypeId": "type-cad",
        "ownerId": "owner-1",
        "hardwareIdNames": ["MAC", "MPAN"],
        "hardwareIds": {"MAC": "AA:BB:CC", "MPAN": "1234567890"},
        "parentHardwareId": [],
        "tags": [],
        "protocol": {
            "protocol": "mqtt",
            "sensors": [
                {"protocolId": "p", "resourceId": rid, "resourceTypeId": "rt-" + rid}
                for rid in resource_ids
            ],
        },
        "updatedAt": "2023-05-01T10:00:00.000Z",
        "createdAt": "2021-03-09T11:29:45.215Z",
    }


def resource_payload(resource_id: str = "res-elec", classifier: str = "electricity.consumption",
                     unit: str = "kWh", name: str = "electricity consumption") -> dict:
    return {
        "resourceId": resource_id,
        "name": name,
        "description": None,
        "label": None,
        "active": True,
        "resourceTypeId": "rt-" + resource_id,
        "ownerId": "owner-1",
        "classifier": classifier,
        "baseUnit": unit,
        "dataSourceType": "DCC",
        "dataSourceResourceTypeInfo": {"type": "ELEC", "unit": "kWh"},
        "dataSourceUnitInfo": {"shid": "x"},
        "updatedAt": "2023-05-01T10:00:00Z",
        "createdAt": "2021-03-09T11:29:45Z",
    }


@pytest.fixture
def device_doc() -> dict:
    return device_payload()


@pytest.fixture
def resource_doc() -> dict:
    return resource_payload()


@pytest.fixture
def auth_doc() -> dict:
    return {"valid": True, "token": "jwt-token", "exp": 1700000000, "accountId": "owner-1"}
