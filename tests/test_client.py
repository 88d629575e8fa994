"""Tests for the Glowmarkt API client."""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import requests

from conftest import TEST_ENDPOINT, device_payload, fake_session, make_api, make_response, resource_payload
from glowmarkt.client import (
    GlowmarktApi,
    GlowmarktAuthError,
    GlowmarktClientError,
    GlowmarktNetworkError,
    GlowmarktNotFoundError,
    GlowmarktResponseError,
    GlowmarktServerError,
)
from glowmarkt.periods import ReadingPeriod

UTC = timezone.utc


def _call(api: GlowmarktApi, index: int = 0):
    """Return (method, url, kwargs) of a recorded session.request call."""
    args, kwargs = api.session.request.call_args_list[index]
    return args[0], args[1], kwargs


def test_authenticate(auth_doc):
    """Test a successful login stores the token and its expiry."""
    session = fake_session(make_response(auth_doc))

    api = GlowmarktApi.authenticate("user@example.com", "secret", endpoint=TEST_ENDPOINT, session=session)

    assert api.token == "jwt-token"
    assert api.token_expiry == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)

    method, url, kwargs = _call(api)
    assert method == "POST"
    assert url == "https://api.example.test/api/v0-1/auth"
    assert kwargs["json"] == {"username": "user@example.com", "password": "secret"}
    assert kwargs["headers"]["applicationId"] == "test-app"
    assert "token" not in kwargs["headers"]


def test_authenticate_error_body():
    """Test the API's error message is surfaced for rejected credentials."""
    session = fake_session(make_response({"error": {"message": "Invalid username or password"}}))

    with pytest.raises(GlowmarktAuthError) as excinfo:
        GlowmarktApi.authenticate("user", "wrong", endpoint=TEST_ENDPOINT, session=session)

    assert excinfo.value.message == "Invalid username or password"


def test_authenticate_invalid_flag():
    session = fake_session(make_response({"valid": False, "token": "x", "exp": 1}))

    with pytest.raises(GlowmarktAuthError, match="Authentication error"):
        GlowmarktApi.authenticate("user", "wrong", endpoint=TEST_ENDPOINT, session=session)


def test_authenticate_http_401():
    session = fake_session(make_response({"error": {"message": "Unauthorised"}}, status=401))

    with pytest.raises(GlowmarktAuthError, match="Unauthorised"):
        GlowmarktApi.authenticate("user", "wrong", endpoint=TEST_ENDPOINT, session=session)


def test_validate_updates_expiry():
    api = make_api(make_response({"valid": True, "exp": 1800000000}))

    assert api.validate() is True
    assert api.token_expiry == datetime.fromtimestamp(1800000000, tz=UTC)

    method, url, kwargs = _call(api)
    assert method == "GET"
    assert url.endswith("/auth")
    assert kwargs["headers"]["token"] == "test-token"


def test_validate_expired_token():
    api = make_api(make_response({"error": {"message": "Token expired"}}))

    with pytest.raises(GlowmarktAuthError, match="Token expired"):
        api.validate()


def test_devices_keyed_by_id():
    """Test list endpoints return a dict keyed by record id."""
    api = make_api(make_response([device_payload("dev-1"), device_payload("dev-2", ["res-gas"])]))

    devices = api.devices()

    assert sorted(devices) == ["dev-1", "dev-2"]
    assert devices["dev-2"].resource_ids() == ["res-gas"]
    assert _call(api)[1].endswith("/device")


def test_device_not_found_is_none():
    api = make_api(make_response({"error": {"message": "not found"}}, status=404))

    assert api.device("missing") is None
    assert _call(api)[1].endswith("/device/missing")


def test_resource_found():
    api = make_api(make_response(resource_payload()))

    assert api.resource("res-elec").name == "electricity consumption"


def test_virtual_entity_not_found_is_none():
    api = make_api(make_response({}, status=404))

    assert api.virtual_entity("ve-x") is None


def test_list_requires_array():
    api = make_api(make_response({"data": []}))

    with pytest.raises(GlowmarktResponseError):
        api.resources()


def test_schema_mismatch_is_response_error():
    payload = device_payload()
    del payload["protocol"]
    api = make_api(make_response([payload]))

    with pytest.raises(GlowmarktResponseError):
        api.devices()


def test_invalid_json_is_response_error():
    api = make_api(make_response(text="<html>oops</html>"))

    with pytest.raises(GlowmarktResponseError):
        api.device_types()


def test_client_error_not_retried():
    """Test 4xx responses are raised straight away."""
    api = make_api(make_response({"error": {"message": "bad period"}}, status=400), make_response([]))

    with pytest.raises(GlowmarktClientError, match="bad period"):
        api.resource_types()

    assert api.session.request.call_count == 1


def test_server_error_retried_then_succeeds():
    api = make_api(make_response({}, status=503), make_response([]))

    assert api.virtual_entities() == {}
    assert api.session.request.call_count == 2


def test_server_error_after_retries():
    api = make_api(*[make_response({}, status=500) for _ in range(3)])

    with pytest.raises(GlowmarktServerError):
        api.devices()

    assert api.session.request.call_count == 3


def test_network_error_after_retries():
    """Test connection failures are retried with backoff, then reported."""
    api = GlowmarktApi(
        "test-token",
        endpoint=TEST_ENDPOINT,
        session=fake_session(*[requests.ConnectionError("refused")] * 3),
        retry_delay=1,
    )

    with patch("glowmarkt.client.time.sleep") as sleep:
        with pytest.raises(GlowmarktNetworkError, match="refused"):
            api.devices()

    assert [c.args[0] for c in sleep.call_args_list] == [1, 2]


def test_readings_query():
    """Test the readings query arguments and UTC conversion."""
    api = make_api(make_response({"data": [[1704067200, 0.5], [1704069000, 0.25]], "units": "kWh"}))
    start = datetime(2024, 1, 1, tzinfo=UTC)
    end = datetime(2024, 1, 2, tzinfo=UTC)

    readings = api.readings("res-elec", start, end, ReadingPeriod.HALF_HOUR)

    assert [r.value for r in readings] == [0.5, 0.25]
    assert readings[0].start == start
    assert readings[1].period is ReadingPeriod.HALF_HOUR

    method, url, kwargs = _call(api)
    assert url.endswith("/resource/res-elec/readings")
    assert kwargs["params"] == {
        "from": "2024-01-01T00:00:00",
        "to": "2024-01-02T00:00:00",
        "period": "PT30M",
        "offset": "0",
        "function": "sum",
    }


def test_readings_range_splits_requests():
    api = make_api(
        make_response({"data": [[1704067200, 1.0]]}),
        make_response({"data": [[1705017600, 2.0]]}),
    )

    readings = api.readings_range(
        "res-elec",
        datetime(2024, 1, 1, tzinfo=UTC),
        datetime(2024, 1, 15, tzinfo=UTC),
        ReadingPeriod.HALF_HOUR,
    )

    assert [r.value for r in readings] == [1.0, 2.0]
    assert api.session.request.call_count == 2
    assert _call(api, 1)[2]["params"]["from"] == "2024-01-11T00:30:00"


def test_tariffs():
    api = make_api(
        make_response({"data": [{
            "plan": [{"planDetail": [{"rate": 28.5}]}],
            "cid": "cid-1",
            "commodity": "electricity",
            "from": "2023-04-01 00:00:00",
            "name": "Standard",
        }]}),
        make_response({"data": [{"id": "t-1", "plan": [], "displayName": "Old"}]}),
    )

    assert api.latest_tariff("res-cost")[0].name == "Standard"
    assert api.tariff_list("res-cost")[0].display_name == "Old"
    assert _call(api, 0)[1].endswith("/resource/res-cost/tariff")
    assert _call(api, 1)[1].endswith("/resource/res-cost/tariff-list")


def test_context_manager_closes_session():
    api = make_api()
    with api:
        pass
    api.session.close.assert_called_once()


def test_not_found_error_type():
    api = make_api(make_response({}, status=404))

    with pytest.raises(GlowmarktNotFoundError):
        api.latest_tariff("missing")


def test_non_finite_reading_is_response_error():
    """Test a NaN literal in the readings body is reported as a decode failure."""
    api = make_api(make_response(text='{"data": [[1704067200, NaN]]}'))

    with pytest.raises(GlowmarktResponseError):
        api.readings("res-elec", datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 1, 2, tzinfo=UTC),
                     ReadingPeriod.HOUR)


def test_out_of_range_reading_timestamp_is_response_error():
    api = make_api(make_response({"data": [[10**20, 1.0]]}))

    with pytest.raises(GlowmarktResponseError):
        api.readings("res-elec", datetime(2024, 1, 1, tzinfo=UTC), datetime(2024, 1, 2, tzinfo=UTC),
                     ReadingPeriod.HOUR)


def test_authenticate_out_of_range_expiry():
    session = fake_session(make_response({"valid": True, "token": "jwt", "exp": 10**20}))

    with pytest.raises(GlowmarktResponseError):
        GlowmarktApi.authenticate("user", "secret", endpoint=TEST_ENDPOINT, session=session, retry_delay=0)

    session.close.assert_called_once()


def test_failed_authentication_closes_session():
    session = fake_session(make_response({"error": {"message": "Invalid username or password"}}, status=401))

    with pytest.raises(GlowmarktAuthError):
        GlowmarktApi.authenticate("user", "wrong", endpoint=TEST_ENDPOINT, session=session, retry_delay=0)

    session.close.assert_called_once()


@pytest.mark.parametrize("error", [
    requests.exceptions.ChunkedEncodingError("Connection broken"),
    requests.exceptions.ContentDecodingError("Received response with content-encoding: gzip, but failed to decode it"),
])
def test_broken_transfer_is_network_error(error):
    """Test failures while reading the body are retried like connection errors."""
    api = make_api(error, error, error)

    with pytest.raises(GlowmarktNetworkError):
        api.devices()

    assert api.session.request.call_count == 3


def test_broken_transfer_retried_then_succeeds():
    api = make_api(requests.exceptions.ChunkedEncodingError("Connection broken"), make_response([]))

    assert api.devices() == {}
    assert api.session.request.call_count == 2


def test_invalid_url_is_client_error():
    api = make_api(requests.exceptions.InvalidURL("Invalid URL"))

    with pytest.raises(GlowmarktClientError):
        api.devices()

    assert api.session.request.call_count == 1
