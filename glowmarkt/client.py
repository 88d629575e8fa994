"""Glowmarkt API client module.

This module handles:
- Authentication against the Glowmarkt API (username/password for a JWT token)
- Session management and the headers every call needs
- Typed accessors for devices, virtual entities, resources, tariffs and readings
- Mapping HTTP and decoding failures onto a small exception hierarchy
"""

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, TypeVar

import requests

from glowmarkt.models import (
    Device,
    DeviceType,
    Reading,
    Resource,
    ResourceType,
    TariffData,
    TariffListData,
    VirtualEntity,
    parse_timestamp,
)
from glowmarkt.periods import ReadingPeriod, iso, split_periods

# Configure module logger
logger = logging.getLogger(__name__)

BASE_URL = "https://api.glowmarkt.com/api/v0-1"
APPLICATION_ID = "b0f1b774-a586-4f72-9edd-27ead8aa7a8d"

T = TypeVar("T")


class GlowmarktError(Exception):
    """Base exception for Glowmarkt API errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GlowmarktAuthError(GlowmarktError):
    """Exception raised when authentication fails or the token is rejected."""


class GlowmarktNotFoundError(GlowmarktError):
    """Exception raised when the requested item does not exist."""


class GlowmarktNetworkError(GlowmarktError):
    """Exception raised when the API cannot be reached."""


class GlowmarktClientError(GlowmarktError):
    """Exception raised for requests the API refused as invalid."""


class GlowmarktServerError(GlowmarktError):
    """Exception raised when the API reports an internal error."""


class GlowmarktResponseError(GlowmarktError):
    """Exception raised when a response cannot be decoded."""


def _error_message(response: requests.Response) -> Optional[str]:
    """Pull `error.message` out of an API error body, if there is one."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("message")
    return None


def _error_for_status(response: requests.Response) -> GlowmarktError:
    """Map an unsuccessful HTTP response to an exception."""
    status = response.status_code
    message = _error_message(response) or f"HTTP {status} {response.reason or ''} for url {response.url}".rstrip()

    if status == 404:
        return GlowmarktNotFoundError(message)
    if status == 401:
        return GlowmarktAuthError(message)
    if status >= 500:
        return GlowmarktServerError(message)
    return GlowmarktClientError(message)


def _validate_auth(body: Any) -> dict:
    """Check an auth/validate response and return it if the token is valid.

    Raises:
        GlowmarktAuthError: If the API reported an error or an invalid token
    """
    if not isinstance(body, dict):
        raise GlowmarktResponseError(f"Unexpected auth response: {body!r}")
    if isinstance(body.get("error"), dict):
        raise GlowmarktAuthError(body["error"].get("message", "Authentication error"))
    if not body.get("valid"):
        raise GlowmarktAuthError("Authentication error")
    return body


class GlowmarktEndpoint:
    """The API endpoint.

    Normally a non-default endpoint would only be useful for testing.

    Attributes:
        base_url: URL of the API, without a trailing slash
        app_id: Application ID sent with every request
    """

    def __init__(self, base_url: str = BASE_URL, app_id: str = APPLICATION_ID):
        self.base_url = base_url.rstrip("/")
        self.app_id = app_id

    def url(self, path: str) -> str:
        """Build the full URL of an API path."""
        return f"{self.base_url}/{path}"

    def __repr__(self) -> str:
        return f"GlowmarktEndpoint(base_url={self.base_url!r}, app_id={self.app_id!r})"


class GlowmarktApi:
    """Access to the Glowmarkt API.

    Create one either from an existing JWT token or with
    `GlowmarktApi.authenticate(username, password)`.

    Transport failures and 5xx responses are retried with exponential
    backoff; other errors are raised straight away.

    Attributes:
        token: The current JWT token
        token_expiry: When the token expires, if known
        endpoint: The API endpoint in use
    """

    MAX_RETRIES = 3
    RETRY_DELAY = 2  # seconds
    TIMEOUT = 30  # seconds

    def __init__(
        self,
        token: str,
        endpoint: Optional[GlowmarktEndpoint] = None,
        session: Optional[requests.Session] = None,
        max_retries: int = MAX_RETRIES,
        retry_delay: float = RETRY_DELAY,
        timeout: float = TIMEOUT,
    ):
        self.token = token
        self.token_expiry: Optional[datetime] = None
        self.endpoint = endpoint or GlowmarktEndpoint()
        self.session = session if session is not None else requests.Session()
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout

    def __repr__(self) -> str:
        return f"GlowmarktApi(endpoint={self.endpoint!r}, token_expiry={self.token_expiry})"

    def __enter__(self) -> "GlowmarktApi":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def close(self) -> None:
        """Close the underlying HTTP session."""
        self.session.close()

    # -- transport ---------------------------------------------------------

    def _headers(self, authenticated: bool) -> Dict[str, str]:
        headers = {
            "applicationId": self.endpoint.app_id,
            "Content-Type": "application/json",
        }
        if authenticated:
            headers["token"] = self.token
        return headers

    def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, str]] = None,
        json: Optional[dict] = None,
        authenticated: bool = True,
    ) -> Any:
        """Execute an API call with retry logic and decode the JSON body.

        Raises:
            GlowmarktError: A subclass describing the failure
        """
        url = self.endpoint.url(path)
        last_error: Optional[GlowmarktError] = None

        for attempt in range(self.max_retries):
            if attempt > 0:
                delay = self.retry_delay * (2 ** (attempt - 1))  # Exponential backoff
                logger.info(f"Retry {attempt}/{self.max_retries - 1} after {delay}s delay")
                time.sleep(delay)

            logger.debug(f"Sending {method} request to {url}")
            try:
                response = self.session.request(
                    method,
                    url,
                    params=params,
                    json=json,
                    headers=self._headers(authenticated),
                    timeout=self.timeout,
                )
            except (
                requests.ConnectionError,
                requests.Timeout,
                requests.exceptions.ChunkedEncodingError,
                requests.exceptions.ContentDecodingError,
            ) as e:
                last_error = GlowmarktNetworkError(str(e))
                logger.warning(f"Request failed (attempt {attempt + 1}): {e}")
                continue
            except requests.RequestException as e:
                raise GlowmarktClientError(str(e)) from e

            if response.status_code >= 400:
                error = _error_for_status(response)
                logger.warning(f"Received API error: {error.message}")
                if isinstance(error, GlowmarktServerError):
                    last_error = error
                    continue
                raise error

            logger.debug(f"Received: {response.text}")
            try:
                return response.json()
            except ValueError as e:
                raise GlowmarktResponseError(f"Invalid JSON in response: {e}") from e

        raise last_error

    def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Any:
        return self._request("GET", path, params=params)

    @staticmethod
    def _decode(body: Any, parser: Callable[[Any], T]) -> T:
        try:
            return parser(body)
        except (KeyError, ValueError, TypeError) as e:
            raise GlowmarktResponseError(f"Unexpected response format: {e!r}") from e

    def _get_map(self, path: str, parser: Callable[[Any], T]) -> Dict[str, T]:
        body = self._get(path)
        if not isinstance(body, list):
            raise GlowmarktResponseError(f"Expected a list from {path}, got {type(body).__name__}")
        records = [self._decode(item, parser) for item in body]
        return {record.id: record for record in records}

    def _get_one(self, path: str, parser: Callable[[Any], T]) -> Optional[T]:
        try:
            body = self._get(path)
        except GlowmarktNotFoundError:
            return None
        return self._decode(body, parser)

    # -- user system ---------------------------------------------------------

    @classmethod
    def authenticate(
        cls,
        username: str,
        password: str,
        endpoint: Optional[GlowmarktEndpoint] = None,
        **kwargs,
    ) -> "GlowmarktApi":
        """Authenticate with a username and password.

        Args:
            username: Account username (email)
            password: Account password
            endpoint: Endpoint to authenticate against (default: the public API)
            **kwargs: Passed on to the constructor (session, retries, timeout)

        Returns:
            An API instance holding a valid token

        Raises:
            GlowmarktAuthError: If the credentials are rejected
        """
        api = cls("", endpoint=endpoint, **kwargs)
        logger.info(f"Authenticating as {username}")

        try:
            body = api._request(
                "POST",
                "auth",
                json={"username": username, "password": password},
                authenticated=False,
            )
            body = _validate_auth(body)

            api.token = api._decode(body, lambda b: b["token"])
            api.token_expiry = api._decode(body.get("exp"), parse_timestamp)
        except GlowmarktError:
            api.close()
            raise
        logger.debug(f"Authenticated with API until {iso(api.token_expiry)}")
        return api

    def validate(self) -> bool:
        """Validate the current token.

        Returns:
            True if the token is valid

        Raises:
            GlowmarktAuthError: If the token is invalid or expired
        """
        body = _validate_auth(self._get("auth"))
        self.token_expiry = self._decode(body.get("exp"), parse_timestamp)
        logger.debug(f"Authenticated with API until {iso(self.token_expiry)}")
        return True

    # -- device management system -------------------------------------------

    def device_types(self) -> Dict[str, DeviceType]:
        """Retrieve all of the known device types."""
        return self._get_map("devicetype", DeviceType.from_api)

    def devices(self) -> Dict[str, Device]:
        """Retrieve all of the devices registered for the account."""
        return self._get_map("device", Device.from_api)

    def device(self, device_id: str) -> Optional[Device]:
        """Retrieve a single device, or None if it does not exist."""
        return self._get_one(f"device/{device_id}", Device.from_api)

    # -- virtual entity system ----------------------------------------------

    def virtual_entities(self) -> Dict[str, VirtualEntity]:
        """Retrieve all of the virtual entities registered for the account."""
        return self._get_map("virtualentity", VirtualEntity.from_api)

    def virtual_entity(self, entity_id: str) -> Optional[VirtualEntity]:
        """Retrieve a single virtual entity, or None if it does not exist."""
        return self._get_one(f"virtualentity/{entity_id}", VirtualEntity.from_api)

    # -- resource system ------------------------------------------------------

    def resource_types(self) -> Dict[str, ResourceType]:
        """Retrieve all of the known resource types."""
        return self._get_map("resourcetype", ResourceType.from_api)

    def resources(self) -> Dict[str, Resource]:
        """Retrieve all resources."""
        return self._get_map("resource", Resource.from_api)

    def resource(self, resource_id: str) -> Optional[Resource]:
        """Retrieve a single resource, or None if it does not exist."""
        return self._get_one(f"resource/{resource_id}", Resource.from_api)

    def latest_tariff(self, resource_id: str) -> List[TariffData]:
        """Retrieve the tariff currently applied to a resource."""
        body = self._get(f"resource/{resource_id}/tariff")
        return self._decode(body, lambda b: [TariffData.from_api(t) for t in b["data"]])

    def tariff_list(self, resource_id: str) -> List[TariffListData]:
        """Retrieve the tariff history of a resource."""
        body = self._get(f"resource/{resource_id}/tariff-list")
        return self._decode(body, lambda b: [TariffListData.from_api(t) for t in b["data"]])

    def readings(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        period: ReadingPeriod,
    ) -> List[Reading]:
        """Retrieve the readings for a single resource.

        The API behaves strangely with non-UTC timezones, so `start` and
        `end` are converted to UTC first and all readings are returned in
        UTC. The range must fit within `period.max_days`; use
        `readings_range()` for longer ranges.

        Args:
            resource_id: Resource to read
            start: Start of the range
            end: End of the range
            period: Aggregation period of each reading

        Returns:
            Readings ordered as returned by the API
        """
        logger.debug(
            f"Requesting readings for {resource_id} in range {iso(start)} to {iso(end)}, "
            f"period {period.value}"
        )

        body = self._get(
            f"resource/{resource_id}/readings",
            params={
                "from": iso(start),
                "to": iso(end),
                "period": period.api_value,
                "offset": "0",
                "function": "sum",
            },
        )
        return self._decode(body, lambda b: [Reading.from_api(r, period) for r in b["data"]])

    def readings_range(
        self,
        resource_id: str,
        start: datetime,
        end: datetime,
        period: ReadingPeriod,
    ) -> List[Reading]:
        """Retrieve readings for a range of any length.

        The range is split with `split_periods()` and one request is made
        per chunk.
        """
        readings: List[Reading] = []
        for chunk_start, chunk_end in split_periods(start, end, period):
            readings.extend(self.readings(resource_id, chunk_start, chunk_end, period))
        return readings
