"""SteVe OCPP backend HTTP client.

Thin typed wrapper around the SteVe REST API v1:
- transactions: read STOPPED sessions, optionally in a FROM_TO window
- ocppTags: look up, create and update RFID tags

No retries here; a failed call surfaces as ``SystemException`` and the next
natural trigger (login, scheduler tick) tries again.
"""

from datetime import datetime
from typing import Any, Optional

import httpx
import structlog

from app.config import SteveConfig
from app.core.exceptions import ErrorCode, ErrorCodes, SystemException
from app.core.time_utils import format_steve, utc_now

logger = structlog.get_logger(__name__)

BLOCKED_MAX_ACTIVE = 0
ACTIVE_MAX_ACTIVE = 1
TAG_NOTE = "User created by API"


class SteveAPIClient:
    """Client for the SteVe REST API."""

    def __init__(self, config: SteveConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.headers = {"Content-Type": "application/json"}
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            auth=(self.config.username, self.config.password),
            headers=self.headers,
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )

    async def _request(self, method: str, path: str, error: ErrorCode, **kwargs: Any) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            logger.warning("SteVe request timed out", method=method, path=path)
            raise SystemException(
                ErrorCodes.SYSTEM.SERVICE_UNAVAILABLE,
                f"SteVe did not answer within {self.config.timeout_seconds}s",
                retryable=True,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("SteVe connection error", method=method, path=path, error=str(e))
            raise SystemException(error, details={"error": str(e)}, retryable=True) from e

    @staticmethod
    def _fail(response: httpx.Response, error: ErrorCode) -> SystemException:
        try:
            payload = response.json()
        except ValueError:
            payload = {"body": response.text[:200]}
        logger.warning("SteVe returned an error", status_code=response.status_code, payload=payload)
        return SystemException(error, details={"status_code": response.status_code, "payload": payload})

    @staticmethod
    def _json(response: httpx.Response, error: ErrorCode) -> Any:
        try:
            return response.json()
        except ValueError as e:
            logger.warning("SteVe returned a non-JSON body", status_code=response.status_code)
            raise SystemException(
                error,
                details={"status_code": response.status_code, "body": response.text[:200]},
            ) from e

    async def get_transactions(self, since: Optional[datetime] = None, until: Optional[datetime] = None) -> list[dict]:
        """Fetch STOPPED transactions, all of them when ``since`` is None."""
        params = {"type": "STOPPED"}
        if since is not None:
            params["periodType"] = "FROM_TO"
            params["from"] = format_steve(since)
            params["to"] = format_steve(until or utc_now())
        else:
            params["periodType"] = "ALL"

        error = ErrorCodes.STEVE.TRANSACTION_FETCH_FAILED
        response = await self._request("GET", self.config.transactions_uri, error, params=params)
        if response.status_code != 200:
            raise self._fail(response, error)

        data = self._json(response, error)
        if not isinstance(data, list):
            raise SystemException(error, "Unexpected transaction payload", details={"payload": data})
        logger.debug("Fetched SteVe transactions", count=len(data), **params)
        return data

    async def get_ocpp_tags(self, id_tag: str) -> list[dict]:
        error = ErrorCodes.STEVE.USER_FETCH_FAILED
        response = await self._request("GET", self.config.ocpp_tags_uri, error, params={"idTag": id_tag})
        if response.status_code != 200:
            raise self._fail(response, error)
        return self._json(response, error)

    async def create_ocpp_tag(self, id_tag: str, blocked: bool = True) -> dict:
        error = ErrorCodes.STEVE.USER_CREATE_FAILED
        payload = {
            "idTag": id_tag,
            "maxActiveTransactionCount": BLOCKED_MAX_ACTIVE if blocked else ACTIVE_MAX_ACTIVE,
            "note": TAG_NOTE,
        }
        response = await self._request("POST", self.config.ocpp_tags_uri, error, json=payload)
        if response.status_code != 201:
            raise self._fail(response, error)
        return self._json(response, error)

    async def update_ocpp_tag(self, ocpp_tag_pk: int, id_tag: str, max_active_transactions: int) -> dict:
        error = ErrorCodes.STEVE.USER_UPDATE_FAILED
        payload = {"idTag": id_tag, "maxActiveTransactionCount": max_active_transactions}
        response = await self._request("PUT", f"{self.config.ocpp_tags_uri}/{ocpp_tag_pk}", error, json=payload)
        if response.status_code != 200:
            raise self._fail(response, error)
        return self._json(response, error)

    async def check_connection(self) -> bool:
        """Query the tag endpoint with a dummy id; True when SteVe answers 200."""
        try:
            await self.get_ocpp_tags("NETWORK_TEST")
        except SystemException as e:
            logger.error("SteVe connection failed", error=e.message)
            return False
        logger.info("SteVe connection successful", base_url=self.base_url)
        return True
