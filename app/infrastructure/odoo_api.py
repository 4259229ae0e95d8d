"""Odoo billing backend HTTP client.

Covers the internal endpoints this service calls (user creation, API key
rotation, invoice creation) and the portal login URL it hands to browsers.
Response signatures are checked by the callers, which know the expected
message layout.
"""

from typing import Any, Optional
from urllib.parse import urlencode

import httpx
import structlog

from app.config import OdooConfig
from app.core.exceptions import ErrorCode, ErrorCodes, SystemException

logger = structlog.get_logger(__name__)


class OdooAPIClient:
    """Client for the Odoo internal API."""

    def __init__(self, config: OdooConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.config = config
        self.base_url = config.host.rstrip("/")
        self.headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {config.admin_api_key}",
        }
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.config.timeout_seconds,
            transport=self._transport,
        )

    async def _post(self, path: str, payload: dict, error: ErrorCode) -> httpx.Response:
        try:
            async with self._client() as client:
                return await client.post(path, json=payload)
        except httpx.TimeoutException as e:
            logger.warning("Odoo request timed out", path=path)
            raise SystemException(
                ErrorCodes.SYSTEM.SERVICE_UNAVAILABLE,
                f"Odoo did not answer within {self.config.timeout_seconds}s",
                retryable=True,
            ) from e
        except httpx.HTTPError as e:
            logger.warning("Odoo connection error", path=path, error=str(e))
            raise SystemException(error, details={"error": str(e)}, retryable=True) from e

    @staticmethod
    def _fail(response: httpx.Response, error: ErrorCode) -> SystemException:
        try:
            body = response.json()
            message = body.get("error") if isinstance(body, dict) else None
        except ValueError:
            body, message = {"body": response.text[:200]}, None
        logger.warning("Odoo returned an error", status_code=response.status_code, error=message)
        return SystemException(error, details={"status_code": response.status_code, "payload": body})

    @staticmethod
    def _json(response: httpx.Response, error: ErrorCode) -> dict:
        try:
            return response.json()
        except ValueError as e:
            logger.warning("Odoo returned a non-JSON body", status_code=response.status_code)
            raise SystemException(
                error,
                details={"status_code": response.status_code, "body": response.text[:200]},
            ) from e

    async def create_user(self, name: str, email: str) -> dict:
        """Create a portal user; returns the raw ``201`` body."""
        response = await self._post(
            self.config.user_creation_uri,
            {"name": name, "email": email},
            ErrorCodes.ODOO.USER_CREATE_FAILED,
        )
        if response.status_code == 201:
            return self._json(response, ErrorCodes.ODOO.USER_CREATE_FAILED)
        if response.status_code == 409:
            raise SystemException(ErrorCodes.ODOO.USER_EXISTS, details={"email": email})
        raise self._fail(response, ErrorCodes.ODOO.USER_CREATE_FAILED)

    async def rotate_api_key(self, payload: dict) -> dict:
        """Send a signed rotation request; returns the raw ``200`` body."""
        response = await self._post(
            self.config.rotate_api_key_uri,
            payload,
            ErrorCodes.ODOO.TOKEN_ROTATION_FAILED,
        )
        if response.status_code == 200:
            return self._json(response, ErrorCodes.ODOO.TOKEN_ROTATION_FAILED)
        raise self._fail(response, ErrorCodes.ODOO.TOKEN_ROTATION_FAILED)

    async def create_invoice(self, payload: dict) -> dict:
        response = await self._post(
            self.config.invoice_creation_uri,
            payload,
            ErrorCodes.ODOO.INVOICE_CREATE_FAILED,
        )
        if response.status_code in (200, 201):
            return self._json(response, ErrorCodes.ODOO.INVOICE_CREATE_FAILED)
        raise self._fail(response, ErrorCodes.ODOO.INVOICE_CREATE_FAILED)

    def portal_login_url(self, params: dict[str, Any]) -> str:
        return f"{self.base_url}{self.config.portal_login_uri}?{urlencode(params)}"

    async def check_connection(self) -> bool:
        """True when the Odoo host answers at all. There is no dedicated ping endpoint."""
        try:
            async with self._client() as client:
                response = await client.get("/")
        except httpx.HTTPError as e:
            logger.error("Odoo connection failed", error=str(e))
            return False
        if response.status_code >= 500:
            logger.error("Odoo connection failed", status_code=response.status_code)
            return False
        logger.info("Odoo connection successful", base_url=self.base_url)
        return True
