"""Request signing shared with the Odoo billing backend.

Every handshake with Odoo (portal login, API key rotation, user creation
acknowledgement) is authenticated by an HMAC-SHA-256 over a fixed-order
concatenation of its fields. The timestamp is always part of the message so
the receiving side can enforce freshness.
"""

import hashlib
import hmac
import secrets
from datetime import datetime
from typing import Any

from app.core.exceptions import ErrorCodes, ValidationException
from app.core.time_utils import as_utc, utc_now

SALT_BYTES = 16
RFID_PLACEHOLDER_BYTES = 10  # 20 hex chars, the OCPP 1.6 idTag limit

# Field order agreed with Odoo, one list per handshake.
PORTAL_LOGIN_FIELDS = ("timestamp", "user_id", "key", "key_salt", "salt")
ROTATION_FIELDS = ("timestamp", "user_id", "key", "key_salt", "salt")
USER_CREATION_FIELDS = ("timestamp", "user_id", "partner_id", "key", "key_salt", "salt")


def _is_blank(value: str | None) -> bool:
    return value is None or not str(value).strip()


def sign(message: str, secret: str) -> str:
    """Return the hex HMAC-SHA-256 digest of ``message`` keyed with ``secret``."""
    if _is_blank(message) or _is_blank(secret):
        raise ValidationException(
            ErrorCodes.VALIDATION.INVALID_ARGUMENT,
            "Message and secret must not be empty",
        )
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify(message: str, secret: str, digest: str | None) -> bool:
    """Recompute the signature and compare it in constant time."""
    if _is_blank(digest):
        return False
    expected = sign(message, secret)
    return hmac.compare_digest(expected, str(digest).lower())


def compose_message(*fields: Any) -> str:
    if any(field is None for field in fields):
        raise ValidationException(
            ErrorCodes.VALIDATION.MISSING_REQUIRED_FIELD,
            "Signed message fields must not be null",
        )
    return "".join(str(field) for field in fields)


def compose_from(payload: dict, field_order: tuple[str, ...]) -> str:
    """Build the signed message from ``payload`` in the given field order."""
    missing = [name for name in field_order if payload.get(name) is None]
    if missing:
        raise ValidationException(
            ErrorCodes.VALIDATION.MISSING_REQUIRED_FIELD,
            f"Missing signed fields: {', '.join(missing)}",
        )
    return compose_message(*(payload[name] for name in field_order))


def sign_payload(payload: dict, field_order: tuple[str, ...], secret: str) -> str:
    return sign(compose_from(payload, field_order), secret)


def verify_payload(payload: dict, field_order: tuple[str, ...], secret: str) -> bool:
    """Check the ``hash`` field of a payload received from Odoo."""
    try:
        message = compose_from(payload, field_order)
    except ValidationException:
        return False
    return verify(message, secret, payload.get("hash"))


def generate_salt() -> str:
    """Fresh URL-safe salt, one per login link or rotation request."""
    return secrets.token_urlsafe(SALT_BYTES)


def generate_rfid_placeholder() -> str:
    return secrets.token_hex(RFID_PLACEHOLDER_BYTES).upper()


def signature_timestamp(moment: datetime | None = None) -> str:
    """Timestamp in the format Odoo expects, e.g. ``20240101T10:00:00`` (UTC)."""
    moment = as_utc(moment) if moment else utc_now()
    return moment.strftime("%Y%m%dT%H:%M:%S")
