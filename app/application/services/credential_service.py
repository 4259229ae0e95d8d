"""Credential service — Odoo portal login links and API key rotation.

Both handshakes are signed with the secret shared with Odoo
(``app.core.security``); the same field order is used for the rotation
request and Odoo's answer:

    timestamp, user_id, key, key_salt, salt
"""

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import OdooConfig
from app.core import security
from app.core.exceptions import (
    DatabaseException,
    ErrorCodes,
    HashVerificationException,
    IdMismatchException,
    SystemException,
    ValidationException,
)
from app.core.time_utils import utc_now
from app.domain.models.api_key import ApiKeyCredential
from app.domain.models.user import User
from app.domain.schemas.odoo import OdooRotatedKey
from app.infrastructure.database import transaction
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.repositories.user_repository import SQLAlchemyUserRepository
from app.application.services.activity_service import EVENT_KEY_ROTATION, SYSTEM_ODOO, record_activity
from app.application.services.reconciliation_service import get_user

logger = structlog.get_logger(__name__)


def get_active_credentials(db: Session, user: User) -> ApiKeyCredential:
    credential = SQLAlchemyUserRepository(db, User).get_active_api_key(user.user_id)
    if credential is None or not credential.key or not credential.salt:
        raise ValidationException(ErrorCodes.USER.ODOO_NO_CREDENTIALS, details={"user_id": user.user_id})
    return credential


def build_signed_payload(odoo_user_id: int, credential: ApiKeyCredential, secret: str) -> dict:
    """Fresh timestamp and salt, signed over the rotation/login field order."""
    payload = {
        "timestamp": security.signature_timestamp(),
        "user_id": odoo_user_id,
        "key": credential.key,
        "key_salt": credential.salt,
        "salt": security.generate_salt(),
    }
    payload["hash"] = security.sign_payload(payload, security.PORTAL_LOGIN_FIELDS, secret)
    return payload


def build_portal_login_url(
    db: Session,
    user_id: int,
    odoo: OdooAPIClient,
    odoo_config: OdooConfig,
) -> str:
    """Signed, time-stamped URL that logs the user into the Odoo portal."""
    user = get_user(db, user_id, require_odoo_user=True)
    credential = get_active_credentials(db, user)

    payload = build_signed_payload(user.odoo_user_id, credential, odoo_config.api_secret)
    params = {name: payload[name] for name in ("timestamp", "key", "key_salt", "salt", "hash")}
    return odoo.portal_login_url(params)


def _parse_rotation_response(response: dict, secret: str) -> OdooRotatedKey:
    try:
        rotated = OdooRotatedKey.model_validate(response)
    except ValidationError as e:
        raise SystemException(
            ErrorCodes.ODOO.TOKEN_ROTATION_FAILED,
            "Malformed rotation response from Odoo",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    # Nothing in the answer is trusted before the signature checks out
    if not security.verify_payload(rotated.model_dump(), security.ROTATION_FIELDS, secret):
        raise HashVerificationException()
    return rotated


async def rotate_api_key(
    db: Session,
    user_id: int,
    odoo: OdooAPIClient,
    odoo_config: OdooConfig,
) -> ApiKeyCredential:
    """Rotate the user's Odoo API key and store the new one in place of the old."""
    user = get_user(db, user_id, require_odoo_user=True)
    current = get_active_credentials(db, user)
    log = logger.bind(user_id=user.user_id, odoo_user_id=user.odoo_user_id)

    request = build_signed_payload(user.odoo_user_id, current, odoo_config.api_secret)
    rotated = _parse_rotation_response(await odoo.rotate_api_key(request), odoo_config.api_secret)

    if rotated.user_id != user.odoo_user_id:
        raise IdMismatchException(details={"expected": user.odoo_user_id, "received": rotated.user_id})

    repo = SQLAlchemyUserRepository(db, User)
    try:
        with transaction(db, "rotate api key"):
            if not repo.revoke_api_key(current.key_id, utc_now()):
                raise SystemException(
                    ErrorCodes.USER.TOKEN_ROTATION_FAILED,
                    "Active API key changed during rotation",
                )
            new_credential = repo.add_api_key(user.user_id, rotated.key, rotated.key_salt)
    except (DatabaseException, SystemException):
        # Odoo already switched keys; this needs manual reconciliation
        log.error("API key rotated in Odoo but not stored locally", key_id=current.key_id)
        raise

    db.refresh(new_credential)
    record_activity(user.user_id, EVENT_KEY_ROTATION, SYSTEM_ODOO, user.rfid)
    log.info("API key rotated", key_id=new_credential.key_id)
    return new_credential
