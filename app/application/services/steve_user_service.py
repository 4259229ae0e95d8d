"""SteVe user service — OCPP tag lookup, creation and (un)blocking.

A user's charge-point account is an OCPP tag whose idTag is the user's RFID.
Blocking is expressed through ``maxActiveTransactionCount`` (0 blocked,
1 active). Every SteVe answer is validated before it is trusted.
"""

from typing import Optional

import structlog
from pydantic import ValidationError

from app.core.exceptions import ErrorCodes, SystemException, ValidationException
from app.domain.models.user import User
from app.domain.schemas.steve import SteveOcppTag
from app.infrastructure.steve_api import ACTIVE_MAX_ACTIVE, BLOCKED_MAX_ACTIVE, SteveAPIClient
from app.application.services.activity_service import (
    EVENT_BLOCK,
    EVENT_UNBLOCK,
    SYSTEM_STEVE,
    record_activity,
)

logger = structlog.get_logger(__name__)


def _require_rfid(rfid: Optional[str]) -> str:
    if not rfid or not rfid.strip():
        raise ValidationException(ErrorCodes.VALIDATION.INVALID_ARGUMENT, "RFID must not be empty")
    return rfid


def validate_steve_tag(data: dict, rfid: str) -> SteveOcppTag:
    """Validate a SteVe tag payload and make sure it belongs to ``rfid``."""
    try:
        tag = SteveOcppTag.model_validate(data)
    except ValidationError as e:
        raise ValidationException(
            ErrorCodes.VALIDATION.INVALID_FORMAT,
            "Invalid OCPP tag payload from SteVe",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    if tag.idTag != rfid:
        raise ValidationException(
            ErrorCodes.VALIDATION.GIVEN_RETURN_DISCREPANCY,
            f'ID tag mismatch. Expected "{rfid}", but got "{tag.idTag}".',
        )
    return tag


async def get_steve_user(steve: SteveAPIClient, rfid: str) -> Optional[SteveOcppTag]:
    """Return the tag for ``rfid`` or None. More than one match is a hard error."""
    rfid = _require_rfid(rfid)
    tags = await steve.get_ocpp_tags(rfid)
    if not tags:
        return None
    if len(tags) > 1:
        raise SystemException(
            ErrorCodes.STEVE.MULTIPLE_TAGS,
            f"{len(tags)} OCPP tags found for one RFID",
            details={"rfid": rfid},
        )
    return validate_steve_tag(tags[0], rfid)


async def create_steve_user(steve: SteveAPIClient, rfid: str, blocked: bool = True) -> SteveOcppTag:
    """Create the OCPP tag for ``rfid`` and check SteVe echoed what was asked."""
    rfid = _require_rfid(rfid)
    logger.info("Creating user in SteVe", rfid=rfid, blocked=blocked)

    if await get_steve_user(steve, rfid) is not None:
        raise ValidationException(ErrorCodes.STEVE.USER_EXISTS, details={"rfid": rfid})

    created = validate_steve_tag(await steve.create_ocpp_tag(rfid, blocked=blocked), rfid)

    expected_max = BLOCKED_MAX_ACTIVE if blocked else ACTIVE_MAX_ACTIVE
    if created.blocked != blocked or created.maxActiveTransactionCount != expected_max:
        raise ValidationException(
            ErrorCodes.VALIDATION.GIVEN_RETURN_DISCREPANCY,
            "SteVe created the tag with an unexpected block status",
            details={"blocked": created.blocked, "maxActiveTransactionCount": created.maxActiveTransactionCount},
        )
    return created


async def _set_block(steve: SteveAPIClient, user: User, blocked: bool) -> SteveOcppTag:
    rfid = _require_rfid(user.rfid)
    if user.steve_id is None:
        raise ValidationException(ErrorCodes.USER.STEVE_NOT_FOUND, details={"user_id": user.user_id})

    max_active = BLOCKED_MAX_ACTIVE if blocked else ACTIVE_MAX_ACTIVE
    tag = validate_steve_tag(await steve.update_ocpp_tag(user.steve_id, rfid, max_active), rfid)

    if tag.maxActiveTransactionCount != max_active or tag.blocked != blocked:
        raise SystemException(
            ErrorCodes.STEVE.USER_UPDATE_FAILED,
            f"User could not be {'blocked' if blocked else 'unblocked'} in SteVe",
            details={"user_id": user.user_id},
        )

    event = EVENT_BLOCK if blocked else EVENT_UNBLOCK
    record_activity(user.user_id, event, SYSTEM_STEVE, rfid)
    logger.info("SteVe tag updated", user_id=user.user_id, blocked=blocked)
    return tag


async def block_steve_user(steve: SteveAPIClient, user: User) -> SteveOcppTag:
    return await _set_block(steve, user, blocked=True)


async def unblock_steve_user(steve: SteveAPIClient, user: User) -> SteveOcppTag:
    return await _set_block(steve, user, blocked=False)
