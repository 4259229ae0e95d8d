"""Identity reconciliation — make sure a user exists locally, in Odoo and in SteVe.

Runs on every authentication event. The persisted user row is the only
state: each call re-reads it and performs just the steps that are missing,

    Unknown -> LocalOnly -> BillingLinked -> FullyLinked

so a failure at any step leaves the user where the next login resumes.
Completed steps are never re-run; linking a billing account twice is an
error (``AlreadyLinkedException``) rather than a no-op, to surface drift
between the systems.
"""

from enum import Enum
from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import OdooConfig
from app.core import security
from app.core.exceptions import (
    AlreadyLinkedException,
    DatabaseException,
    ErrorCodes,
    HashVerificationException,
    SystemException,
    ValidationException,
)
from app.domain.models.user import User
from app.domain.schemas.odoo import OdooUserCreated
from app.domain.schemas.user import OidcIdentity
from app.infrastructure.database import transaction
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.repositories.user_repository import SQLAlchemyUserRepository
from app.infrastructure.steve_api import SteveAPIClient
from app.application.services.activity_service import EVENT_CREATE, SYSTEM_LOCAL
from app.application.services.steve_user_service import create_steve_user

logger = structlog.get_logger(__name__)


class LinkState(str, Enum):
    UNKNOWN = "Unknown"
    LOCAL_ONLY = "LocalOnly"
    BILLING_PENDING = "BillingPending"
    BILLING_LINKED = "BillingLinked"
    CHARGE_POINT_PENDING = "ChargePointPending"
    FULLY_LINKED = "FullyLinked"


def resolve_link_state(user: Optional[User]) -> LinkState:
    """Derive the persisted state. The pending states only exist during a call."""
    if user is None:
        return LinkState.UNKNOWN
    if user.odoo_user_id is None:
        return LinkState.LOCAL_ONLY
    if user.steve_id is None:
        return LinkState.BILLING_LINKED
    return LinkState.FULLY_LINKED


def get_user(db: Session, user_id: int, require_odoo_user: bool = False) -> User:
    """Load a user by id, optionally requiring a linked billing account."""
    user = SQLAlchemyUserRepository(db, User).get_by_id(user_id)
    if user is None:
        raise ValidationException(ErrorCodes.USER.NOT_FOUND, details={"user_id": user_id})
    if require_odoo_user and user.odoo_user_id is None:
        raise ValidationException(ErrorCodes.USER.ODOO_NOT_FOUND, details={"user_id": user_id})
    return user


def create_local_user(db: Session, identity: OidcIdentity) -> User:
    """Unknown -> LocalOnly. User row and ``Create`` log entry share one transaction."""
    repo = SQLAlchemyUserRepository(db, User)
    rfid = identity.rfid or security.generate_rfid_placeholder()

    with transaction(db, "create user"):
        user = repo.create(
            {
                "oauth_id": identity.sub,
                "name": identity.name,
                "email": identity.email,
                "rfid": rfid,
            }
        )
        repo.record_activity(user.user_id, EVENT_CREATE, SYSTEM_LOCAL, rfid)

    db.refresh(user)
    logger.info("Local user created", user_id=user.user_id, oauth_id=identity.sub)
    return user


def refresh_profile(db: Session, user: User, identity: OidcIdentity) -> User:
    """Take over name and email changes reported by the identity provider."""
    changes = {}
    if identity.name != user.name:
        changes["name"] = identity.name
    if identity.email != user.email:
        changes["email"] = identity.email
    if not changes:
        return user

    with transaction(db, "refresh user profile"):
        SQLAlchemyUserRepository(db, User).update(user, changes)
    db.refresh(user)
    logger.info("User profile refreshed", user_id=user.user_id, fields=sorted(changes))
    return user


def _parse_user_created(payload: dict, secret: str) -> OdooUserCreated:
    try:
        created = OdooUserCreated.model_validate(payload)
    except ValidationError as e:
        raise SystemException(
            ErrorCodes.ODOO.USER_CREATE_FAILED,
            "Malformed user creation response from Odoo",
            details={"errors": e.errors(include_url=False, include_context=False)},
        ) from e

    if not security.verify_payload(created.model_dump(), security.USER_CREATION_FIELDS, secret):
        raise HashVerificationException(details={"odoo_user_id": created.user_id})
    return created


async def link_billing_account(
    db: Session,
    user: User,
    odoo: OdooAPIClient,
    odoo_config: OdooConfig,
) -> User:
    """LocalOnly -> BillingLinked: create the Odoo user and store its credentials."""
    if user.odoo_user_id is not None:
        raise AlreadyLinkedException(details={"user_id": user.user_id})

    log = logger.bind(user_id=user.user_id, state=LinkState.BILLING_PENDING.value)
    log.info("Creating Odoo user")

    payload = await odoo.create_user(user.name, user.email)
    created = _parse_user_created(payload, odoo_config.api_secret)

    repo = SQLAlchemyUserRepository(db, User)
    with transaction(db, "store odoo credentials"):
        locked = repo.get_for_update(user.user_id)
        if locked.odoo_user_id is not None:
            raise AlreadyLinkedException(details={"user_id": user.user_id})
        repo.update(
            locked,
            {"odoo_user_id": created.user_id, "odoo_partner_id": created.partner_id},
        )
        repo.add_api_key(user.user_id, created.key, created.key_salt)

    db.refresh(user)
    log.info("Odoo user linked", odoo_user_id=created.user_id, state=LinkState.BILLING_LINKED.value)
    return user


async def link_charge_point_account(db: Session, user: User, steve: SteveAPIClient) -> User:
    """BillingLinked -> FullyLinked: create the (blocked) OCPP tag and store its pk."""
    if user.steve_id is not None:
        raise ValidationException(ErrorCodes.USER.STEVE_EXISTS, details={"user_id": user.user_id})

    log = logger.bind(user_id=user.user_id, state=LinkState.CHARGE_POINT_PENDING.value)
    log.info("Creating SteVe tag", rfid=user.rfid)

    tag = await create_steve_user(steve, user.rfid, blocked=True)

    repo = SQLAlchemyUserRepository(db, User)
    with transaction(db, "store steve id"):
        locked = repo.get_for_update(user.user_id)
        if locked.steve_id is not None:
            raise ValidationException(ErrorCodes.USER.STEVE_EXISTS, details={"user_id": user.user_id})
        repo.update(locked, {"steve_id": tag.ocppTagPk})

    db.refresh(user)
    log.info("SteVe tag linked", steve_id=tag.ocppTagPk, state=LinkState.FULLY_LINKED.value)
    return user


async def reconcile_user(
    db: Session,
    identity: OidcIdentity,
    odoo: OdooAPIClient,
    steve: SteveAPIClient,
    odoo_config: OdooConfig,
) -> User:
    """Resolve or create the local user and back-fill missing downstream accounts."""
    repo = SQLAlchemyUserRepository(db, User)
    user = repo.get_by_oauth_id(identity.sub)

    if user is None:
        try:
            user = create_local_user(db, identity)
        except DatabaseException as e:
            # A concurrent login for the same subject won the insert
            if not e.retryable:
                raise
            user = repo.get_by_oauth_id(identity.sub)
            if user is None:
                raise
            logger.info("User created concurrently, resuming", user_id=user.user_id)
    else:
        user = refresh_profile(db, user, identity)

    if resolve_link_state(user) == LinkState.LOCAL_ONLY:
        user = await link_billing_account(db, user, odoo, odoo_config)

    if resolve_link_state(user) == LinkState.BILLING_LINKED:
        user = await link_charge_point_account(db, user, steve)

    return user
