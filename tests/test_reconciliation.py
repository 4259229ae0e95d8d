"""Identity reconciliation across the local store, Odoo and SteVe."""

import httpx
import pytest

from app.application.services import reconciliation_service as reconciliation
from app.application.services.reconciliation_service import LinkState, resolve_link_state
from app.config import get_steve_config
from app.core.exceptions import (
    AlreadyLinkedException,
    DatabaseException,
    ErrorCodes,
    HashVerificationException,
    SystemException,
    ValidationException,
)
from app.domain.models.activity_log import ActivityLog
from app.domain.models.api_key import ApiKeyCredential
from app.domain.models.user import User
from app.domain.schemas.user import OidcIdentity
from app.infrastructure.steve_api import SteveAPIClient


def _identity(**overrides) -> OidcIdentity:
    claims = {"sub": "oidc|alice", "name": "Alice", "email": "alice@example.com", "rfid": "TAG0001"}
    claims.update(overrides)
    return OidcIdentity(**claims)


def _unreachable_steve() -> SteveAPIClient:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return SteveAPIClient(get_steve_config(), transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_new_identity_is_fully_linked(db, odoo, steve, odoo_config, fake_odoo, fake_steve) -> None:
    user = await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    assert resolve_link_state(user) == LinkState.FULLY_LINKED
    assert user.odoo_user_id == 501
    assert user.odoo_partner_id == 1501
    assert user.steve_id == fake_steve.tags["TAG0001"]["ocppTagPk"]
    assert fake_steve.tags["TAG0001"]["blocked"] is True
    assert fake_odoo.calls("/internal/user/create") == [{"name": "Alice", "email": "alice@example.com"}]

    credential = db.query(ApiKeyCredential).filter_by(user_id=user.user_id).one()
    assert credential.key == "key-501"
    assert credential.salt == "key-salt-501"
    assert credential.is_active

    (log,) = db.query(ActivityLog).filter_by(user_id=user.user_id).all()
    assert log.event_type == "Create"


@pytest.mark.asyncio
async def test_linked_user_is_left_alone(db, odoo, steve, odoo_config, fake_odoo, fake_steve) -> None:
    first = await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)
    second = await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    assert first.user_id == second.user_id
    assert len(fake_odoo.calls("/internal/user/create")) == 1
    assert len(fake_steve.tags) == 1
    assert db.query(User).count() == 1


@pytest.mark.asyncio
async def test_missing_rfid_gets_a_placeholder(db, odoo, steve, odoo_config) -> None:
    user = await reconciliation.reconcile_user(db, _identity(rfid=None), odoo, steve, odoo_config)

    assert len(user.rfid) == 20
    assert user.rfid == user.rfid.upper()


@pytest.mark.asyncio
async def test_profile_changes_are_taken_over(db, odoo, steve, odoo_config) -> None:
    await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    user = await reconciliation.reconcile_user(
        db, _identity(name="Alice B.", email="alice.b@example.com"), odoo, steve, odoo_config
    )

    assert user.name == "Alice B."
    assert user.email == "alice.b@example.com"


@pytest.mark.asyncio
async def test_odoo_failure_leaves_user_local_only(db, odoo, steve, odoo_config, fake_odoo, fake_steve) -> None:
    fake_odoo.create_status = 500

    with pytest.raises(SystemException) as exc_info:
        await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    assert exc_info.value.code == ErrorCodes.ODOO.USER_CREATE_FAILED.code
    user = db.query(User).one()
    assert resolve_link_state(user) == LinkState.LOCAL_ONLY
    assert fake_steve.tags == {}

    fake_odoo.create_status = 201
    user = await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)
    assert resolve_link_state(user) == LinkState.FULLY_LINKED


@pytest.mark.asyncio
async def test_steve_failure_resumes_without_recreating_odoo_user(db, odoo, steve, odoo_config, fake_odoo) -> None:
    with pytest.raises(SystemException) as exc_info:
        await reconciliation.reconcile_user(db, _identity(), odoo, _unreachable_steve(), odoo_config)

    assert exc_info.value.retryable
    user = db.query(User).one()
    assert resolve_link_state(user) == LinkState.BILLING_LINKED

    user = await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    assert resolve_link_state(user) == LinkState.FULLY_LINKED
    assert len(fake_odoo.calls("/internal/user/create")) == 1


@pytest.mark.asyncio
async def test_tampered_odoo_answer_is_rejected(db, odoo, steve, odoo_config, fake_odoo) -> None:
    fake_odoo.tamper_create = True

    with pytest.raises(HashVerificationException):
        await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    user = db.query(User).one()
    assert user.odoo_user_id is None
    assert db.query(ApiKeyCredential).count() == 0


@pytest.mark.asyncio
async def test_linking_twice_is_an_error(db, odoo, odoo_config, make_user, fake_odoo) -> None:
    user = make_user(odoo_user_id=42)

    with pytest.raises(AlreadyLinkedException) as exc_info:
        await reconciliation.link_billing_account(db, user, odoo, odoo_config)

    assert not exc_info.value.retryable
    assert exc_info.value.code == ErrorCodes.USER.ODOO_EXISTS.code
    assert fake_odoo.calls("/internal/user/create") == []


@pytest.mark.asyncio
async def test_existing_steve_tag_is_not_adopted(db, odoo, steve, odoo_config, fake_steve) -> None:
    fake_steve.add_tag("TAG0001")

    with pytest.raises(ValidationException) as exc_info:
        await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    assert exc_info.value.code == ErrorCodes.STEVE.USER_EXISTS.code
    assert resolve_link_state(db.query(User).one()) == LinkState.BILLING_LINKED


@pytest.mark.asyncio
async def test_tag_echo_mismatch_is_rejected(db, steve, make_user, fake_steve) -> None:
    user = make_user(odoo_user_id=42)
    fake_steve.echo_id_tag = "SOMEONE-ELSE"

    with pytest.raises(ValidationException) as exc_info:
        await reconciliation.link_charge_point_account(db, user, steve)

    assert exc_info.value.code == ErrorCodes.VALIDATION.GIVEN_RETURN_DISCREPANCY.code
    db.refresh(user)
    assert user.steve_id is None


@pytest.mark.asyncio
async def test_concurrent_first_login_resumes_existing_row(db, odoo, steve, odoo_config, make_user, monkeypatch) -> None:
    def lose_the_race(db, identity):
        make_user(oauth_id=identity.sub, rfid=identity.rfid)
        raise DatabaseException(ErrorCodes.DATABASE.DUPLICATE_ENTRY, retryable=True)

    monkeypatch.setattr(reconciliation, "create_local_user", lose_the_race)

    user = await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    assert db.query(User).count() == 1
    assert resolve_link_state(user) == LinkState.FULLY_LINKED


@pytest.mark.asyncio
async def test_rfid_taken_by_another_user_fails(db, odoo, steve, odoo_config, make_user) -> None:
    make_user(oauth_id="oidc|bob", rfid="TAG0001")

    with pytest.raises(DatabaseException) as exc_info:
        await reconciliation.reconcile_user(db, _identity(), odoo, steve, odoo_config)

    assert exc_info.value.code == ErrorCodes.DATABASE.DUPLICATE_ENTRY.code
    assert db.query(User).count() == 1
