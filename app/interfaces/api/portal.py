"""Portal routes — provision the caller and hand out Odoo portal access."""

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.config import OdooConfig
from app.infrastructure.database import get_db
from app.infrastructure.odoo_api import OdooAPIClient
from app.infrastructure.steve_api import SteveAPIClient
from app.application.services.credential_service import build_portal_login_url, rotate_api_key
from app.application.services.reconciliation_service import reconcile_user
from app.domain.models.user import User
from app.domain.schemas.user import ApiKeyRead, OidcIdentity, PortalLoginResponse
from app.interfaces.api.deps import get_current_identity, get_current_user
from app.interfaces.deps import get_odoo_client, get_odoo_settings, get_steve_client

router = APIRouter(tags=["Portal"])


async def _login_url(
    identity: OidcIdentity,
    db: Session,
    odoo: OdooAPIClient,
    steve: SteveAPIClient,
    odoo_config: OdooConfig,
) -> str:
    user = await reconcile_user(db, identity, odoo, steve, odoo_config)
    return build_portal_login_url(db, user.user_id, odoo, odoo_config)


@router.get("/", response_class=RedirectResponse, status_code=302)
async def portal_redirect(
    identity: OidcIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    odoo: OdooAPIClient = Depends(get_odoo_client),
    steve: SteveAPIClient = Depends(get_steve_client),
    odoo_config: OdooConfig = Depends(get_odoo_settings),
):
    """Reconcile the caller and redirect into the Odoo portal."""
    url = await _login_url(identity, db, odoo, steve, odoo_config)
    return RedirectResponse(url, status_code=302)


@router.get("/api/portal/login-url", response_model=PortalLoginResponse)
async def portal_login_url(
    identity: OidcIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
    odoo: OdooAPIClient = Depends(get_odoo_client),
    steve: SteveAPIClient = Depends(get_steve_client),
    odoo_config: OdooConfig = Depends(get_odoo_settings),
):
    url = await _login_url(identity, db, odoo, steve, odoo_config)
    return PortalLoginResponse(url=url)


@router.post("/api/portal/rotate-key", response_model=ApiKeyRead)
async def rotate_key(
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    odoo: OdooAPIClient = Depends(get_odoo_client),
    odoo_config: OdooConfig = Depends(get_odoo_settings),
):
    credential = await rotate_api_key(db, user.user_id, odoo, odoo_config)
    return ApiKeyRead.model_validate(credential)
