"""User routes — profile and charge-point tag blocking."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.infrastructure.database import get_db
from app.infrastructure.steve_api import SteveAPIClient
from app.application.services.reconciliation_service import get_user, resolve_link_state
from app.application.services.steve_user_service import block_steve_user, unblock_steve_user
from app.domain.models.user import User
from app.domain.schemas.user import TagStatusResponse, UserRead
from app.interfaces.api.deps import get_current_user, require_internal_api_key
from app.interfaces.deps import get_steve_client

router = APIRouter(prefix="/api/users", tags=["Users"])


def _user_read(user: User) -> UserRead:
    data = UserRead.model_validate(user)
    data.link_state = resolve_link_state(user).value
    return data


@router.get("/me", response_model=UserRead)
def get_me(user: User = Depends(get_current_user)):
    return _user_read(user)


@router.post(
    "/{user_id}/block",
    response_model=TagStatusResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def block_user(
    user_id: int,
    db: Session = Depends(get_db),
    steve: SteveAPIClient = Depends(get_steve_client),
):
    user = get_user(db, user_id)
    tag = await block_steve_user(steve, user)
    return TagStatusResponse(user_id=user.user_id, rfid=user.rfid, blocked=tag.blocked)


@router.post(
    "/{user_id}/unblock",
    response_model=TagStatusResponse,
    dependencies=[Depends(require_internal_api_key)],
)
async def unblock_user(
    user_id: int,
    db: Session = Depends(get_db),
    steve: SteveAPIClient = Depends(get_steve_client),
):
    user = get_user(db, user_id)
    tag = await unblock_steve_user(steve, user)
    return TagStatusResponse(user_id=user.user_id, rfid=user.rfid, blocked=tag.blocked)
