"""FastAPI dependencies — identity token and internal API key checks."""

import secrets
from typing import Optional

from fastapi import Depends, Header
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import ExpiredSignatureError, JWTError, jwt
from pydantic import ValidationError
from sqlalchemy.orm import Session

from app.config import get_settings
from app.core.exceptions import (
    ErrorCodes,
    ForbiddenException,
    UnauthorizedException,
    ValidationException,
)
from app.domain.models.user import User
from app.domain.schemas.user import OidcIdentity
from app.infrastructure.database import get_db
from app.infrastructure.repositories.user_repository import SQLAlchemyUserRepository

security = HTTPBearer(auto_error=False)


def decode_identity_token(token: str) -> OidcIdentity:
    """Verify the identity provider's token and extract the user claims."""
    settings = get_settings()
    options = {"verify_aud": bool(settings.OIDC_AUDIENCE)}
    try:
        claims = jwt.decode(
            token,
            settings.OIDC_JWT_KEY,
            algorithms=settings.OIDC_ALGORITHMS,
            audience=settings.OIDC_AUDIENCE or None,
            issuer=settings.OIDC_ISSUER or None,
            options=options,
        )
    except ExpiredSignatureError:
        raise UnauthorizedException("Expired token")
    except JWTError:
        raise UnauthorizedException("Invalid token")

    try:
        return OidcIdentity.model_validate(claims)
    except ValidationError as e:
        raise ValidationException(
            ErrorCodes.VALIDATION.MISSING_REQUIRED_FIELD,
            "Identity token lacks required claims",
            details={"fields": [".".join(str(p) for p in err["loc"]) for err in e.errors()]},
        )


def get_current_identity(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> OidcIdentity:
    if credentials is None:
        raise UnauthorizedException("Token not found")
    return decode_identity_token(credentials.credentials)


def get_current_user(
    identity: OidcIdentity = Depends(get_current_identity),
    db: Session = Depends(get_db),
) -> User:
    """The local user behind the token. Does not provision anything."""
    user = SQLAlchemyUserRepository(db, User).get_by_oauth_id(identity.sub)
    if user is None:
        raise ValidationException(ErrorCodes.USER.NOT_FOUND)
    return user


def require_internal_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    """Internal endpoints are called by operators and Odoo, not end users."""
    if not x_api_key or not secrets.compare_digest(x_api_key, get_settings().INTERNAL_API_KEY):
        raise ForbiddenException()
