from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.models.user import User
from app.services.gateway import GatewayClient, GatewayConfig
from app.services.notifier import Notifier, queue_purchase_email


settings = get_settings()

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login", auto_error=False)


def _user_from_token(token: str, db: Session) -> Optional[User]:
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        user_id_raw = payload.get("sub")
        if user_id_raw is None:
            return None
        user_id = int(user_id_raw)
    except (JWTError, ValueError, TypeError):
        return None
    return db.query(User).filter(User.id == user_id).first()


def get_current_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not token:
        raise credentials_exception

    user = _user_from_token(token, db)
    if user is None:
        raise credentials_exception
    return user


def get_optional_user(
    token: Annotated[Optional[str], Depends(oauth2_scheme)],
    db: Annotated[Session, Depends(get_db)],
) -> Optional[User]:
    """Like ``get_current_user`` but anonymous visitors get ``None``."""
    if not token:
        return None
    return _user_from_token(token, db)


def get_optional_gateway_client() -> Optional[GatewayClient]:
    if not settings.gateway_configured:
        return None
    return GatewayClient(GatewayConfig.from_settings(settings))


def get_gateway_client() -> GatewayClient:
    gateway = get_optional_gateway_client()
    if gateway is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Payment gateway is not configured",
        )
    return gateway


def get_notifier() -> Notifier:
    return queue_purchase_email


async def get_raw_body(request: Request) -> bytes:
    return await request.body()
