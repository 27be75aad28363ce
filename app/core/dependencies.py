# app/core/dependencies.py
import logging
from uuid import UUID

from fastapi import BackgroundTasks, Depends, HTTPException, Query, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.container import ServiceContainer
from app.core.security import TokenVerifier
from app.database import get_db
from app.domains.chat.service import ChatService
from app.domains.document.service import DocumentService
from models import User

logger = logging.getLogger(__name__)

security = HTTPBearer(auto_error=False)
verifier = TokenVerifier()


async def get_access_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    access_token: str | None = Query(None, description="Token for clients that cannot set headers"),
) -> str:
    """Bearer header, or the ``access_token`` query parameter used by EventSource."""
    token = credentials.credentials if credentials else access_token
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication token is required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token


async def validate_token(token: str = Depends(get_access_token)) -> dict:
    """Validate and decode the access token.

    Returns:
        dict: Decoded token payload

    Raises:
        HTTPException: If token is invalid or expired
    """
    return verifier.verify_token(token)


async def get_current_user(
    request: Request,
    payload: dict = Depends(validate_token),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the user named by the token's ``sub`` claim.

    Raises:
        HTTPException: If the user is unknown or inactive
    """
    try:
        user_id = UUID(str(payload.get("sub")))
    except ValueError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload - malformed user ID",
        ) from e

    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="User account is inactive")

    request.state.user_id = user.id
    return user


def get_services(request: Request) -> ServiceContainer:
    return request.app.state.services


def get_chat_service(
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    services: ServiceContainer = Depends(get_services),
) -> ChatService:
    return ChatService(db, services, background_tasks)


def get_document_service(
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    services: ServiceContainer = Depends(get_services),
) -> DocumentService:
    return DocumentService(db, services, background_tasks)
