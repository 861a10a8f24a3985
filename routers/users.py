"""Auth and profile endpoints.

Callers present an identity-provider token; these routes link that identity
to an internal user record.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from core.auth import AuthContext, get_current_user
from core.database import get_db
from core.services.activity_service import ActivityService
from models.activity import ActivityAction
from models.user import User
from schemas.user_schemas import RegisterUserRequest, UpdateProfileRequest, UserResponse

logger = logging.getLogger(__name__)
router = APIRouter()


async def _get_user_by_external_id(db: AsyncSession, external_id: str) -> User | None:
    result = await db.execute(select(User).filter(User.external_id == external_id))
    return result.scalars().first()


async def get_registered_user(
    auth: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Internal user for the caller's token; 404 if they never registered."""
    user = await _get_user_by_external_id(db, auth.user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return user


@router.post("/register", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def register_user(
    request: RegisterUserRequest,
    auth: AuthContext = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Create the internal user record for a verified identity."""
    filters = [User.external_id == auth.user_id]
    if auth.email:
        filters.append(User.email == auth.email)
    result = await db.execute(select(User).filter(or_(*filters)))
    if result.scalars().first():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")

    user = User(
        external_id=auth.user_id,
        email=auth.email or None,
        display_name=request.name or auth.name or None,
        profile_picture=request.profilePicture or auth.picture or None,
        preference=request.preference,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent registration for the same identity won the race
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="User already exists")
    await db.refresh(user)

    logger.info("Registered user %s for subject %s", user.id, auth.user_id)
    await ActivityService(db).log_activity(
        user.id, ActivityAction.USER_REGISTER, entity_type="user", entity_id=user.id, entity_name=user.display_name
    )
    return user


@router.post("/login", response_model=UserResponse)
async def login_user(
    user: User = Depends(get_registered_user),
    db: AsyncSession = Depends(get_db),
):
    """Record a login for an already-registered user."""
    user.update_last_login()
    await db.commit()
    await db.refresh(user)

    await ActivityService(db).log_activity(
        user.id, ActivityAction.USER_LOGIN, entity_type="user", entity_id=user.id, entity_name=user.display_name
    )
    return user


@router.get("/profile", response_model=UserResponse)
async def get_profile(user: User = Depends(get_registered_user)):
    return user


@router.put("/profile", response_model=UserResponse)
async def update_profile(
    request: UpdateProfileRequest,
    user: User = Depends(get_registered_user),
    db: AsyncSession = Depends(get_db),
):
    """Update display name, avatar or preference. Omitted fields are left unchanged."""
    if request.displayName is not None:
        user.display_name = request.displayName
    if request.profilePicture is not None:
        user.profile_picture = request.profilePicture
    if request.preference is not None:
        user.preference = request.preference

    try:
        await db.commit()
    except Exception as e:
        logger.error("Database error updating profile for %s: %s", user.id, e)
        await db.rollback()
        raise HTTPException(status_code=500, detail="Database operation failed")
    await db.refresh(user)
    return user
