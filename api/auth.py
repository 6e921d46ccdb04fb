"""Authentication endpoints for user registration, login, and profile management."""

import logging

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_user
from core.errors import AuthenticationRequiredError, ConflictError, ValidationError
from core.security import create_access_token, get_password_hash, verify_password
from db.models.user import User
from db.session import get_session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


class SignUpForm(BaseModel):
    username: str
    email: str
    password: str


class LoginForm(BaseModel):
    email: str
    password: str


class ProfileUpdate(BaseModel):
    username: str | None = None
    email: str | None = None
    password: str | None = None


def _user_payload(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "is_admin": bool(user.is_admin),
    }


def _issue_token_response(user: User) -> dict:
    token = create_access_token(str(user.id))
    return {"access_token": token, "token_type": "bearer", "user": _user_payload(user)}


def _normalize_email(email: str) -> str:
    email = (email or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email address is required")
    return email


async def _ensure_email_available(db: AsyncSession, email: str, exclude_id: int | None = None):
    query = select(User.id).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    if (await db.execute(query)).first() is not None:
        raise ConflictError("Email already registered")


async def _commit_email_change(db: AsyncSession) -> None:
    """Commit, turning a unique-email race into the same conflict as the pre-check."""
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("Email already registered")


@router.post("/signup", status_code=status.HTTP_201_CREATED)
async def signup(form: SignUpForm, db: AsyncSession = Depends(get_session)) -> dict:
    """Register a new user and return an access token."""
    email = _normalize_email(form.email)
    username = form.username.strip()
    if not username:
        raise ValidationError("Username is required")
    if not form.password:
        raise ValidationError("Password is required")
    await _ensure_email_available(db, email)

    user = User(username=username, email=email, password_hash=get_password_hash(form.password))
    db.add(user)
    await _commit_email_change(db)
    await db.refresh(user)
    logger.info("User %s registered", user.id)
    return _issue_token_response(user)


@router.post("/login")
async def login(form: LoginForm, db: AsyncSession = Depends(get_session)) -> dict:
    """Authenticate user credentials and return an access token."""
    result = await db.execute(select(User).filter_by(email=(form.email or "").strip().lower()))
    user = result.scalars().first()
    if not user or not verify_password(form.password, user.password_hash):
        raise AuthenticationRequiredError("Invalid credentials")
    return _issue_token_response(user)


@router.get("/profile")
async def get_profile(user: User = Depends(get_current_user)) -> dict:
    """Return the current user."""
    return _user_payload(user)


@router.put("/profile")
async def update_profile(
    form: ProfileUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_session),
) -> dict:
    """Update the current user's username, email or password."""
    if form.username is not None:
        username = form.username.strip()
        if not username:
            raise ValidationError("Username cannot be empty")
        user.username = username
    if form.email is not None:
        email = _normalize_email(form.email)
        if email != user.email:
            await _ensure_email_available(db, email, exclude_id=user.id)
            user.email = email
    if form.password:
        user.password_hash = get_password_hash(form.password)

    await _commit_email_change(db)
    await db.refresh(user)
    return _user_payload(user)
