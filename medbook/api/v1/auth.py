from fastapi import APIRouter, BackgroundTasks, Depends, Response, status
from sqlalchemy.orm import Session

from ...core.database import get_db
from ...core.config import settings
from ...api.deps import get_current_user, rate_limit_check
from ...services.auth_service import AuthService
from ...services.notifications import Notifier, get_notifier
from ...schemas.auth import (
    UserLogin, UserRegister, UserResponse, AuthResponse,
    ProfileResponse, ProfileUpdate, ChangePassword, MessageResponse
)
from ...models.user import User

router = APIRouter(prefix="/auth", tags=["Authentication"])

def _set_auth_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        settings.AUTH_COOKIE_NAME,
        token,
        httponly=True,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        samesite="strict",
    )

@router.post("/register", response_model=AuthResponse, status_code=status.HTTP_201_CREATED)
def register(
    user_data: UserRegister,
    response: Response,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    notifier: Notifier = Depends(get_notifier),
    _: None = Depends(rate_limit_check)
):
    """Register a new user."""
    auth_service = AuthService(db, notifier, schedule=background_tasks.add_task)
    user, token = auth_service.register_user(user_data)
    _set_auth_cookie(response, token)

    return AuthResponse(
        message="User registered successfully. A confirmation email has been sent.",
        user=UserResponse.model_validate(user),
        token=token,
    )

@router.post("/login", response_model=AuthResponse)
def login(
    login_data: UserLogin,
    response: Response,
    db: Session = Depends(get_db),
    _: None = Depends(rate_limit_check)
):
    """Authenticate user and return an access token."""
    auth_service = AuthService(db)
    user, token = auth_service.authenticate_user(login_data)
    _set_auth_cookie(response, token)

    return AuthResponse(
        message="Login successful.",
        user=UserResponse.model_validate(user),
        token=token,
    )

@router.get("/profile", response_model=ProfileResponse)
def get_profile(
    current_user: User = Depends(get_current_user)
):
    """Get current user information."""
    return ProfileResponse(user=UserResponse.model_validate(current_user))

@router.put("/profile", response_model=ProfileResponse)
def update_profile(
    profile_data: ProfileUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Update name and/or email of the current user."""
    user = AuthService(db).update_profile(current_user, profile_data)
    return ProfileResponse(
        message="Profile updated successfully.",
        user=UserResponse.model_validate(user),
    )

@router.patch("/change-password", response_model=MessageResponse)
def change_password(
    password_data: ChangePassword,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Change user password."""
    AuthService(db).change_password(current_user, password_data)
    return MessageResponse(message="Password changed successfully.")
