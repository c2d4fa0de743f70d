from sqlalchemy.orm import Session
from typing import Callable, Optional, Tuple
import logging

from ..models.user import User
from ..core.exceptions import NotFoundError, ValidationError
from ..core.security import verify_password, get_password_hash, create_access_token
from ..schemas.auth import UserRegister, UserLogin, ProfileUpdate, ChangePassword
from ..stores.user_store import UserStore
from .notifications import LoggingNotifier, NotificationDispatcher, Notifier, run_inline

logger = logging.getLogger(__name__)

class AuthService:
    def __init__(
        self,
        db: Session,
        notifier: Optional[Notifier] = None,
        schedule: Optional[Callable] = None,
    ):
        self.db = db
        self.users = UserStore(db)
        self.notifications = NotificationDispatcher(notifier or LoggingNotifier())
        self.schedule = schedule or run_inline

    def register_user(self, user_data: UserRegister) -> Tuple[User, str]:
        """Register a new user and issue an access token."""
        # Check if user already exists
        if self.users.find_by_email(user_data.email):
            raise ValidationError("User already exists.")

        new_user = self.users.create(
            name=user_data.name,
            email=user_data.email,
            mobile=user_data.mobile,
            password_hash=get_password_hash(user_data.password),
        )
        logger.info(f"Registered user {new_user.id}")

        self.schedule(self.notifications.user_registered, new_user.email, new_user.name)

        return new_user, create_access_token(new_user.id, new_user.role)

    def authenticate_user(self, login_data: UserLogin) -> Tuple[User, str]:
        """Check credentials and issue an access token."""
        user = self.users.find_by_email(login_data.email)

        if not user:
            raise NotFoundError("User not found.")

        if not verify_password(login_data.password, user.password_hash):
            logger.info(f"Failed login for user {user.id}")
            raise ValidationError("Invalid credentials.")

        return user, create_access_token(user.id, user.role)

    def update_profile(self, user: User, profile_data: ProfileUpdate) -> User:
        """Update name and/or email; absent fields keep their values."""
        if profile_data.email and profile_data.email != user.email:
            existing = self.users.find_by_email(profile_data.email)
            if existing and existing.id != user.id:
                raise ValidationError("Email already in use.")
            user.email = profile_data.email

        if profile_data.name:
            user.name = profile_data.name

        return self.users.save(user)

    def change_password(self, user: User, password_data: ChangePassword) -> User:
        # Verify current password
        if not verify_password(password_data.current_password, user.password_hash):
            raise ValidationError("Current password is incorrect.")

        user.password_hash = get_password_hash(password_data.new_password)
        user = self.users.save(user)
        logger.info(f"Password changed for user {user.id}")
        return user
