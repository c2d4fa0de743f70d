from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .base import translate_store_errors
from ..core.exceptions import ValidationError
from ..core.security import UserRole
from ..models.user import User


class UserStore:
    """Identity store: user lookup and persistence."""

    def __init__(self, db: Session):
        self.db = db

    def find_by_email(self, email: str) -> Optional[User]:
        with translate_store_errors(self.db, "user lookup by email"):
            return self.db.query(User).filter(User.email == email).first()

    def find_by_id(self, user_id: int, for_update: bool = False) -> Optional[User]:
        """Load a user; ``for_update`` takes a row lock until the next commit."""
        with translate_store_errors(self.db, "user lookup by id"):
            query = self.db.query(User).filter(User.id == user_id)
            if for_update:
                query = query.with_for_update()
            return query.first()

    def create(
        self,
        name: str,
        email: str,
        mobile: str,
        password_hash: str,
        role: UserRole = UserRole.USER,
    ) -> User:
        user = User(
            name=name,
            email=email,
            mobile=mobile,
            password_hash=password_hash,
            role=role,
        )
        with translate_store_errors(self.db, "user create"):
            self.db.add(user)
            try:
                self.db.commit()
            except IntegrityError:
                # Unique index on email lost a race with another registration
                self.db.rollback()
                raise ValidationError("User already exists.")
            self.db.refresh(user)
        return user

    def save(self, user: User) -> User:
        with translate_store_errors(self.db, "user save"):
            try:
                self.db.commit()
            except IntegrityError:
                self.db.rollback()
                raise ValidationError("Email already in use.")
            self.db.refresh(user)
        return user
