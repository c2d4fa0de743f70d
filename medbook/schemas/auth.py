"""Authentication and profile schemas."""
import re
from typing import Annotated, Optional
from pydantic import (
    AfterValidator, BeforeValidator, EmailStr, Field, WrapValidator,
    ValidationError as PydanticValidationError, model_validator
)

from .base import CamelModel
from ..core.security import UserRole

MOBILE_PATTERN = re.compile(r"^\d{10}$")
PASSWORD_PATTERN = re.compile(r"^(?=.*[A-Z])(?=.*[\W_]).{6,}$")

PASSWORD_RULE = (
    "Password must have at least 6 characters, 1 uppercase letter, "
    "and 1 special character!"
)


def _blank_to_none(value):
    if isinstance(value, str) and not value.strip():
        return None
    return value


def _email_format(value, handler):
    try:
        return handler(value)
    except PydanticValidationError:
        raise ValueError("Invalid email format!")


def _check_mobile(value: Optional[str]) -> Optional[str]:
    if value is not None and not MOBILE_PATTERN.match(value):
        raise ValueError("Mobile number must be 10 digits only!")
    return value


def _check_password(value: Optional[str]) -> Optional[str]:
    if value is not None and not PASSWORD_PATTERN.match(value):
        raise ValueError(PASSWORD_RULE)
    return value


# Blank strings count as absent; anything else must be a valid address
Email = Annotated[
    Optional[EmailStr], BeforeValidator(_blank_to_none), WrapValidator(_email_format)
]
Mobile = Annotated[Optional[str], AfterValidator(_check_mobile)]
Password = Annotated[Optional[str], AfterValidator(_check_password)]


class UserRegister(CamelModel):
    """Request schema for registration."""
    name: Optional[str] = None
    email: Email = None
    mobile: Mobile = None
    password: Password = None

    @model_validator(mode="after")
    def check_required(self):
        if not all([self.name, self.email, self.mobile, self.password]):
            raise ValueError("All fields are required.")
        return self

    model_config = {
        "json_schema_extra": {
            "example": {
                "name": "Jane Doe",
                "email": "jane@example.com",
                "mobile": "9876543210",
                "password": "Secret#1"
            }
        }
    }


class UserLogin(CamelModel):
    """Request schema for login."""
    email: str
    password: str


class ProfileUpdate(CamelModel):
    """Partial profile update; absent fields are kept."""
    name: Optional[str] = None
    email: Email = None


class ChangePassword(CamelModel):
    current_password: str
    new_password: Annotated[str, AfterValidator(_check_password)]


class UserResponse(CamelModel):
    id: int
    name: str
    email: str
    mobile: str
    role: UserRole


class AuthResponse(CamelModel):
    """Returned by register and login."""
    success: bool = True
    message: str
    user: UserResponse
    token: str


class ProfileResponse(CamelModel):
    success: bool = True
    message: Optional[str] = None
    user: UserResponse


class MessageResponse(CamelModel):
    success: bool = True
    message: str = Field(..., description="Human-readable outcome")
