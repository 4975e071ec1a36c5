"""Domain models for users and authentication."""
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, Optional
from pydantic import AfterValidator, BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from healthportal.core.security import BCRYPT_MAX_PASSWORD_BYTES


class UserRole(str, Enum):
    """Closed set of portal roles. Anything else is rejected at the boundary."""
    PATIENT = "patient"
    DOCTOR = "doctor"
    NURSE = "nurse"
    ADMIN = "admin"


class Gender(str, Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class TokenType(str, Enum):
    ACCESS = "access"
    REFRESH = "refresh"


class CamelModel(BaseModel):
    """Base for models exchanged with the SPA, which speaks camelCase JSON."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True


class User(BaseModel):
    """Full user record as held by the credential store.

    Carries the password hash and single-use tokens, so it never leaves the
    auth service; clients only ever see ``UserPublic``.
    """
    id: str
    email: str
    password_hash: str
    first_name: str
    last_name: str
    role: UserRole
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None
    is_active: bool = True
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    def to_public(self) -> "UserPublic":
        return UserPublic.model_validate(self.model_dump(include=set(UserPublic.model_fields)))


class UserPublic(CamelModel):
    """Client-facing user representation. Has no credential fields."""
    id: str
    email: str
    first_name: str
    last_name: str
    role: UserRole
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None
    is_active: bool = True
    is_email_verified: bool = False
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class CurrentUser(BaseModel):
    """Minimal identity attached to an authenticated request."""
    id: str
    email: str
    role: UserRole


class TokenClaims(BaseModel):
    """Verified JWT payload.

    Attributes:
        sub: Subject (user ID)
        email: User email at issue time
        role: User role at issue time
        type: access or refresh
        jti: Unique token ID
        iat: Issued at
        exp: Expiration
    """
    sub: str
    email: str
    role: UserRole
    type: TokenType
    jti: str
    iat: datetime
    exp: datetime


class TokenPair(BaseModel):
    access_token: str
    refresh_token: str

    def to_response(self) -> Dict[str, str]:
        return {"token": self.access_token, "refreshToken": self.refresh_token}


class AuthResult(BaseModel):
    """Outcome of a successful register or login."""
    user: UserPublic
    tokens: TokenPair

    def to_response(self) -> Dict[str, Any]:
        return {"user": self.user.model_dump(mode="json", by_alias=True), **self.tokens.to_response()}


def _check_password_length(value: str) -> str:
    if len(value.encode("utf-8")) > BCRYPT_MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {BCRYPT_MAX_PASSWORD_BYTES} bytes")
    return value


Password = Annotated[str, Field(min_length=6), AfterValidator(_check_password_length)]


class RegisterRequest(CamelModel):
    """Registration payload."""
    email: EmailStr
    password: Password
    first_name: str = Field(min_length=1, max_length=50)
    last_name: str = Field(min_length=1, max_length=50)
    role: UserRole
    phone: Optional[str] = Field(default=None, pattern=r"^\+?[\d\s\-\(\)]+$")
    date_of_birth: Optional[date] = None
    gender: Optional[Gender] = None
    address: Optional[str] = Field(default=None, max_length=255)

    @field_validator("date_of_birth")
    @classmethod
    def check_date_of_birth(cls, value: Optional[date]) -> Optional[date]:
        if value is not None and value > date.today():
            raise ValueError("Date of birth cannot be in the future")
        return value


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6)

    class Config:
        json_schema_extra = {
            "example": {
                "email": "patient@demo.com",
                "password": "demo123"
            }
        }


class RefreshRequest(CamelModel):
    # Optional so a missing field gets the dedicated "Refresh token required" message
    refresh_token: Optional[str] = None


class ResetPasswordRequest(CamelModel):
    email: EmailStr


class ResetPasswordConfirmRequest(CamelModel):
    token: str = Field(min_length=1)
    password: Password


class VerifyEmailRequest(CamelModel):
    token: str = Field(min_length=1)
