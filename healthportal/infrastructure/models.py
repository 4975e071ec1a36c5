from sqlalchemy import Boolean, Column, Date, DateTime, Enum, String

from healthportal.domain.user import Gender, UserRole
from healthportal.infrastructure.database import Base
from healthportal.utils.time import utcnow


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String(36), primary_key=True)
    # Always stored lowercase; the unique index is what closes the duplicate-registration race
    email = Column(String(255), unique=True, index=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    role = Column(
        Enum(UserRole, name="user_role", values_callable=_enum_values, native_enum=False, validate_strings=True),
        nullable=False,
    )
    phone = Column(String(32), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(
        Enum(Gender, name="user_gender", values_callable=_enum_values, native_enum=False, validate_strings=True),
        nullable=True,
    )
    address = Column(String(255), nullable=True)
    profile_image = Column(String(512), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    is_email_verified = Column(Boolean, nullable=False, default=False)
    email_verification_token = Column(String(128), nullable=True, index=True)
    password_reset_token = Column(String(64), nullable=True, index=True)  # sha256 hex digest
    password_reset_expires = Column(DateTime(timezone=True), nullable=True)
    last_login = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)
