"""Credential store: persistence for user records.

All lookups normalize email (strip + lowercase) first. Records returned here
include the password hash and are meant for the auth service only; anything
client-facing goes through ``User.to_public()``.
"""
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.orm import Session, sessionmaker

from healthportal.core.exceptions import DuplicateEmail, TransientStoreFailure
from healthportal.core.logging import get_logger
from healthportal.domain.user import User
from healthportal.infrastructure.models import UserRow
from healthportal.utils.time import ensure_utc, utcnow

logger = get_logger(__name__)

_DATETIME_FIELDS = ("password_reset_expires", "last_login", "created_at", "updated_at")


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


def _to_user(row: UserRow) -> User:
    user = User.model_validate(row)
    return user.model_copy(update={name: ensure_utc(getattr(user, name)) for name in _DATETIME_FIELDS})


class UserStore:
    """SQLAlchemy-backed user table.

    Example:
        >>> store = UserStore(create_session_factory(engine))
        >>> user = store.create({"email": "A@X.com", ...})
        >>> store.find_by_email("a@x.com").id == user.id
        True
    """

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Unit of work: commit on success, map connectivity errors to TransientStoreFailure."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except (OperationalError, PoolTimeoutError) as e:
            session.rollback()
            logger.error(f"Credential store unavailable: {e}", exc_info=True)
            raise TransientStoreFailure() from e
        except DBAPIError as e:
            session.rollback()
            if e.connection_invalidated:
                logger.error(f"Credential store connection lost: {e}", exc_info=True)
                raise TransientStoreFailure() from e
            raise
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # -----------------
    # READS
    # -----------------

    def find_by_email(self, email: str) -> Optional[User]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        with self._session() as session:
            row = session.scalar(select(UserRow).where(UserRow.email == normalized))
            return _to_user(row) if row else None

    def find_by_id(self, user_id: str) -> Optional[User]:
        if not user_id:
            return None
        with self._session() as session:
            row = session.get(UserRow, user_id)
            return _to_user(row) if row else None

    def find_by_verification_token(self, token: str) -> Optional[User]:
        if not token:
            return None
        with self._session() as session:
            row = session.scalar(select(UserRow).where(UserRow.email_verification_token == token))
            return _to_user(row) if row else None

    def find_by_reset_token(self, token_digest: str) -> Optional[User]:
        if not token_digest:
            return None
        with self._session() as session:
            row = session.scalar(select(UserRow).where(UserRow.password_reset_token == token_digest))
            return _to_user(row) if row else None

    def list_users(self) -> List[User]:
        with self._session() as session:
            rows = session.scalars(select(UserRow).order_by(UserRow.created_at, UserRow.email)).all()
            return [_to_user(row) for row in rows]

    def count(self) -> int:
        with self._session() as session:
            return session.scalar(select(func.count()).select_from(UserRow)) or 0

    # -----------------
    # WRITES
    # -----------------

    def create(self, fields: Dict[str, Any]) -> User:
        """Insert a new user.

        Args:
            fields: Column values; ``email`` and ``password_hash`` are required,
                ``id`` is generated when absent

        Raises:
            DuplicateEmail: If the normalized email is already registered,
                including when a concurrent insert wins the race
        """
        values = dict(fields)
        values["email"] = normalize_email(values.get("email", ""))
        if not values["email"]:
            raise ValueError("email_blank")
        values.setdefault("id", str(uuid.uuid4()))

        try:
            with self._session() as session:
                existing = session.scalar(select(UserRow.id).where(UserRow.email == values["email"]))
                if existing is not None:
                    raise DuplicateEmail()
                row = UserRow(**values)
                session.add(row)
                session.flush()
                session.refresh(row)
                user = _to_user(row)
        except IntegrityError as e:
            logger.info("Concurrent registration hit the email unique constraint", extra={"error_type": "IntegrityError"})
            raise DuplicateEmail() from e

        logger.info("User created", extra={"user_id": user.id, "role": user.role.value})
        return user

    def _update(self, user_id: str, **values: Any) -> Optional[User]:
        with self._session() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                return None
            for name, value in values.items():
                setattr(row, name, value)
            row.updated_at = utcnow()
            session.flush()
            return _to_user(row)

    def update_last_login(self, user_id: str) -> Optional[User]:
        return self._update(user_id, last_login=utcnow())

    def set_password_reset_token(self, user_id: str, token_digest: str, expires_at: datetime) -> Optional[User]:
        """Store a reset token digest, replacing any previously issued one."""
        return self._update(user_id, password_reset_token=token_digest, password_reset_expires=expires_at)

    def update_password(self, user_id: str, password_hash: str) -> Optional[User]:
        """Replace the password hash and consume any outstanding reset token."""
        return self._update(
            user_id,
            password_hash=password_hash,
            password_reset_token=None,
            password_reset_expires=None,
        )

    def clear_verification(self, user_id: str) -> Optional[User]:
        return self._update(user_id, is_email_verified=True, email_verification_token=None)

    def mark_inactive(self, user_id: str) -> Optional[User]:
        return self._update(user_id, is_active=False)

    def mark_active(self, user_id: str) -> Optional[User]:
        return self._update(user_id, is_active=True)
