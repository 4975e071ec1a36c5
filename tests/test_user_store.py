"""Tests for the SQLAlchemy credential store."""
import threading
import pytest
from datetime import timedelta
from unittest.mock import MagicMock, patch
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.pool import StaticPool

from healthportal.core.exceptions import DuplicateEmail, TransientStoreFailure
from healthportal.core.security import hash_password
from healthportal.domain.user import UserRole
from healthportal.infrastructure.database import create_db_engine, create_session_factory, init_db
from healthportal.infrastructure.user_store import UserStore, normalize_email
from healthportal.utils.time import utcnow


def user_fields(email="ann@example.com", **overrides):
    fields = {
        "email": email,
        "password_hash": "$2b$04$notarealhashnotarealhashnotarealhashnotarealhash12",
        "first_name": "Ann",
        "last_name": "Lee",
        "role": UserRole.PATIENT,
    }
    fields.update(overrides)
    return fields


def failing_store(error):
    """Store whose every session raises ``error`` on first use."""
    session = MagicMock()
    session.scalar.side_effect = error
    session.get.side_effect = error
    return UserStore(MagicMock(return_value=session)), session


class TestEmailNormalization:

    @pytest.mark.parametrize("raw, expected", [
        ("A@X.com", "a@x.com"),
        ("  ann@Example.com ", "ann@example.com"),
        ("", ""),
        (None, ""),
    ])
    def test_normalize_email(self, raw, expected):
        assert normalize_email(raw) == expected

    def test_create_stores_lowercase(self, user_store):
        user = user_store.create(user_fields(email="Ann@Example.COM"))

        assert user.email == "ann@example.com"
        assert user_store.find_by_email("ANN@example.com").id == user.id


class TestCreate:
    """Test inserts and the uniqueness guarantee."""

    def test_create_assigns_id_and_timestamps(self, user_store):
        user = user_store.create(user_fields())

        assert len(user.id) == 36
        assert user.is_active is True
        assert user.created_at is not None
        assert user.created_at.tzinfo is not None

    def test_create_keeps_given_id(self, user_store):
        user = user_store.create(user_fields(id="550e8400-e29b-41d4-a716-446655440001"))

        assert user.id == "550e8400-e29b-41d4-a716-446655440001"

    def test_duplicate_email_rejected(self, user_store):
        user_store.create(user_fields(email="a@x.com"))

        with pytest.raises(DuplicateEmail):
            user_store.create(user_fields(email="A@X.COM"))
        assert user_store.count() == 1

    def test_integrity_error_maps_to_duplicate(self):
        """A concurrent insert that slips past the pre-check still surfaces as DuplicateEmail."""
        session = MagicMock()
        session.scalar.return_value = None
        session.flush.side_effect = IntegrityError("INSERT INTO users", {}, Exception("UNIQUE constraint failed"))
        store = UserStore(MagicMock(return_value=session))

        with pytest.raises(DuplicateEmail):
            store.create(user_fields())
        session.rollback.assert_called_once()

    def test_concurrent_registration_creates_one_user(self, tmp_path):
        """Racing inserts of the same email leave exactly one row."""
        engine = create_db_engine(f"sqlite:///{tmp_path / 'race.sqlite'}", timeout_seconds=5)
        init_db(engine)
        store = UserStore(create_session_factory(engine))
        outcomes = []
        barrier = threading.Barrier(5)

        def register():
            barrier.wait()
            try:
                store.create(user_fields(email="race@example.com"))
                outcomes.append("created")
            except DuplicateEmail:
                outcomes.append("duplicate")

        threads = [threading.Thread(target=register) for _ in range(5)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        engine.dispose()

        assert outcomes.count("created") == 1
        assert outcomes.count("duplicate") == 4
        assert store.count() == 1

    def test_blank_email_refused(self, user_store):
        with pytest.raises(ValueError):
            user_store.create(user_fields(email="  "))


class TestUpdates:
    """Test the mutations the auth workflows rely on."""

    def test_update_last_login(self, user_store):
        user = user_store.create(user_fields())
        updated = user_store.update_last_login(user.id)

        assert updated.last_login is not None
        assert updated.updated_at >= user.updated_at

    def test_reset_token_lookup_and_consumption(self, user_store):
        user = user_store.create(user_fields())
        expires = utcnow() + timedelta(hours=1)
        user_store.set_password_reset_token(user.id, "digest-1", expires)

        found = user_store.find_by_reset_token("digest-1")
        assert found.id == user.id
        assert abs((found.password_reset_expires - expires).total_seconds()) < 1

        new_hash = hash_password("brand-new-pass", rounds=4)
        updated = user_store.update_password(user.id, new_hash)
        assert updated.password_hash == new_hash
        assert updated.password_reset_token is None
        assert updated.password_reset_expires is None
        assert user_store.find_by_reset_token("digest-1") is None

    def test_new_reset_token_replaces_old(self, user_store):
        user = user_store.create(user_fields())
        user_store.set_password_reset_token(user.id, "digest-1", utcnow() + timedelta(hours=1))
        user_store.set_password_reset_token(user.id, "digest-2", utcnow() + timedelta(hours=1))

        assert user_store.find_by_reset_token("digest-1") is None
        assert user_store.find_by_reset_token("digest-2").id == user.id

    def test_clear_verification(self, user_store):
        user = user_store.create(user_fields(email_verification_token="verify-me"))
        user_store.clear_verification(user.id)

        assert user_store.find_by_verification_token("verify-me") is None
        assert user_store.find_by_id(user.id).is_email_verified is True

    def test_mark_inactive_and_active(self, user_store):
        user = user_store.create(user_fields())

        assert user_store.mark_inactive(user.id).is_active is False
        assert user_store.mark_active(user.id).is_active is True

    def test_update_missing_user_returns_none(self, user_store):
        assert user_store.mark_inactive("missing") is None
        assert user_store.find_by_id("missing") is None

    def test_list_users(self, user_store):
        user_store.create(user_fields(email="one@example.com"))
        user_store.create(user_fields(email="two@example.com", role=UserRole.DOCTOR))

        users = user_store.list_users()
        assert {u.email for u in users} == {"one@example.com", "two@example.com"}
        assert user_store.count() == 2


class TestTransientFailures:
    """Connectivity problems surface as a retryable error, never a hang or a raw driver error."""

    @pytest.mark.parametrize("error", [
        OperationalError("SELECT", {}, Exception("database is locked")),
        PoolTimeoutError("QueuePool limit reached"),
    ])
    def test_read_errors_become_transient(self, error):
        store, session = failing_store(error)

        with pytest.raises(TransientStoreFailure) as exc_info:
            store.find_by_email("ann@example.com")

        assert exc_info.value.status_code == 503
        session.rollback.assert_called_once()
        session.close.assert_called_once()

    def test_write_errors_become_transient(self):
        store, _ = failing_store(OperationalError("UPDATE", {}, Exception("server closed the connection")))

        with pytest.raises(TransientStoreFailure):
            store.mark_inactive("user-001")

    def test_sqlite_connections_have_busy_timeout(self):
        with patch("healthportal.infrastructure.database.create_engine") as mock_create:
            create_db_engine("sqlite://", timeout_seconds=2.5)

        kwargs = mock_create.call_args.kwargs
        assert kwargs["connect_args"]["timeout"] == 2.5
        assert kwargs["poolclass"] is StaticPool

    def test_server_databases_have_pool_and_connect_timeouts(self):
        with patch("healthportal.infrastructure.database.create_engine") as mock_create:
            create_db_engine("postgresql://portal:secret@db/portal", timeout_seconds=2.5)

        kwargs = mock_create.call_args.kwargs
        assert kwargs["pool_timeout"] == 2.5
        assert kwargs["connect_args"]["connect_timeout"] == 2
