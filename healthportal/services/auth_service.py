"""Authentication service: registration, login, token refresh, password reset
and email verification on top of the credential store and token service.

Enumeration-sensitive operations (login, password reset request) return the
same outcome whatever the reason for failure, and login spends the same bcrypt
work whether or not the account exists.
"""
from datetime import date, timedelta
from typing import List, Optional

from healthportal.core.exceptions import (
    DuplicateEmail,
    InvalidCredentials,
    InvalidToken,
    TransientStoreFailure,
    UserNotFound,
)
from healthportal.core.logging import get_logger, LogTimer
from healthportal.core.security import generate_token, hash_password, token_digest, verify_password
from healthportal.core.tokens import TokenService
from healthportal.domain.user import (
    AuthResult,
    CurrentUser,
    Gender,
    RegisterRequest,
    TokenPair,
    User,
    UserPublic,
    UserRole,
)
from healthportal.infrastructure.user_store import UserStore
from healthportal.services.notifications import EmailNotifier
from healthportal.utils.time import ensure_utc, utcnow

logger = get_logger(__name__)

RESET_REQUESTED_MESSAGE = "If the email exists, a reset link has been sent"
INVALID_RESET_TOKEN_MESSAGE = "Invalid or expired reset token"
INVALID_VERIFICATION_TOKEN_MESSAGE = "Invalid verification token"
INVALID_REFRESH_TOKEN_MESSAGE = "Invalid refresh token"

DEMO_USERS = [
    {
        "id": "550e8400-e29b-41d4-a716-446655440001",
        "email": "admin@demo.com",
        "first_name": "Admin",
        "last_name": "User",
        "role": UserRole.ADMIN,
        "phone": "+1-555-0101",
        "date_of_birth": date(1980, 1, 1),
        "gender": Gender.OTHER,
    },
    {
        "id": "550e8400-e29b-41d4-a716-446655440002",
        "email": "doctor@demo.com",
        "first_name": "Dr. Sarah",
        "last_name": "Johnson",
        "role": UserRole.DOCTOR,
        "phone": "+1-555-0102",
        "date_of_birth": date(1975, 5, 15),
        "gender": Gender.FEMALE,
    },
    {
        "id": "550e8400-e29b-41d4-a716-446655440003",
        "email": "nurse@demo.com",
        "first_name": "Nurse",
        "last_name": "Mary",
        "role": UserRole.NURSE,
        "phone": "+1-555-0103",
        "date_of_birth": date(1985, 8, 22),
        "gender": Gender.FEMALE,
    },
    {
        "id": "550e8400-e29b-41d4-a716-446655440004",
        "email": "patient@demo.com",
        "first_name": "John",
        "last_name": "Doe",
        "role": UserRole.PATIENT,
        "phone": "+1-555-0104",
        "date_of_birth": date(1990, 12, 10),
        "gender": Gender.MALE,
    },
]


def identity_of(user: User) -> CurrentUser:
    return CurrentUser(id=user.id, email=user.email, role=user.role)


class AuthService:
    """Orchestrates the account lifecycle.

    Args:
        store: Credential store
        tokens: Token service
        notifier: Email sender for reset and verification links
        bcrypt_rounds: bcrypt cost factor for new hashes
        reset_expires: Lifetime of a password reset token
        auto_verify_email: Mark new accounts verified instead of emailing a
            verification link
    """

    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        notifier: Optional[EmailNotifier] = None,
        bcrypt_rounds: int = 12,
        reset_expires: timedelta = timedelta(hours=1),
        auto_verify_email: bool = True,
    ):
        self.store = store
        self.tokens = tokens
        self.notifier = notifier or EmailNotifier()
        self.bcrypt_rounds = bcrypt_rounds
        self.reset_expires = reset_expires
        self.auto_verify_email = auto_verify_email
        # Compared against on unknown emails so login timing matches a real account
        self._dummy_hash = hash_password(generate_token()[:32], rounds=bcrypt_rounds)

    @classmethod
    def from_settings(cls, settings, store: UserStore, tokens: TokenService, notifier: Optional[EmailNotifier] = None) -> "AuthService":
        return cls(
            store=store,
            tokens=tokens,
            notifier=notifier or EmailNotifier(
                smtp_config=settings.smtp_config,
                frontend_url=settings.frontend_url,
                debug=settings.debug and not settings.is_production,
            ),
            bcrypt_rounds=settings.bcrypt_rounds,
            reset_expires=timedelta(minutes=settings.password_reset_expire_minutes),
            auto_verify_email=settings.auto_verify_email,
        )

    # -----------------
    # REGISTRATION & LOGIN
    # -----------------

    def register(self, request: RegisterRequest) -> AuthResult:
        """Create an account and sign it in.

        Raises:
            DuplicateEmail: If the email (case-insensitively) is taken
        """
        with LogTimer(logger, "user_registration"):
            if self.store.find_by_email(request.email) is not None:
                logger.warning("Registration rejected: email already registered")
                raise DuplicateEmail()

            verification_token = None if self.auto_verify_email else generate_token()
            user = self.store.create({
                "email": request.email,
                "password_hash": hash_password(request.password, rounds=self.bcrypt_rounds),
                "first_name": request.first_name,
                "last_name": request.last_name,
                "role": request.role,
                "phone": request.phone,
                "date_of_birth": request.date_of_birth,
                "gender": request.gender,
                "address": request.address,
                "is_active": True,
                "is_email_verified": self.auto_verify_email,
                "email_verification_token": verification_token,
            })

            if verification_token:
                self.notifier.send_email_verification(user, verification_token)

            tokens = self.tokens.issue_pair(identity_of(user))

        logger.info(f"New user registered as {user.role.value}", extra={"user_id": user.id})
        return AuthResult(user=user.to_public(), tokens=tokens)

    def login(self, email: str, password: str) -> AuthResult:
        """Verify credentials and issue a token pair.

        Raises:
            InvalidCredentials: Unknown email, wrong password or inactive
                account, indistinguishable to the caller
        """
        with LogTimer(logger, "user_authentication"):
            user = self.store.find_by_email(email)

            if user is None:
                verify_password(password, self._dummy_hash)
                logger.warning("Login failed: unknown email")
                raise InvalidCredentials()

            if not verify_password(password, user.password_hash):
                logger.warning("Login failed: wrong password", extra={"user_id": user.id})
                raise InvalidCredentials()

            if not user.is_active:
                logger.warning("Login failed: account deactivated", extra={"user_id": user.id})
                raise InvalidCredentials()

            user = self.store.update_last_login(user.id) or user
            tokens = self.tokens.issue_pair(identity_of(user))

        logger.info("User logged in", extra={"user_id": user.id})
        return AuthResult(user=user.to_public(), tokens=tokens)

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a brand-new pair.

        Raises:
            InvalidToken: Bad refresh token, or its user is gone or inactive
        """
        try:
            claims = self.tokens.verify_refresh(refresh_token)
        except InvalidToken:
            raise InvalidToken(INVALID_REFRESH_TOKEN_MESSAGE)

        user = self.store.find_by_id(claims.sub)
        if user is None or not user.is_active:
            logger.warning("Refresh rejected: user missing or inactive", extra={"user_id": claims.sub})
            raise InvalidToken(INVALID_REFRESH_TOKEN_MESSAGE)

        # Rotation: the presented refresh token is retired when revocation is on.
        # Losing the atomic claim means a concurrent refresh already used it.
        if self.tokens.revocation is not None and not self.tokens.revoke(claims):
            logger.warning("Refresh rejected: token already rotated", extra={"user_id": user.id})
            raise InvalidToken(INVALID_REFRESH_TOKEN_MESSAGE)
        pair = self.tokens.issue_pair(identity_of(user))
        logger.info("Tokens refreshed", extra={"user_id": user.id})
        return pair

    def logout(self, access_token: Optional[str] = None) -> bool:
        """Acknowledge a logout.

        Tokens are discarded client-side. Only when a revocation list is
        configured is the presented access token also revoked server-side.
        Never fails: a revocation backend outage is logged and the logout is
        still acknowledged.

        Returns:
            True if the token was revoked
        """
        if not access_token or self.tokens.revocation is None:
            return False
        try:
            claims = self.tokens.verify_access(access_token)
            revoked = self.tokens.revoke(claims)
        except InvalidToken:
            return False
        except TransientStoreFailure:
            logger.warning("Revocation unavailable on logout, token not revoked")
            return False
        if revoked:
            logger.info("Access token revoked on logout", extra={"user_id": claims.sub})
        return revoked

    # -----------------
    # PASSWORD RESET & EMAIL VERIFICATION
    # -----------------

    def request_password_reset(self, email: str) -> str:
        """Issue a reset token for an active account, if there is one.

        Each call replaces the previous token, so only the newest is honored.

        Returns:
            The same generic message whether or not the account exists
        """
        user = self.store.find_by_email(email)
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown or inactive account")
            return RESET_REQUESTED_MESSAGE

        token = generate_token()
        expires_at = utcnow() + self.reset_expires
        self.store.set_password_reset_token(user.id, token_digest(token), expires_at)
        self.notifier.send_password_reset(user, token, int(self.reset_expires.total_seconds() // 60))

        logger.info("Password reset requested", extra={"user_id": user.id})
        return RESET_REQUESTED_MESSAGE

    def reset_password(self, token: str, new_password: str) -> None:
        """Consume a reset token and set a new password.

        Raises:
            InvalidToken: Unknown, superseded, expired or already used token,
                or the account was deactivated
        """
        user = self.store.find_by_reset_token(token_digest(token)) if token else None
        expires_at = ensure_utc(user.password_reset_expires) if user else None

        if user is None or expires_at is None or expires_at <= utcnow() or not user.is_active:
            logger.warning("Password reset rejected: invalid or expired token")
            raise InvalidToken(INVALID_RESET_TOKEN_MESSAGE, status_code=400)

        self.store.update_password(user.id, hash_password(new_password, rounds=self.bcrypt_rounds))
        logger.info("Password reset completed", extra={"user_id": user.id})

    def verify_email(self, token: str) -> None:
        """Mark the account holding ``token`` as verified.

        Raises:
            InvalidToken: No account holds this token
        """
        user = self.store.find_by_verification_token(token)
        if user is None:
            logger.warning("Email verification rejected: unknown token")
            raise InvalidToken(INVALID_VERIFICATION_TOKEN_MESSAGE, status_code=400)

        self.store.clear_verification(user.id)
        logger.info("Email verified", extra={"user_id": user.id})

    # -----------------
    # ADMINISTRATION
    # -----------------

    def get_user(self, user_id: str) -> UserPublic:
        user = self.store.find_by_id(user_id)
        if user is None:
            raise UserNotFound()
        return user.to_public()

    def list_users(self) -> List[UserPublic]:
        return [user.to_public() for user in self.store.list_users()]

    def set_active(self, user_id: str, active: bool) -> UserPublic:
        """Deactivate or reactivate an account. Deactivation takes effect on the next request."""
        user = self.store.mark_active(user_id) if active else self.store.mark_inactive(user_id)
        if user is None:
            raise UserNotFound()
        logger.info(f"User {'activated' if active else 'deactivated'}", extra={"user_id": user_id})
        return user.to_public()

    def seed_demo_users(self, password: str) -> int:
        """Insert the demo accounts that are missing. Returns how many were created."""
        created = 0
        password_hash = hash_password(password, rounds=self.bcrypt_rounds)
        for demo in DEMO_USERS:
            if self.store.find_by_email(demo["email"]) is not None:
                continue
            try:
                self.store.create({
                    **demo,
                    "password_hash": password_hash,
                    "is_active": True,
                    "is_email_verified": True,
                })
                created += 1
            except DuplicateEmail:
                # Another worker seeded it first
                continue
        if created:
            logger.info(f"Seeded {created} demo users")
        return created
