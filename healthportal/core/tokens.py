"""Token service: issues and verifies access/refresh JWT pairs.

Access and refresh tokens are signed with different secrets and carry a
``type`` claim, so neither can stand in for the other. Every verification
failure surfaces as the same ``InvalidToken``; the specific reason is only
logged.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional

import jwt
from pydantic import ValidationError

from healthportal.core.exceptions import InvalidToken
from healthportal.core.logging import get_logger
from healthportal.domain.user import CurrentUser, TokenClaims, TokenPair, TokenType
from healthportal.infrastructure.redis import RevocationList
from healthportal.utils.time import utcnow

logger = get_logger(__name__)

REQUIRED_CLAIMS = ["sub", "email", "role", "type", "jti", "iat", "exp"]


class TokenService:
    """Issue and verify signed token pairs.

    Example:
        >>> tokens = TokenService("access-secret", "refresh-secret")
        >>> pair = tokens.issue_pair(CurrentUser(id="1", email="a@x.com", role="patient"))
        >>> tokens.verify_access(pair.access_token).sub
        '1'
    """

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_expires: timedelta = timedelta(days=7),
        refresh_expires: timedelta = timedelta(days=30),
        revocation: Optional[RevocationList] = None,
    ):
        if not access_secret or not refresh_secret:
            raise ValueError("jwt_secret_blank")
        self._secrets = {TokenType.ACCESS: access_secret, TokenType.REFRESH: refresh_secret}
        self._expires = {TokenType.ACCESS: access_expires, TokenType.REFRESH: refresh_expires}
        self.algorithm = algorithm
        self.revocation = revocation

    @classmethod
    def from_settings(cls, settings, revocation: Optional[RevocationList] = None) -> "TokenService":
        return cls(
            access_secret=settings.jwt_secret_key,
            refresh_secret=settings.jwt_refresh_secret_key,
            algorithm=settings.jwt_algorithm,
            access_expires=timedelta(minutes=settings.access_token_expire_minutes),
            refresh_expires=timedelta(minutes=settings.refresh_token_expire_minutes),
            revocation=revocation,
        )

    @property
    def access_expires_in(self) -> int:
        """Access token lifetime in seconds."""
        return int(self._expires[TokenType.ACCESS].total_seconds())

    def _encode(self, identity: CurrentUser, token_type: TokenType, now: datetime) -> str:
        payload = {
            "sub": identity.id,
            "email": identity.email,
            "role": identity.role.value,
            "type": token_type.value,
            "jti": uuid.uuid4().hex,
            "iat": int(now.timestamp()),
            "exp": int((now + self._expires[token_type]).timestamp()),
        }
        return jwt.encode(payload, self._secrets[token_type], algorithm=self.algorithm)

    def issue_pair(self, identity: CurrentUser) -> TokenPair:
        """Issue a fresh access/refresh pair for the given identity."""
        now = utcnow()
        pair = TokenPair(
            access_token=self._encode(identity, TokenType.ACCESS, now),
            refresh_token=self._encode(identity, TokenType.REFRESH, now),
        )
        logger.info("Token pair issued", extra={"user_id": identity.id})
        return pair

    def _verify(self, token: str, token_type: TokenType) -> TokenClaims:
        if not token:
            raise InvalidToken()
        try:
            payload = jwt.decode(
                token,
                self._secrets[token_type],
                algorithms=[self.algorithm],
                options={"require": REQUIRED_CLAIMS},
            )
            claims = TokenClaims.model_validate(payload)
        except jwt.ExpiredSignatureError:
            logger.warning(f"Expired {token_type.value} token presented")
            raise InvalidToken()
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid {token_type.value} token presented: {e}")
            raise InvalidToken()
        except ValidationError as e:
            logger.warning(f"Malformed {token_type.value} token claims: {e.error_count()} error(s)")
            raise InvalidToken()

        if claims.type != token_type:
            logger.warning(f"{claims.type.value} token presented where {token_type.value} expected")
            raise InvalidToken()

        if self.revocation is not None and self.revocation.is_revoked(claims.jti):
            logger.warning("Revoked token presented", extra={"user_id": claims.sub})
            raise InvalidToken()

        return claims

    def verify_access(self, token: str) -> TokenClaims:
        return self._verify(token, TokenType.ACCESS)

    def verify_refresh(self, token: str) -> TokenClaims:
        return self._verify(token, TokenType.REFRESH)

    def revoke(self, claims: TokenClaims) -> bool:
        """Revoke a verified token.

        Returns False when revocation is disabled or another caller revoked
        the same token first.
        """
        if self.revocation is None:
            return False
        return self.revocation.revoke(claims.jti, claims.exp)
