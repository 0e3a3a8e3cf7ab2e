"""JWT identity provider.

Tokens are HS256 JWTs issued by the portal's login endpoint. They bind a
user id (``sub``, or the legacy ``userId`` / ``id`` claims) to the
account; role and department are always re-read from the user directory,
never trusted from the token.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import jwt

from portalchat.config import PortalChatConfig
from portalchat.directory import User, UserDirectoryService

logger = logging.getLogger(__name__)


class AuthenticationFailure(Exception):
    """Raised when a credential cannot be turned into a known user.

    Attributes:
        reason: Short machine-readable reason (missing_token, token_expired,
            invalid_token, user_not_found, too_many_connections).
    """

    def __init__(self, reason: str, detail: str = "") -> None:
        super().__init__(detail or reason)
        self.reason = reason
        self.detail = detail or reason


class TokenService:
    """Verifies (and, for tooling and tests, issues) bearer tokens."""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        issuer: Optional[str] = None,
        expire_minutes: int = 60,
        subject_claims: Optional[List[str]] = None,
    ) -> None:
        self.secret_key = secret_key
        self.algorithm = algorithm
        self.issuer = issuer
        self.expire_minutes = expire_minutes
        self.subject_claims = subject_claims or ["sub", "userId", "id"]

    @classmethod
    def from_config(cls, config: PortalChatConfig) -> "TokenService":
        return cls(
            secret_key=config.secrets.jwt.secret_key,
            algorithm=config.auth.algorithm,
            issuer=config.auth.issuer,
            expire_minutes=config.auth.token_expire_minutes,
            subject_claims=list(config.auth.subject_claims),
        )

    def issue_token(
        self,
        user_id: str,
        expires_in: Optional[timedelta] = None,
        **extra_claims: Any,
    ) -> str:
        now = datetime.now(timezone.utc)
        payload: Dict[str, Any] = {
            "sub": user_id,
            "iat": now,
            "exp": now + (expires_in if expires_in is not None else timedelta(minutes=self.expire_minutes)),
            **extra_claims,
        }
        if self.issuer:
            payload["iss"] = self.issuer
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> str:
        """Check signature and expiry, returning the subject user id.

        Raises:
            AuthenticationFailure: If the token is missing, expired, badly
                signed or carries no subject.
        """
        if not token:
            raise AuthenticationFailure("missing_token")

        options = {"require": ["exp"]}
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                options=options,
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationFailure("token_expired", "Token has expired") from exc
        except jwt.InvalidTokenError as exc:
            raise AuthenticationFailure("invalid_token", f"Invalid token: {exc}") from exc

        for claim in self.subject_claims:
            subject = claims.get(claim)
            if subject:
                return str(subject)
        raise AuthenticationFailure("invalid_token", "Token has no subject claim")

    def authenticate(self, token: Optional[str], directory: UserDirectoryService) -> User:
        """Verify *token* and resolve its subject through *directory*."""
        user_id = self.verify(token)
        user = directory.get_user(user_id)
        if user is None:
            raise AuthenticationFailure("user_not_found", f"Unknown user {user_id}")
        return user


_token_service: Optional[TokenService] = None


def get_token_service() -> TokenService:
    global _token_service
    if _token_service is None:
        from portalchat.config import get_config
        _token_service = TokenService.from_config(get_config())
    return _token_service


def set_token_service(service: Optional[TokenService]) -> None:
    global _token_service
    _token_service = service
