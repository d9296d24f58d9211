"""Signup, login and bearer token handling.

Passwords are hashed with bcrypt through passlib; tokens are HS256 JWTs from
python-jose carrying ``{id, email, iat, exp}``.  Login failures use one
message for "no such user" and "wrong password" so callers cannot probe
which emails are registered.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy.exc import IntegrityError

from modelia.core.config import ModeliaConfig
from modelia.core.db_models import User
from modelia.core.errors import (
    INVALID_CREDENTIALS,
    INVALID_TOKEN,
    USER_EXISTS,
    ConflictError,
    DownstreamError,
    UnauthorizedError,
)
from modelia.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PublicUser:
    """A user as exposed to clients.  Has no password field."""

    id: int
    email: str
    name: str
    created_at: datetime

    @classmethod
    def from_model(cls, user: User) -> PublicUser:
        return cls(id=user.id, email=user.email, name=user.name, created_at=user.created_at)


@dataclass(frozen=True)
class AuthResult:
    token: str
    user: PublicUser


@dataclass(frozen=True)
class TokenPayload:
    """Verified token claims."""

    id: int
    email: str
    iat: int
    exp: int


class AuthService:
    """User signup/login and token issuance/verification.

    Args:
        users: User persistence boundary.
        config: Supplies the JWT secret, algorithm, lifetime and bcrypt rounds.
    """

    def __init__(self, users: UserRepository, config: ModeliaConfig) -> None:
        self._users = users
        self._secret = config.jwt_secret
        self._algorithm = config.jwt_algorithm
        self._lifetime = timedelta(days=config.jwt_expires_days)
        self._pwd_context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=config.bcrypt_rounds,
        )

    async def signup(self, email: str, password: str, name: str) -> AuthResult:
        """Create an account and log it in.

        Raises:
            ConflictError: A user with *email* already exists.  Nothing is
                hashed or stored in that case.  A concurrent signup that
                loses the race on the unique email column gets the same
                error.
        """
        if await self._users.exists_by_email(email):
            raise ConflictError(USER_EXISTS)

        # bcrypt is deliberately slow; keep it off the event loop.
        password_hash = await asyncio.to_thread(self._pwd_context.hash, password)
        try:
            user = await self._users.create(
                {"email": email, "password": password_hash, "name": name}
            )
        except DownstreamError as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise ConflictError(USER_EXISTS) from exc
            raise

        logger.info(f"User {user.id} signed up")
        return AuthResult(token=self.issue_token(user), user=PublicUser.from_model(user))

    async def login(self, email: str, password: str) -> AuthResult:
        """Authenticate by email and password.

        Raises:
            UnauthorizedError: Unknown email or wrong password, same message.
        """
        user = await self._users.find_by_email(email)
        if user is None:
            logger.info("Login failed: unknown email")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        valid = await asyncio.to_thread(self._pwd_context.verify, password, user.password)
        if not valid:
            logger.info(f"Login failed: bad password for user {user.id}")
            raise UnauthorizedError(INVALID_CREDENTIALS)

        logger.info(f"User {user.id} logged in")
        return AuthResult(token=self.issue_token(user), user=PublicUser.from_model(user))

    def issue_token(self, user: User | PublicUser) -> str:
        now = datetime.now(timezone.utc)
        claims = {
            "id": user.id,
            "email": user.email,
            "iat": int(now.timestamp()),
            "exp": int((now + self._lifetime).timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify_token(self, token: str) -> TokenPayload:
        """Decode and check a bearer token.

        Raises:
            UnauthorizedError: Expired, malformed, wrongly signed, or missing
                the ``id``/``email`` claims.
        """
        try:
            claims = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except JWTError as exc:
            raise UnauthorizedError(INVALID_TOKEN) from exc

        user_id = claims.get("id")
        email = claims.get("email")
        if isinstance(user_id, bool) or not isinstance(user_id, int) or not isinstance(email, str):
            raise UnauthorizedError(INVALID_TOKEN)

        return TokenPayload(
            id=user_id,
            email=email,
            iat=int(claims.get("iat", 0)),
            exp=int(claims.get("exp", 0)),
        )
