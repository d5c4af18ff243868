"""
Password hashing, token issuing and bearer authentication.
"""

import asyncio
import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

import bcrypt
import jwt
from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shared.errors import AuthenticationError, NotFoundError
from shared.logging import get_logger, set_user_context
from service_blog.app.domain.models import UserProfile

if TYPE_CHECKING:
    from service_blog.app.domain.users import UserService

TOKEN_ISSUER = "blog-app"
TOKEN_ALGORITHM = "HS256"
BCRYPT_ROUNDS = 10

bearer_scheme = HTTPBearer(auto_error=False)


async def hash_password(password: str, rounds: int = BCRYPT_ROUNDS) -> str:
    """Hash a password off the event loop."""
    hashed = await asyncio.to_thread(bcrypt.hashpw, password.encode("utf-8"), bcrypt.gensalt(rounds=rounds))
    return hashed.decode("utf-8")


async def verify_password(password: str, password_hash: str) -> bool:
    try:
        return await asyncio.to_thread(
            bcrypt.checkpw, password.encode("utf-8"), password_hash.encode("utf-8")
        )
    except ValueError:
        # Malformed stored hash
        return False


class TokenService:
    """Issues and verifies HS256 access tokens."""

    def __init__(self, secret_key: str, ttl_seconds: int = 45 * 60,
                 issuer: str = TOKEN_ISSUER, clock: Callable[[], float] = time.time):
        self.secret_key = secret_key
        self.ttl_seconds = ttl_seconds
        self.issuer = issuer
        self._clock = clock
        self.logger = get_logger("blog.auth.tokens")

    def issue(self, user: Dict[str, Any]) -> str:
        """Sign a token for a stored user document."""
        now = int(self._clock())
        payload = {
            "username": user["username"],
            "userId": user["id"],
            "name": user["name"],
            "sub": user["id"],
            "iss": self.issuer,
            "iat": now,
            "exp": now + self.ttl_seconds
        }
        return jwt.encode(payload, self.secret_key, algorithm=TOKEN_ALGORITHM)

    def verify(self, token: str) -> Dict[str, Any]:
        """Decode and validate a token, raising AuthenticationError on any problem."""
        try:
            claims = jwt.decode(
                token,
                self.secret_key,
                algorithms=[TOKEN_ALGORITHM],
                issuer=self.issuer,
                options={"require": ["exp", "iss", "sub"]}
            )
        except jwt.ExpiredSignatureError as exc:
            raise AuthenticationError("token expired", "Please log in again") from exc
        except jwt.PyJWTError as exc:
            self.logger.warning("Token validation failed", error=str(exc))
            raise AuthenticationError("invalid token", "Authentication token is invalid") from exc

        if not claims.get("userId"):
            raise AuthenticationError("invalid token", "Authentication token is invalid")
        return claims


class Authenticator:
    """FastAPI dependency resolving the bearer token to the caller's profile."""

    def __init__(self, tokens: TokenService, users: "UserService"):
        self.tokens = tokens
        self.users = users

    async def __call__(self,
                       credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> UserProfile:
        if credentials is None or not credentials.credentials:
            raise AuthenticationError("missing token", "Authorization bearer token required")

        claims = self.tokens.verify(credentials.credentials)
        user_id = claims["userId"]
        set_user_context(user_id)

        profile = await self.users.get_profile(user_id)
        if profile is None:
            raise NotFoundError("User not found", "The authenticated user no longer exists")
        return profile
