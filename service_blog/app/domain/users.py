"""
User accounts, login and cached user profiles.
"""

import asyncio
import re
from typing import Callable, Dict, List, Optional

import pydantic

from shared.errors import AuthenticationError, ConflictError, ValidationError
from shared.logging import get_logger
from service_blog.app.caching.session_cache import SessionCache
from service_blog.app.domain.auth import TokenService, hash_password, verify_password
from service_blog.app.domain.models import (
    BlogSummary,
    LoginRequest,
    LoginResponse,
    UserCreateRequest,
    UserProfile,
    UserResponse,
)
from service_blog.app.persistence.base import Document, DocumentStore

USERS = "users"
BLOGS = "blogs"

USERNAME_PATTERN = re.compile(r"^[a-zA-Z0-9_]+$")
EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

# Uniform delay on failed logins so unknown usernames and bad passwords look alike
FAILED_LOGIN_DELAY = 0.1


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


def _profile(user: Document) -> UserProfile:
    return UserProfile(
        id=user["id"],
        username=user["username"],
        name=user["name"],
        email=user["email"],
        blogs=list(user.get("blogs", []))
    )


class UserService:
    """User registration, listing, login and profile lookups."""

    def __init__(self, store: DocumentStore, sessions: SessionCache, tokens: TokenService):
        self.store = store
        self.sessions = sessions
        self.tokens = tokens
        self.logger = get_logger("blog.users")

    async def list_users(self) -> List[UserResponse]:
        users = await self.store.find(USERS)
        result = []
        for user in users:
            blogs = []
            for blog_id in user.get("blogs", []):
                blog = await self.store.get(BLOGS, blog_id)
                if blog is not None:
                    blogs.append(BlogSummary(**{k: blog[k] for k in ("id", "title", "author", "url", "likes")}))
            result.append(UserResponse(
                id=user["id"],
                username=user["username"],
                name=user["name"],
                email=user["email"],
                blogs=blogs
            ))
        self.logger.debug("Users listed", count=len(result))
        return result

    @staticmethod
    def _validate_new_user(request: UserCreateRequest) -> Dict[str, str]:
        if _blank(request.username):
            raise ValidationError("Username is required", "Please provide a username")
        if _blank(request.name):
            raise ValidationError("Name is required", "Please provide your full name")
        if _blank(request.email):
            raise ValidationError("Email is required", "Please provide an email address")
        if not request.password:
            raise ValidationError("Password is required", "Please provide a password")

        username = request.username.strip()
        if len(username) < 3:
            raise ValidationError("Username too short", "Username must be at least 3 characters long")
        if len(username) > 30:
            raise ValidationError("Username too long", "Username must be no more than 30 characters long")
        if not USERNAME_PATTERN.match(username):
            raise ValidationError(
                "Invalid username format",
                "Username can only contain letters, numbers, and underscores"
            )

        if len(request.password) < 3:
            raise ValidationError("Password too short", "Password must be at least 3 characters long")
        if len(request.password) > 128:
            raise ValidationError("Password too long", "Password must be no more than 128 characters long")

        email = request.email.strip().lower()
        if not EMAIL_PATTERN.match(email):
            raise ValidationError("Invalid email format", "Please enter a valid email address")

        name = request.name.strip()
        if len(name) < 2:
            raise ValidationError("Name too short", "Name must be at least 2 characters long")
        if len(name) > 100:
            raise ValidationError("Name too long", "Name must be no more than 100 characters long")

        return {"username": username, "name": name, "email": email}

    async def create_user(self, request: UserCreateRequest) -> UserResponse:
        fields = self._validate_new_user(request)

        if await self.store.find_one(USERS, username=fields["username"]):
            raise ConflictError("Username already exists", "Please choose a different username")
        if await self.store.find_one(USERS, email=fields["email"]):
            raise ConflictError(
                "Email already registered",
                "This email address is already associated with another account"
            )

        password_hash = await hash_password(request.password)
        user = await self.store.insert(USERS, dict(fields, password_hash=password_hash, blogs=[]))

        self.logger.info("User created", user_id=user["id"], username=user["username"])
        return UserResponse(id=user["id"], username=user["username"], name=user["name"], email=user["email"])

    async def _find_by_login_name(self, username: str) -> Optional[Document]:
        wanted = username.lower()
        for user in await self.store.find(USERS):
            if user["username"].lower() == wanted:
                return user
        return None

    async def login(self, request: LoginRequest) -> LoginResponse:
        if _blank(request.username):
            raise ValidationError("Username is required", "Please provide your username")
        if not request.password:
            raise ValidationError("Password is required", "Please provide your password")

        username = request.username.strip()
        user = await self._find_by_login_name(username)
        if user is None or not await verify_password(request.password, user.get("password_hash", "")):
            self.logger.warning("Login failed", username=username, reason="unknown user" if user is None else "bad password")
            await asyncio.sleep(FAILED_LOGIN_DELAY)
            raise AuthenticationError("Authentication failed", "Invalid username or password")

        token = self.tokens.issue(user)
        await self.sessions.set_user(user["id"], _profile(user).model_dump())

        self.logger.info("Login succeeded", user_id=user["id"], username=user["username"])
        return LoginResponse(
            username=user["username"],
            name=user["name"],
            email=user["email"],
            token=token,
            expires_in=self.tokens.ttl_seconds
        )

    async def get_profile(self, user_id: str) -> Optional[UserProfile]:
        """Profile for an authenticated caller, read through the session cache."""
        cached = await self.sessions.get_user(user_id)
        if cached is not None:
            try:
                return UserProfile(**cached)
            except (TypeError, pydantic.ValidationError):
                self.logger.warning("Ignoring malformed cached profile", user_id=user_id)

        user = await self.store.get(USERS, user_id)
        if user is None:
            return None

        profile = _profile(user)
        await self.sessions.set_user(user_id, profile.model_dump())
        return profile

    async def attach_blog(self, user_id: str, blog_id: str):
        await self._update_blogs(user_id, lambda blogs: blogs + [blog_id])

    async def detach_blog(self, user_id: str, blog_id: str):
        await self._update_blogs(user_id, lambda blogs: [b for b in blogs if b != blog_id])

    async def _update_blogs(self, user_id: str, change: Callable[[List[str]], List[str]]):
        user = await self.store.get(USERS, user_id)
        if user is None:
            self.logger.warning("Blog owner not found", user_id=user_id)
            return
        await self.store.update(USERS, user_id, {"blogs": change(user.get("blogs", []))})
        # The cached profile carries the blog id list
        await self.sessions.invalidate_user(user_id)
