"""
Blog post CRUD with ownership checks.
"""

from typing import Any, Dict, List
from urllib.parse import urlparse

from shared.errors import AuthorizationError, NotFoundError, ValidationError
from shared.logging import get_logger
from service_blog.app.domain.models import (
    BlogCreateRequest,
    BlogDeletedResponse,
    BlogResponse,
    BlogUpdateRequest,
    UserProfile,
    UserSummary,
)
from service_blog.app.domain.users import BLOGS, USERS, UserService
from service_blog.app.persistence.base import Document, DocumentStore, is_valid_document_id


def _is_valid_url(value: str) -> bool:
    parsed = urlparse(value)
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


def _check_url(url: Any, error: str):
    if not isinstance(url, str) or not url.strip():
        raise ValidationError(error, "Blog URL cannot be empty")
    if not _is_valid_url(url.strip()):
        raise ValidationError("Invalid URL format", "Please provide a valid URL")


class BlogService:
    """Blog reads and owner-restricted mutations."""

    def __init__(self, store: DocumentStore, users: UserService):
        self.store = store
        self.users = users
        self.logger = get_logger("blog.blogs")

    async def _to_response(self, blog: Document) -> BlogResponse:
        owner = await self.store.get(USERS, blog["user"]) if blog.get("user") else None
        return BlogResponse(
            id=blog["id"],
            title=blog["title"],
            author=blog["author"],
            url=blog["url"],
            likes=blog.get("likes", 0),
            user=UserSummary(id=owner["id"], username=owner["username"], name=owner["name"]) if owner else None
        )

    async def _load(self, blog_id: str, missing_message: str) -> Document:
        if not is_valid_document_id(blog_id):
            raise ValidationError("Invalid blog ID format", "Please provide a valid blog ID")
        blog = await self.store.get(BLOGS, blog_id)
        if blog is None:
            self.logger.warning("Blog not found", blog_id=blog_id)
            raise NotFoundError("Blog not found", missing_message)
        return blog

    async def list_blogs(self) -> List[BlogResponse]:
        blogs = await self.store.find(BLOGS)
        self.logger.debug("Blogs listed", count=len(blogs))
        return [await self._to_response(blog) for blog in blogs]

    async def get_blog(self, blog_id: str) -> BlogResponse:
        blog = await self._load(blog_id, "The requested blog post does not exist")
        return await self._to_response(blog)

    async def create_blog(self, request: BlogCreateRequest, caller: UserProfile) -> BlogResponse:
        if request.title is None or not request.title.strip():
            raise ValidationError("Title is required", "Blog title cannot be empty")
        _check_url(request.url, "URL is required")

        # Missing or negative likes start at zero
        likes = request.likes if request.likes is not None and request.likes >= 0 else 0
        author = request.author.strip() if request.author and request.author.strip() else caller.username

        blog = await self.store.insert(BLOGS, {
            "title": request.title.strip(),
            "author": author,
            "url": request.url.strip(),
            "likes": likes,
            "user": caller.id
        })
        await self.users.attach_blog(caller.id, blog["id"])

        self.logger.info("Blog created", blog_id=blog["id"], title=blog["title"], user_id=caller.id)
        return await self._to_response(blog)

    @staticmethod
    def _validate_update(request: BlogUpdateRequest) -> Dict[str, Any]:
        fields = request.model_dump(exclude_unset=True)

        if "title" in fields:
            title = fields["title"]
            if title is None or not title.strip():
                raise ValidationError("Invalid title", "Blog title cannot be empty")
            fields["title"] = title.strip()

        if "url" in fields:
            _check_url(fields["url"], "Invalid URL")
            fields["url"] = fields["url"].strip()

        if "likes" in fields:
            if fields["likes"] is None or fields["likes"] < 0:
                raise ValidationError("Invalid likes value", "Likes must be a non-negative number")

        if "author" in fields:
            if fields["author"] and fields["author"].strip():
                fields["author"] = fields["author"].strip()
            else:
                del fields["author"]

        return fields

    def _require_owner(self, blog: Document, caller: UserProfile, action: str):
        if blog.get("user") != caller.id:
            self.logger.warning(
                "Blog ownership check failed",
                action=action,
                blog_id=blog["id"],
                owner_id=blog.get("user"),
                user_id=caller.id
            )
            raise AuthorizationError(
                "Permission denied",
                f"Only the user who created the blog can {action} it"
            )

    async def update_blog(self, blog_id: str, request: BlogUpdateRequest, caller: UserProfile) -> BlogResponse:
        blog = await self._load(blog_id, "The blog post you are trying to update does not exist")
        self._require_owner(blog, caller, "update")

        fields = self._validate_update(request)
        updated = await self.store.update(BLOGS, blog_id, fields)
        if updated is None:
            raise NotFoundError("Blog not found", "The blog post you are trying to update does not exist")

        self.logger.info("Blog updated", blog_id=blog_id, fields=sorted(fields), user_id=caller.id)
        return await self._to_response(updated)

    async def delete_blog(self, blog_id: str, caller: UserProfile) -> BlogDeletedResponse:
        blog = await self._load(blog_id, "The blog post you are trying to delete does not exist")
        self._require_owner(blog, caller, "delete")

        deleted = await self._to_response(blog)
        await self.store.delete(BLOGS, blog_id)
        await self.users.detach_blog(caller.id, blog_id)

        self.logger.info("Blog deleted", blog_id=blog_id, title=blog["title"], user_id=caller.id)
        return BlogDeletedResponse(message="Blog deleted successfully", deleted_blog=deleted)
