"""
Request and response models for the Blog API.
"""

from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class UserCreateRequest(BaseModel):
    """Sign-up payload. Field rules are enforced by the user service."""
    username: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


class BlogCreateRequest(BaseModel):
    title: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None
    likes: Optional[Union[int, float]] = None


class BlogUpdateRequest(BaseModel):
    """Partial update; only fields present in the body are applied."""
    title: Optional[str] = None
    author: Optional[str] = None
    url: Optional[str] = None
    likes: Optional[Union[int, float]] = None


class UserSummary(BaseModel):
    id: str
    username: str
    name: str


class BlogSummary(BaseModel):
    id: str
    title: str
    author: str
    url: str
    likes: Union[int, float] = 0


class BlogResponse(BaseModel):
    id: str
    title: str
    author: str
    url: str
    likes: Union[int, float] = 0
    user: Optional[UserSummary] = None


class UserResponse(BaseModel):
    id: str
    username: str
    name: str
    email: str
    blogs: List[BlogSummary] = Field(default_factory=list)


class UserProfile(BaseModel):
    """Cached identity of an authenticated caller."""
    id: str
    username: str
    name: str
    email: str
    blogs: List[str] = Field(default_factory=list)


class LoginResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    username: str
    name: str
    email: str
    token: str
    expires_in: int = Field(serialization_alias="expiresIn")


class BlogDeletedResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: str
    deleted_blog: BlogResponse = Field(serialization_alias="deletedBlog")
