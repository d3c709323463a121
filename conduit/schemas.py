from pydantic import BaseModel, Field
from datetime import datetime


# --- User / Profile ---

class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=50)
    email: str = Field(max_length=255)
    bio: str = ""
    image: str | None = None


class UserResponse(BaseModel):
    id: int
    username: str
    email: str
    bio: str
    image: str | None
    followers: int
    followee: int
    created_at: datetime


class ProfileResponse(BaseModel):
    username: str
    bio: str
    image: str | None
    followers: int
    followee: int
    following: bool = False


# --- Comment ---

class CommentCreate(BaseModel):
    body: str = Field(min_length=1)


class CommentResponse(BaseModel):
    id: int
    body: str
    created_at: datetime
    updated_at: datetime
    author: ProfileResponse


# --- Article ---

class ArticleCreate(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: str = Field(min_length=1, max_length=500)
    body: str
    tag_list: list[str] = []
    image: str | None = None


class ArticleUpdate(BaseModel):
    title: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = Field(None, min_length=1, max_length=500)
    body: str | None = None
    tag_list: list[str] | None = None
    image: str | None = None


class ArticleResponse(BaseModel):
    id: int
    slug: str
    title: str
    description: str
    body: str
    tag_list: list[str]
    image: str
    created_at: datetime
    updated_at: datetime
    favorites_count: int
    favorited: bool = False
    bookmarked: bool = False
    author: ProfileResponse


# --- Feed pagination ---

class PaginatedArticles(BaseModel):
    articles: list[ArticleResponse]
    has_more: bool


# --- Metrics ---

class CounterDriftResponse(BaseModel):
    counter: str
    row_id: int
    stored: int
    expected: int


class MetricsResponse(BaseModel):
    total_articles: int
    total_comments: int
    total_users: int
    total_tags: int
    counter_drift: list[CounterDriftResponse] = []
    cache_info: dict = {}


class ReconcileResponse(BaseModel):
    repaired: int
