"""
API request and response models for CropCase REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
plans/models.py, which own the internal domain representation. Route handlers
map between the two.

Wire format: camelCase field names (alias_generator=to_camel). Input also
accepts the snake_case field names (populate_by_name=True). Request bodies
reject unknown fields (extra="forbid") so a typo is a 400, not a silent no-op.

Separation of concerns: auth/ and plans/ models = domain truth; api/ models =
API contract.
"""

from __future__ import annotations

import math
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from auth.models import User
from plans.models import CaseCrop, Crop, CropCase, CommunityStats

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

PASSWORD_MIN_CHARS = 6
PASSWORD_MAX_BYTES = 72  # bcrypt input limit
MAX_PAGE_SIZE = 50

# ---------------------------------------------------------------------------
# Bases
# ---------------------------------------------------------------------------


class ApiModel(BaseModel):
    """Base for every transport model: camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RequestModel(ApiModel):
    model_config = ConfigDict(extra="forbid")


class ResponseModel(ApiModel):
    model_config = ConfigDict(frozen=True)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class CaseStatusEnum(str, Enum):
    active = "active"
    completed = "completed"
    paused = "paused"


class SortByEnum(str, Enum):
    recent = "recent"
    popular = "popular"
    views = "views"
    alphabetical = "alphabetical"


class SortOrderEnum(str, Enum):
    asc = "asc"
    desc = "desc"


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class SignupRequest(RequestModel):
    """Request body for POST /api/v1/auth/signup.

    The password is bounded in UTF-8 bytes, not characters: bcrypt only
    accepts 72 bytes, and a handful of multi-byte characters reach that
    limit long before 72 characters do.
    """

    email: EmailStr
    password: str
    name: Optional[str] = Field(default=None, max_length=100)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()

    @field_validator("password")
    @classmethod
    def check_password(cls, value: str) -> str:
        if len(value) < PASSWORD_MIN_CHARS:
            raise ValueError(f"Password must be at least {PASSWORD_MIN_CHARS} characters.")
        if len(value.encode("utf-8")) > PASSWORD_MAX_BYTES:
            raise ValueError(f"Password must be at most {PASSWORD_MAX_BYTES} bytes.")
        return value

    @field_validator("name")
    @classmethod
    def strip_name(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return value.strip() or None


class LoginRequest(RequestModel):
    """Request body for POST /api/v1/auth/login."""

    email: EmailStr
    password: str = Field(min_length=1, max_length=1024)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.lower()


class RefreshTokenRequest(RequestModel):
    """Request body for POST /api/v1/auth/refresh and POST /api/v1/auth/logout."""

    refresh_token: str = Field(min_length=1, max_length=512)


class ProfileUpdate(RequestModel):
    """Request body for PUT /api/v1/auth/me. At least one field is required."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    avatar: Optional[str] = Field(default=None, max_length=500, pattern=r"^https?://\S+$")

    @model_validator(mode="after")
    def require_one_field(self) -> "ProfileUpdate":
        if self.name is None and self.avatar is None:
            raise ValueError("Provide at least one of name or avatar.")
        return self


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserResponse(ResponseModel):
    """Public view of a user. hashed_password is never included."""

    id: int
    email: str
    name: Optional[str]
    avatar: Optional[str]
    role: str
    is_verified: bool
    created_at: str
    last_login_at: Optional[str]

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            name=user.name,
            avatar=user.avatar,
            role=user.role,
            is_verified=user.is_verified,
            created_at=user.created_at or "",
            last_login_at=user.last_login_at,
        )


class AuthResponse(ResponseModel):
    """Response for signup, login and refresh."""

    message: str
    user: UserResponse
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int  # access token lifetime in seconds


class MessageResponse(ResponseModel):
    message: str


class ProfileResponse(ResponseModel):
    message: str
    user: UserResponse


# ---------------------------------------------------------------------------
# Crop catalog
# ---------------------------------------------------------------------------


class CropCreate(RequestModel):
    """Request body for POST /api/v1/crops (admin only)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    season: str = Field(min_length=1, max_length=30)
    description: str = Field(default="", max_length=1000)
    duration: int = Field(default=0, ge=0, le=1000)


class CropResponse(ResponseModel):
    id: int
    name: str
    season: str
    description: str
    duration: int

    @classmethod
    def from_crop(cls, crop: Crop) -> "CropResponse":
        return cls(
            id=crop.id,
            name=crop.name,
            season=crop.season,
            description=crop.description,
            duration=crop.duration,
        )


# ---------------------------------------------------------------------------
# Crop cases -- request models
# ---------------------------------------------------------------------------


class CaseCropInput(RequestModel):
    """One crop allocation: weight is the share of land as an integer percentage."""

    crop_id: int = Field(ge=1)
    weight: int = Field(ge=1, le=100)
    notes: Optional[str] = Field(default=None, max_length=500)

    def to_domain(self) -> CaseCrop:
        return CaseCrop(crop_id=self.crop_id, weight=self.weight, notes=self.notes)


def _unique_crop_ids(crops: list[CaseCropInput]) -> list[CaseCropInput]:
    ids = [c.crop_id for c in crops]
    if len(ids) != len(set(ids)):
        raise ValueError("Each crop may appear only once in a case.")
    return crops


def _clean_tags(tags: list[str]) -> list[str]:
    """Strip, drop blanks, de-duplicate while keeping first-seen order."""
    seen: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.append(tag)
    return seen


class CaseCreate(RequestModel):
    """Request body for POST /api/v1/cases."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=200)
    total_land: float = Field(gt=0, le=1_000_000)
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=255)
    is_public: bool = False
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)
    status: CaseStatusEnum = CaseStatusEnum.active
    efficiency: Optional[float] = Field(default=None, ge=0, le=100)
    estimated_profit: Optional[float] = None
    tags: list[str] = Field(default_factory=list, max_length=20)
    crops: list[CaseCropInput] = Field(default_factory=list, max_length=50)

    @field_validator("crops")
    @classmethod
    def check_crops(cls, crops: list[CaseCropInput]) -> list[CaseCropInput]:
        return _unique_crop_ids(crops)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, tags: list[str]) -> list[str]:
        tags = _clean_tags(tags)
        if any(len(t) > 30 for t in tags):
            raise ValueError("Tags must be at most 30 characters.")
        return tags

    @model_validator(mode="after")
    def check_dates(self) -> "CaseCreate":
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate.")
        return self

    def to_domain(self, user_id: int) -> CropCase:
        return CropCase(
            user_id=user_id,
            name=self.name,
            total_land=self.total_land,
            description=self.description,
            location=self.location,
            is_public=self.is_public,
            start_date=self.start_date.isoformat() if self.start_date else None,
            end_date=self.end_date.isoformat() if self.end_date else None,
            budget=self.budget,
            notes=self.notes,
            status=self.status.value,
            efficiency=self.efficiency,
            estimated_profit=self.estimated_profit,
            tags=self.tags,
            crops=[c.to_domain() for c in self.crops],
        )


# Fields of CaseUpdate that map to NOT NULL columns.
_REQUIRED_CASE_FIELDS = ("name", "total_land", "is_public", "status")


class CaseUpdate(RequestModel):
    """Request body for PUT /api/v1/cases/{id}. Partial update: only sent fields change."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    total_land: Optional[float] = Field(default=None, gt=0, le=1_000_000)
    description: Optional[str] = Field(default=None, max_length=2000)
    location: Optional[str] = Field(default=None, max_length=255)
    is_public: Optional[bool] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    budget: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = Field(default=None, max_length=2000)
    status: Optional[CaseStatusEnum] = None
    efficiency: Optional[float] = Field(default=None, ge=0, le=100)
    estimated_profit: Optional[float] = None
    tags: Optional[list[str]] = Field(default=None, max_length=20)

    @field_validator("tags")
    @classmethod
    def check_tags(cls, tags: Optional[list[str]]) -> Optional[list[str]]:
        if tags is None:
            return None
        tags = _clean_tags(tags)
        if any(len(t) > 30 for t in tags):
            raise ValueError("Tags must be at most 30 characters.")
        return tags

    @model_validator(mode="after")
    def check_fields(self) -> "CaseUpdate":
        sent = self.model_fields_set
        if not sent:
            raise ValueError("Provide at least one field to update.")
        nulled = [f for f in _REQUIRED_CASE_FIELDS if f in sent and getattr(self, f) is None]
        if nulled:
            raise ValueError(f"{', '.join(to_camel(f) for f in nulled)} cannot be null.")
        if self.start_date and self.end_date and self.end_date < self.start_date:
            raise ValueError("endDate must not be before startDate.")
        return self

    def changes(self) -> dict:
        """Return the sent fields as store column values."""
        values = self.model_dump(exclude_unset=True)
        for key in ("start_date", "end_date"):
            if values.get(key) is not None:
                values[key] = values[key].isoformat()
        if values.get("status") is not None:
            values["status"] = CaseStatusEnum(values["status"]).value
        return values


class CaseCropsRequest(RequestModel):
    """Request body for POST/PUT /api/v1/cases/{id}/crops."""

    crops: list[CaseCropInput] = Field(max_length=50)

    @field_validator("crops")
    @classmethod
    def check_crops(cls, crops: list[CaseCropInput]) -> list[CaseCropInput]:
        return _unique_crop_ids(crops)


# ---------------------------------------------------------------------------
# Crop cases -- response models
# ---------------------------------------------------------------------------


class CaseOwner(ResponseModel):
    """Owner summary shown on cases. Email is deliberately not exposed."""

    id: int
    name: Optional[str]


class CaseCropResponse(ResponseModel):
    crop_id: int
    weight: int
    notes: Optional[str]
    crop: CropResponse


class CaseResponse(ResponseModel):
    id: int
    name: str
    description: Optional[str]
    total_land: float
    location: Optional[str]
    is_public: bool
    start_date: Optional[str]
    end_date: Optional[str]
    budget: Optional[float]
    notes: Optional[str]
    status: str
    efficiency: Optional[float]
    estimated_profit: Optional[float]
    tags: list[str]
    views: int
    like_count: int
    liked_by_me: bool = False
    owner: Optional[CaseOwner] = None
    crops: list[CaseCropResponse]
    created_at: str
    updated_at: str

    @classmethod
    def from_case(cls, case: CropCase, owner: Optional[User] = None, liked: bool = False) -> "CaseResponse":
        """Factory Method: domain CropCase -> transport model."""
        return cls(
            id=case.id,
            name=case.name,
            description=case.description,
            total_land=case.total_land,
            location=case.location,
            is_public=case.is_public,
            start_date=case.start_date,
            end_date=case.end_date,
            budget=case.budget,
            notes=case.notes,
            status=case.status,
            efficiency=case.efficiency,
            estimated_profit=case.estimated_profit,
            tags=list(case.tags),
            views=case.views,
            like_count=case.like_count,
            liked_by_me=liked,
            owner=CaseOwner(id=owner.id, name=owner.name) if owner is not None else None,
            crops=[
                CaseCropResponse(
                    crop_id=a.crop_id,
                    weight=a.weight,
                    notes=a.notes,
                    crop=CropResponse.from_crop(a.crop),
                )
                for a in case.crops
            ],
            created_at=case.created_at,
            updated_at=case.updated_at,
        )


class Pagination(ResponseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "Pagination":
        total_pages = math.ceil(total / limit) if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


class CaseListResponse(ResponseModel):
    data: list[CaseResponse]
    pagination: Pagination


class CommunityStatsResponse(ResponseModel):
    total_community_cases: int
    total_farmers: int
    total_likes: int
    average_likes_per_case: float

    @classmethod
    def from_stats(cls, stats: CommunityStats) -> "CommunityStatsResponse":
        return cls(
            total_community_cases=stats.total_community_cases,
            total_farmers=stats.total_farmers,
            total_likes=stats.total_likes,
            average_likes_per_case=stats.average_likes_per_case,
        )


class CommunityResponse(ResponseModel):
    data: list[CaseResponse]
    pagination: Pagination
    stats: CommunityStatsResponse


class LikeResponse(ResponseModel):
    message: str
    liked: bool
    like_count: int


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class FieldErrorModel(ResponseModel):
    field: str
    message: str


class ErrorDetail(ResponseModel):
    """Machine-readable error payload."""

    code: str
    message: str
    fields: Optional[list[FieldErrorModel]] = None


class ErrorResponse(ResponseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    error: ErrorDetail


class HealthResponse(ResponseModel):
    """Response for GET /api/v1/health."""

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
