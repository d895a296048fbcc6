"""
plans/models.py -- Domain dataclasses for the crop catalog and crop cases.

These are pure data containers with zero logic. Visibility rules, ownership
checks and pagination live in plans/store.py and the route layer.

Separation of concerns: these dataclasses are the planning domain's truth,
just as auth/models.py is the identity domain's truth. Neither layer imports
the other; a CropCase refers to its owner by user_id only.
"""

from dataclasses import dataclass, field
from typing import Optional


@dataclass
class Crop:
    """A catalog crop. duration is the typical growing period in days."""

    name: str
    season: str  # "Summer" | "Winter" | "Monsoon" | ...
    description: str = ""
    duration: int = 0
    id: Optional[int] = None


@dataclass
class CaseCrop:
    """One crop allocated within a case.

    weight is the crop's share of the case's land as an integer percentage.
    crop is filled in by the store when the case is read back; it is None on
    write.
    """

    crop_id: int
    weight: int
    notes: Optional[str] = None
    crop: Optional[Crop] = None
    case_id: Optional[int] = None
    id: Optional[int] = None


@dataclass
class CropCase:
    """A user's crop plan for an area of land.

    id is None before the record is written to the database. views and
    like_count are maintained by the store, never set by callers.
    """

    user_id: int
    name: str
    total_land: float
    description: Optional[str] = None
    location: Optional[str] = None
    is_public: bool = False
    start_date: Optional[str] = None  # YYYY-MM-DD
    end_date: Optional[str] = None  # YYYY-MM-DD
    budget: Optional[float] = None
    notes: Optional[str] = None
    status: str = "active"  # "active" | "completed" | "paused"
    efficiency: Optional[float] = None
    estimated_profit: Optional[float] = None
    tags: list[str] = field(default_factory=list)
    crops: list[CaseCrop] = field(default_factory=list)
    views: int = 0
    like_count: int = 0
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""


@dataclass
class CommunityFilter:
    """Query options for the community feed."""

    q: str = ""
    min_land: Optional[float] = None
    max_land: Optional[float] = None
    tags: list[str] = field(default_factory=list)  # any-of match
    season: Optional[str] = None
    sort_by: str = "recent"  # "recent" | "popular" | "views" | "alphabetical"
    sort_order: str = "desc"


@dataclass
class CommunityStats:
    total_community_cases: int
    total_farmers: int
    total_likes: int
    average_likes_per_case: float
