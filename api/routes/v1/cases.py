"""
api/routes/v1/cases.py -- Crop case (crop plan) routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST   /cases                    -- create case with optional crop allocation
  GET    /cases                    -- public cases + caller's own, paginated
  GET    /cases/mine               -- caller's cases, paginated
  GET    /cases/community          -- other users' public cases, filters + stats
  GET    /cases/{case_id}          -- case detail; non-owner views are counted
  PUT    /cases/{case_id}          -- partial update (owner only)
  DELETE /cases/{case_id}          -- delete with crops and likes (owner only)
  POST   /cases/{case_id}/crops    -- add crops, skipping existing (owner only)
  PUT    /cases/{case_id}/crops    -- replace crop allocation (owner only)
  POST   /cases/{case_id}/like     -- like a visible case
  DELETE /cases/{case_id}/like     -- remove the caller's like

Visibility and ownership:
  A private case that the caller does not own answers 404, exactly like a
  case that does not exist, so ids of private plans cannot be probed.
  A public case the caller does not own answers 403 on owner-only routes.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from api.models import (
    MAX_PAGE_SIZE,
    CaseCreate,
    CaseCropInput,
    CaseCropsRequest,
    CaseListResponse,
    CaseResponse,
    CaseUpdate,
    CommunityResponse,
    CommunityStatsResponse,
    LikeResponse,
    MessageResponse,
    Pagination,
    SortByEnum,
    SortOrderEnum,
)
from auth.dependencies import get_current_user
from auth.models import User
from core.errors import Conflict, FieldError, Forbidden, NotFound, ValidationError
from plans.models import CommunityFilter, CropCase
from plans.store import PlanStore

logger = logging.getLogger("cropcase.plans")

# All case routes require authentication. Handlers that need the caller take
# Depends(get_current_user) themselves; FastAPI resolves it once per request.
router = APIRouter(dependencies=[Depends(get_current_user)])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_responses(request: Request, cases: list[CropCase], viewer: User) -> list[CaseResponse]:
    """Attach owner summaries and the viewer's like flags with one query each."""
    store: PlanStore = request.app.state.plan_store
    owners = request.app.state.user_store.get_many({c.user_id for c in cases})
    liked = store.liked_case_ids(viewer.id, [c.id for c in cases])
    return [CaseResponse.from_case(c, owners.get(c.user_id), c.id in liked) for c in cases]


def _visible_case(store: PlanStore, case_id: int, user: User) -> CropCase:
    case = store.get_case(case_id)
    if case is None or (not case.is_public and case.user_id != user.id):
        raise NotFound("Case not found.")
    return case


def _owned_case(store: PlanStore, case_id: int, user: User) -> CropCase:
    case = _visible_case(store, case_id, user)
    if case.user_id != user.id:
        raise Forbidden("You can only modify your own cases.")
    return case


def _check_crop_ids(store: PlanStore, crops: list[CaseCropInput]) -> None:
    missing = store.missing_crop_ids(c.crop_id for c in crops)
    if missing:
        ids = ", ".join(str(i) for i in sorted(missing))
        raise ValidationError(
            "One or more crops do not exist.",
            fields=[FieldError("crops", f"Unknown crop id(s): {ids}.")],
        )


# ---------------------------------------------------------------------------
# Collection routes
# ---------------------------------------------------------------------------


@router.post("/cases", response_model=CaseResponse, status_code=201)
def create_case(
    request: Request,
    body: CaseCreate,
    user: User = Depends(get_current_user),
) -> CaseResponse:
    store: PlanStore = request.app.state.plan_store
    _check_crop_ids(store, body.crops)
    case_id = store.create_case(body.to_domain(user.id))
    logger.info("Case created: case_id=%s user_id=%s", case_id, user.id)
    return CaseResponse.from_case(store.get_case(case_id), user)


@router.get("/cases", response_model=CaseListResponse)
def list_cases(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    user_id: Optional[int] = Query(default=None, alias="userId", ge=1),
    user: User = Depends(get_current_user),
) -> CaseListResponse:
    """Public cases plus the caller's private ones. ?userId= narrows to one owner."""
    cases, total = request.app.state.plan_store.list_visible_cases(user.id, page, limit, owner_id=user_id)
    return CaseListResponse(data=_to_responses(request, cases, user), pagination=Pagination.build(page, limit, total))


@router.get("/cases/mine", response_model=CaseListResponse)
def my_cases(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    user: User = Depends(get_current_user),
) -> CaseListResponse:
    cases, total = request.app.state.plan_store.list_user_cases(user.id, page, limit)
    return CaseListResponse(data=_to_responses(request, cases, user), pagination=Pagination.build(page, limit, total))


@router.get("/cases/community", response_model=CommunityResponse)
def community_cases(
    request: Request,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=MAX_PAGE_SIZE),
    q: str = Query(default="", max_length=100),
    min_land: Optional[float] = Query(default=None, alias="minLand", ge=0),
    max_land: Optional[float] = Query(default=None, alias="maxLand", ge=0),
    tags: Optional[str] = Query(default=None, max_length=200, description="Comma-separated; matches any"),
    season: Optional[str] = Query(default=None, max_length=30),
    sort_by: SortByEnum = Query(default=SortByEnum.recent, alias="sortBy"),
    sort_order: SortOrderEnum = Query(default=SortOrderEnum.desc, alias="sortOrder"),
    user: User = Depends(get_current_user),
) -> CommunityResponse:
    """Browse other farmers' public cases."""
    if min_land is not None and max_land is not None and min_land > max_land:
        raise ValidationError(
            "minLand must not exceed maxLand.",
            fields=[FieldError("minLand", "Must be less than or equal to maxLand.")],
        )
    flt = CommunityFilter(
        q=q,
        min_land=min_land,
        max_land=max_land,
        tags=[t.strip() for t in (tags or "").split(",") if t.strip()],
        season=season or None,
        sort_by=sort_by.value,
        sort_order=sort_order.value,
    )
    cases, total, stats = request.app.state.plan_store.community_cases(user.id, flt, page, limit)
    return CommunityResponse(
        data=_to_responses(request, cases, user),
        pagination=Pagination.build(page, limit, total),
        stats=CommunityStatsResponse.from_stats(stats),
    )


# ---------------------------------------------------------------------------
# Single case routes
# ---------------------------------------------------------------------------


@router.get("/cases/{case_id}", response_model=CaseResponse)
def get_case(request: Request, case_id: int, user: User = Depends(get_current_user)) -> CaseResponse:
    """Case detail. A view by anyone other than the owner increments views."""
    store: PlanStore = request.app.state.plan_store
    case = _visible_case(store, case_id, user)
    if case.user_id != user.id:
        store.increment_views(case_id)
        case.views += 1
    return _to_responses(request, [case], user)[0]


@router.put("/cases/{case_id}", response_model=CaseResponse)
def update_case(
    request: Request,
    case_id: int,
    body: CaseUpdate,
    user: User = Depends(get_current_user),
) -> CaseResponse:
    store: PlanStore = request.app.state.plan_store
    case = _owned_case(store, case_id, user)
    changes = body.changes()
    # A one-sided date change must still leave the range ordered.
    start = changes.get("start_date", case.start_date)
    end = changes.get("end_date", case.end_date)
    if start and end and end < start:
        raise ValidationError(
            "endDate must not be before startDate.",
            fields=[FieldError("endDate", "Must be on or after startDate.")],
        )
    store.update_case(case_id, **changes)
    return _to_responses(request, [store.get_case(case_id)], user)[0]


@router.delete("/cases/{case_id}", response_model=MessageResponse)
def delete_case(request: Request, case_id: int, user: User = Depends(get_current_user)) -> MessageResponse:
    store: PlanStore = request.app.state.plan_store
    _owned_case(store, case_id, user)
    store.delete_case(case_id)
    logger.info("Case deleted: case_id=%s user_id=%s", case_id, user.id)
    return MessageResponse(message="Case deleted successfully.")


# ---------------------------------------------------------------------------
# Crop allocation routes
# ---------------------------------------------------------------------------


@router.post("/cases/{case_id}/crops", response_model=CaseResponse)
def add_case_crops(
    request: Request,
    case_id: int,
    body: CaseCropsRequest,
    user: User = Depends(get_current_user),
) -> CaseResponse:
    """Add crops to a case. Crops already in the case are left as they are."""
    if not body.crops:
        raise ValidationError("Provide at least one crop.", fields=[FieldError("crops", "Must not be empty.")])
    store: PlanStore = request.app.state.plan_store
    _owned_case(store, case_id, user)
    _check_crop_ids(store, body.crops)
    store.add_case_crops(case_id, [c.to_domain() for c in body.crops])
    return _to_responses(request, [store.get_case(case_id)], user)[0]


@router.put("/cases/{case_id}/crops", response_model=CaseResponse)
def replace_case_crops(
    request: Request,
    case_id: int,
    body: CaseCropsRequest,
    user: User = Depends(get_current_user),
) -> CaseResponse:
    """Replace the whole crop allocation. An empty list clears it."""
    store: PlanStore = request.app.state.plan_store
    _owned_case(store, case_id, user)
    _check_crop_ids(store, body.crops)
    store.replace_case_crops(case_id, [c.to_domain() for c in body.crops])
    return _to_responses(request, [store.get_case(case_id)], user)[0]


# ---------------------------------------------------------------------------
# Likes
# ---------------------------------------------------------------------------


@router.post("/cases/{case_id}/like", response_model=LikeResponse)
def like_case(request: Request, case_id: int, user: User = Depends(get_current_user)) -> LikeResponse:
    store: PlanStore = request.app.state.plan_store
    _visible_case(store, case_id, user)
    try:
        store.add_like(case_id, user.id)
    except IntegrityError as exc:
        raise Conflict("You have already liked this case.") from exc
    return LikeResponse(message="Case liked.", liked=True, like_count=store.get_case(case_id).like_count)


@router.delete("/cases/{case_id}/like", response_model=LikeResponse)
def unlike_case(request: Request, case_id: int, user: User = Depends(get_current_user)) -> LikeResponse:
    store: PlanStore = request.app.state.plan_store
    _visible_case(store, case_id, user)
    if not store.remove_like(case_id, user.id):
        raise NotFound("You have not liked this case.")
    return LikeResponse(message="Like removed.", liked=False, like_count=store.get_case(case_id).like_count)
