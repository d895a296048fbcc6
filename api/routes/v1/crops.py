"""
api/routes/v1/crops.py -- Crop catalog routes.

Routes:
  GET  /crops            -- list catalog, optional ?season= filter (public)
  GET  /crops/{crop_id}  -- single crop (public)
  POST /crops            -- add a catalog crop (admin only)

The catalog is reference data. Users read it to build case allocations;
only admins (or the seed-crops CLI command) add to it.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError

from api.models import CropCreate, CropResponse
from auth.dependencies import require_admin
from auth.models import User
from core.errors import Conflict, FieldError, NotFound
from plans.models import Crop
from plans.store import PlanStore

router = APIRouter()


@router.get("/crops", response_model=list[CropResponse])
def list_crops(
    request: Request,
    season: Optional[str] = Query(default=None, max_length=30),
) -> list[CropResponse]:
    store: PlanStore = request.app.state.plan_store
    return [CropResponse.from_crop(c) for c in store.list_crops(season)]


@router.get("/crops/{crop_id}", response_model=CropResponse)
def get_crop(request: Request, crop_id: int) -> CropResponse:
    crop = request.app.state.plan_store.get_crop(crop_id)
    if crop is None:
        raise NotFound("Crop not found.")
    return CropResponse.from_crop(crop)


@router.post("/crops", response_model=CropResponse, status_code=201)
def create_crop(
    request: Request,
    body: CropCreate,
    admin: User = Depends(require_admin),
) -> CropResponse:
    """Add a crop to the catalog. Names are unique."""
    store: PlanStore = request.app.state.plan_store
    crop = Crop(name=body.name, season=body.season, description=body.description, duration=body.duration)
    try:
        crop.id = store.create_crop(crop)
    except IntegrityError as exc:
        raise Conflict(
            f"Crop '{body.name}' already exists.",
            fields=[FieldError("name", "Crop name is already in the catalog.")],
        ) from exc
    return CropResponse.from_crop(crop)
