import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.api_docs import error_responses
from stockledger.core.deps import get_db
from stockledger.core.id_utils import generate_row_id
from stockledger.models.location import Location, LocationType
from stockledger.schemas.common import build_pagination
from stockledger.schemas.location import (
    LocationCreateIn,
    LocationListOut,
    LocationOut,
    LocationTreeOut,
    LocationUpdateIn,
)
from stockledger.services.location_service import (
    active_location_tree,
    get_location,
    location_code_exists,
    location_holds_stock,
    parent_conflict,
    stock_record_counts,
)

router = APIRouter(prefix="/locations", tags=["locations"])
logger = logging.getLogger("stockledger.locations")


def _location_or_404(db: Session, location_id: str) -> Location:
    location = get_location(db, location_id)
    if not location:
        raise HTTPException(status_code=404, detail="Location not found")
    return location


def _location_out(location: Location, stock_record_count: int = 0) -> LocationOut:
    return LocationOut(
        id=location.id,
        name=location.name,
        code=location.code,
        type=LocationType(location.type),
        parent_id=location.parent_id,
        is_active=location.is_active,
        stock_record_count=stock_record_count,
        created_at=location.created_at,
        updated_at=location.updated_at,
    )


def _location_detail(db: Session, location: Location) -> LocationOut:
    counts = stock_record_counts(db, [location.id])
    return _location_out(location, counts.get(location.id, 0))


def _log_location_event(action: str, location: Location) -> None:
    logger.info(
        json.dumps(
            {
                "event": f"location.{action}",
                "location_id": location.id,
                "code": location.code,
                "type": location.type,
                "parent_id": location.parent_id,
                "is_active": location.is_active,
            }
        )
    )


def _ensure_no_stock(db: Session, location: Location) -> None:
    if location_holds_stock(db, location.id):
        raise HTTPException(
            status_code=409,
            detail="Cannot deactivate a location that still holds or reserves stock. Move stock first.",
        )


def _ensure_valid_parent(db: Session, location_id: str | None, parent_id: str) -> None:
    reason = parent_conflict(db, location_id, parent_id)
    if reason:
        raise HTTPException(status_code=400, detail=reason)


@router.post(
    "",
    response_model=LocationOut,
    summary="Create location",
    responses=error_responses(400, 409, 422, 500),
)
def create_location(
    payload: LocationCreateIn,
    db: Session = Depends(get_db),
):
    normalized_code = payload.code.strip().upper()
    if location_code_exists(db, normalized_code):
        raise HTTPException(status_code=409, detail="Location code already exists")
    if payload.parent_id is not None:
        _ensure_valid_parent(db, None, payload.parent_id)

    location = Location(
        id=generate_row_id(),
        name=payload.name.strip(),
        code=normalized_code,
        type=payload.type.value,
        parent_id=payload.parent_id,
        is_active=True,
    )
    db.add(location)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with a concurrent create of the same code.
        db.rollback()
        raise HTTPException(status_code=409, detail="Location code already exists")
    db.refresh(location)
    _log_location_event("create", location)
    return _location_out(location)


@router.get(
    "",
    response_model=LocationListOut,
    summary="List locations",
    responses=error_responses(422, 500),
)
def list_locations(
    include_inactive: bool = Query(default=False),
    location_type: LocationType | None = Query(default=None, alias="type"),
    parent_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    filters = []
    if not include_inactive:
        filters.append(Location.is_active.is_(True))
    if location_type is not None:
        filters.append(Location.type == location_type.value)
    if parent_id is not None:
        filters.append(Location.parent_id == parent_id)

    total = int(db.execute(select(func.count(Location.id)).where(*filters)).scalar_one())
    rows = db.execute(
        select(Location)
        .where(*filters)
        .order_by(Location.created_at.asc(), Location.id.asc())
        .offset(offset)
        .limit(limit)
    ).scalars().all()
    counts = stock_record_counts(db, [row.id for row in rows])
    items = [_location_out(row, counts.get(row.id, 0)) for row in rows]
    return LocationListOut(
        items=items,
        pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
    )


@router.get(
    "/tree",
    response_model=LocationTreeOut,
    summary="Get active location hierarchy",
    responses=error_responses(500),
)
def get_location_tree(
    db: Session = Depends(get_db),
):
    return LocationTreeOut(items=active_location_tree(db))


@router.get(
    "/{location_id}",
    response_model=LocationOut,
    summary="Get location",
    responses=error_responses(404, 500),
)
def get_location_detail(
    location_id: str,
    db: Session = Depends(get_db),
):
    return _location_detail(db, _location_or_404(db, location_id))


@router.patch(
    "/{location_id}",
    response_model=LocationOut,
    summary="Update location",
    responses=error_responses(400, 404, 409, 422, 500),
)
def update_location(
    location_id: str,
    payload: LocationUpdateIn,
    db: Session = Depends(get_db),
):
    location = _location_or_404(db, location_id)
    if payload.name is not None:
        location.name = payload.name
    if payload.type is not None:
        location.type = payload.type.value
    if "parent_id" in payload.model_fields_set:
        if payload.parent_id is not None:
            _ensure_valid_parent(db, location.id, payload.parent_id)
        location.parent_id = payload.parent_id
    if payload.is_active is False and location.is_active:
        _ensure_no_stock(db, location)
    if payload.is_active is not None:
        location.is_active = payload.is_active

    db.commit()
    db.refresh(location)
    _log_location_event("update", location)
    return _location_detail(db, location)


@router.post(
    "/{location_id}/deactivate",
    response_model=LocationOut,
    summary="Deactivate location",
    responses=error_responses(404, 409, 500),
)
def deactivate_location(
    location_id: str,
    db: Session = Depends(get_db),
):
    location = _location_or_404(db, location_id)
    if not location.is_active:
        return _location_detail(db, location)

    _ensure_no_stock(db, location)
    location.is_active = False
    db.commit()
    db.refresh(location)
    _log_location_event("deactivate", location)
    return _location_detail(db, location)


@router.post(
    "/{location_id}/activate",
    response_model=LocationOut,
    summary="Activate location",
    responses=error_responses(404, 500),
)
def activate_location(
    location_id: str,
    db: Session = Depends(get_db),
):
    location = _location_or_404(db, location_id)
    if location.is_active:
        return _location_detail(db, location)

    location.is_active = True
    db.commit()
    db.refresh(location)
    _log_location_event("activate", location)
    return _location_detail(db, location)
