from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from stockledger.core.errors import InvalidLocationError
from stockledger.models.inventory import StockRecord
from stockledger.models.location import Location


def get_location(db: Session, location_id: str) -> Location | None:
    return db.execute(select(Location).where(Location.id == location_id)).scalar_one_or_none()


def require_active_location(db: Session, location_id: str) -> Location:
    location = get_location(db, location_id)
    if location is None:
        raise InvalidLocationError(location_id, "not found")
    if not location.is_active:
        raise InvalidLocationError(location_id, "inactive")
    return location


def location_code_exists(db: Session, code: str, *, exclude_id: str | None = None) -> bool:
    stmt = select(Location.id).where(func.upper(Location.code) == code.strip().upper())
    if exclude_id is not None:
        stmt = stmt.where(Location.id != exclude_id)
    return db.execute(stmt.limit(1)).scalar_one_or_none() is not None


def location_holds_stock(db: Session, location_id: str) -> bool:
    stmt = (
        select(StockRecord.id)
        .where(
            StockRecord.location_id == location_id,
            or_(StockRecord.quantity > 0, StockRecord.reserved > 0),
        )
        .limit(1)
    )
    return db.execute(stmt).scalar_one_or_none() is not None


def descendant_ids(db: Session, location_id: str) -> set[str]:
    found: set[str] = set()
    frontier = [location_id]
    while frontier:
        children = db.execute(select(Location.id).where(Location.parent_id.in_(frontier))).scalars().all()
        frontier = [child for child in children if child not in found]
        found.update(frontier)
    return found


def parent_conflict(db: Session, location_id: str | None, parent_id: str) -> str | None:
    """Return why ``parent_id`` cannot parent ``location_id``, or None when it can."""
    if get_location(db, parent_id) is None:
        return "Parent location not found"
    if location_id is None:
        return None
    if parent_id == location_id:
        return "A location cannot be its own parent"
    if parent_id in descendant_ids(db, location_id):
        return "A location cannot be nested under one of its descendants"
    return None


def stock_record_counts(db: Session, location_ids: list[str]) -> dict[str, int]:
    if not location_ids:
        return {}
    rows = db.execute(
        select(StockRecord.location_id, func.count(StockRecord.id))
        .where(StockRecord.location_id.in_(location_ids))
        .group_by(StockRecord.location_id)
    ).all()
    return {location_id: int(count) for location_id, count in rows}


def active_location_tree(db: Session) -> list[dict]:
    """Active root locations with their active descendants nested under ``children``, sorted by name."""
    locations = db.execute(
        select(Location).where(Location.is_active.is_(True)).order_by(Location.name.asc(), Location.id.asc())
    ).scalars().all()
    counts = stock_record_counts(db, [location.id for location in locations])

    nodes = {
        location.id: {
            "id": location.id,
            "name": location.name,
            "code": location.code,
            "type": location.type,
            "stock_record_count": counts.get(location.id, 0),
            "children": [],
        }
        for location in locations
    }
    roots = []
    for location in locations:
        if location.parent_id is None:
            roots.append(nodes[location.id])
        elif location.parent_id in nodes:
            nodes[location.parent_id]["children"].append(nodes[location.id])
    return roots
