from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from stockledger.core.id_utils import generate_row_id
from stockledger.models.inventory import MovementType, StockMovement, StockRecord
from stockledger.models.location import Location
from stockledger.schemas.inventory import MovementOut, StockRecordOut


@dataclass(frozen=True)
class MovementContext:
    """Optional audit fields attached to every movement a ledger call writes."""

    reference: str | None = None
    notes: str | None = None
    created_by: str | None = None


def _locking(stmt):
    return stmt.with_for_update().execution_options(populate_existing=True)


def lock_stock_record(db: Session, *, variant_id: str, location_id: str) -> StockRecord | None:
    stmt = select(StockRecord).where(
        StockRecord.variant_id == variant_id,
        StockRecord.location_id == location_id,
    )
    return db.execute(_locking(stmt)).scalar_one_or_none()


def lock_variant_records_at_active_locations(db: Session, *, variant_id: str) -> list[StockRecord]:
    stmt = (
        select(StockRecord)
        .join(Location, Location.id == StockRecord.location_id)
        .where(StockRecord.variant_id == variant_id, Location.is_active.is_(True))
        .order_by(StockRecord.location_id.asc())
        .with_for_update(of=StockRecord)
        .execution_options(populate_existing=True)
    )
    return list(db.execute(stmt).scalars().all())


def _insert_if_missing(db: Session, *, variant_id: str, location_id: str) -> None:
    values = {
        "id": generate_row_id(),
        "variant_id": variant_id,
        "location_id": location_id,
        "quantity": 0,
        "reserved": 0,
        "minimum": 0,
    }
    dialect_name = db.get_bind().dialect.name
    if dialect_name in {"postgresql", "sqlite"}:
        dialect_insert = postgresql.insert if dialect_name == "postgresql" else sqlite.insert
        stmt = dialect_insert(StockRecord).values(**values).on_conflict_do_nothing(
            index_elements=["variant_id", "location_id"]
        )
        db.execute(stmt)
        return

    if lock_stock_record(db, variant_id=variant_id, location_id=location_id) is not None:
        return
    try:
        with db.begin_nested():
            db.add(StockRecord(**values))
    except IntegrityError:
        # A concurrent transaction created the row first; the locking read picks it up.
        pass


def lock_or_create_stock_record(db: Session, *, variant_id: str, location_id: str) -> StockRecord:
    _insert_if_missing(db, variant_id=variant_id, location_id=location_id)
    record = lock_stock_record(db, variant_id=variant_id, location_id=location_id)
    if record is None:
        raise RuntimeError(f"Stock record for {variant_id}@{location_id} vanished after insert")
    return record


def append_movement(
    db: Session,
    *,
    variant_id: str,
    operation_type: MovementType,
    quantity: int,
    context: MovementContext,
    from_location_id: str | None = None,
    to_location_id: str | None = None,
    notes: str | None = None,
) -> StockMovement:
    movement = StockMovement(
        variant_id=variant_id,
        operation_type=operation_type.value,
        quantity=quantity,
        from_location_id=from_location_id,
        to_location_id=to_location_id,
        reference=context.reference,
        notes=notes if notes is not None else context.notes,
        created_by=context.created_by,
    )
    db.add(movement)
    return movement


def stock_record_out(record: StockRecord) -> StockRecordOut:
    return StockRecordOut(
        variant_id=record.variant_id,
        location_id=record.location_id,
        quantity=record.quantity,
        reserved=record.reserved,
        minimum=record.minimum,
        available=record.available,
        updated_at=record.updated_at,
    )


def movement_out(movement: StockMovement) -> MovementOut:
    return MovementOut(
        id=movement.id,
        variant_id=movement.variant_id,
        operation_type=MovementType(movement.operation_type),
        quantity=movement.quantity,
        from_location_id=movement.from_location_id,
        to_location_id=movement.to_location_id,
        reference=movement.reference,
        notes=movement.notes,
        created_by=movement.created_by,
        created_at=movement.created_at,
    )
