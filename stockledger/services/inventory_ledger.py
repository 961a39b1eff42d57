import json
import logging
from contextlib import contextmanager
from dataclasses import replace
from typing import Iterator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from stockledger.core.config import settings
from stockledger.core.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidMovementError,
    LedgerError,
)
from stockledger.core.id_utils import generate_reference
from stockledger.db.session import WRITE_LOCK_OPTION, is_lock_conflict
from stockledger.models.inventory import MovementType, StockMovement, StockRecord
from stockledger.schemas.inventory import LedgerResultOut, StockRecordOut
from stockledger.services.location_service import require_active_location
from stockledger.services.stock_store import (
    MovementContext,
    append_movement,
    lock_or_create_stock_record,
    lock_stock_record,
    lock_variant_records_at_active_locations,
    movement_out,
    stock_record_out,
)
from stockledger.services.validation import (
    validate_adjustment,
    validate_minimum_stock,
    validate_movement,
    validate_transfer,
)

logger = logging.getLogger("stockledger.ledger")


class InventoryLedger:
    """
    Transactional engine for every stock-changing operation.

    Each public method validates its input, then runs one database transaction
    that locks the affected stock rows, checks invariants against the locked
    values, applies the change and appends the matching movement rows. Nothing
    is retried here; ConcurrencyConflictError is the caller's signal to retry.
    """

    def __init__(self, session_factory: sessionmaker, *, lock_timeout_ms: int | None = None):
        self._session_factory = session_factory
        self._lock_timeout_ms = lock_timeout_ms or settings.ledger_lock_timeout_ms

    @contextmanager
    def _transaction(self, operation: str, variant_id: str) -> Iterator[Session]:
        try:
            with self._session_factory.begin() as db:
                db.connection(execution_options={WRITE_LOCK_OPTION: True})
                self._apply_lock_timeout(db)
                yield db
        except DBAPIError as exc:
            if not is_lock_conflict(exc):
                raise
            self._log_rejection(operation, variant_id, ConcurrencyConflictError.code, str(exc.orig))
            raise ConcurrencyConflictError(
                f"Stock for variant {variant_id} is busy, retry the {operation}"
            ) from exc
        except LedgerError as exc:
            self._log_rejection(operation, variant_id, exc.code, exc.message)
            raise

    def _apply_lock_timeout(self, db: Session) -> None:
        if db.get_bind().dialect.name == "postgresql":
            db.execute(text(f"SET LOCAL lock_timeout = '{int(self._lock_timeout_ms)}ms'"))

    def _log_rejection(self, operation: str, variant_id: str, code: str, message: str) -> None:
        logger.warning(
            json.dumps(
                {
                    "event": "inventory.rejected",
                    "operation": operation,
                    "variant_id": variant_id,
                    "code": code,
                    "message": message,
                }
            )
        )

    def _result(
        self,
        db: Session,
        *,
        operation: str,
        variant_id: str,
        reference: str | None,
        records: list[StockRecord],
        movements: list[StockMovement],
    ) -> LedgerResultOut:
        db.flush()
        return LedgerResultOut(
            operation=operation,
            variant_id=variant_id,
            reference=reference,
            stock=[stock_record_out(record) for record in records],
            movements=[movement_out(movement) for movement in movements],
        )

    def _log_committed(self, result: LedgerResultOut) -> None:
        logger.info(
            json.dumps(
                {
                    "event": "inventory.movement",
                    "operation": result.operation,
                    "variant_id": result.variant_id,
                    "reference": result.reference,
                    "movement_ids": [movement.id for movement in result.movements],
                    "stock": [
                        {
                            "location_id": record.location_id,
                            "quantity": record.quantity,
                            "reserved": record.reserved,
                        }
                        for record in result.stock
                    ],
                }
            )
        )

    def reserve(
        self,
        variant_id: str,
        quantity: int,
        location_id: str | None = None,
        *,
        context: MovementContext | None = None,
    ) -> LedgerResultOut:
        context = context or MovementContext()
        validate_movement(
            variant_id=variant_id,
            quantity=quantity,
            context=context,
            locations={},
            optional_locations={"location_id": location_id},
        )

        with self._transaction("reserve", variant_id) as db:
            if location_id is not None:
                require_active_location(db, location_id)
                record = lock_stock_record(db, variant_id=variant_id, location_id=location_id)
                available = record.available if record else 0
                if record is None or available < quantity:
                    raise InsufficientStockError(
                        f"Insufficient stock. Available: {available}, Requested: {quantity}",
                        available=available,
                        requested=quantity,
                    )
            else:
                candidates = lock_variant_records_at_active_locations(db, variant_id=variant_id)
                record = next((c for c in candidates if c.available >= quantity), None)
                if record is None:
                    best = max((c.available for c in candidates), default=0)
                    raise InsufficientStockError(
                        f"No single location can reserve {quantity} of variant {variant_id}. "
                        f"Best available: {best}",
                        available=best,
                        requested=quantity,
                    )

            record.reserved += quantity
            movement = append_movement(
                db,
                variant_id=variant_id,
                operation_type=MovementType.RESERVE,
                quantity=quantity,
                to_location_id=record.location_id,
                context=context,
            )
            result = self._result(
                db,
                operation="reserve",
                variant_id=variant_id,
                reference=context.reference,
                records=[record],
                movements=[movement],
            )
        self._log_committed(result)
        return result

    def release(
        self,
        variant_id: str,
        quantity: int,
        location_id: str,
        *,
        context: MovementContext | None = None,
    ) -> LedgerResultOut:
        context = context or MovementContext()
        validate_movement(
            variant_id=variant_id,
            quantity=quantity,
            context=context,
            locations={"location_id": location_id},
        )

        with self._transaction("release", variant_id) as db:
            require_active_location(db, location_id)
            record = lock_stock_record(db, variant_id=variant_id, location_id=location_id)
            reserved = record.reserved if record else 0
            if record is None or quantity > reserved:
                raise InvalidMovementError(
                    f"Cannot release more than reserved. Reserved: {reserved}, Requested: {quantity}"
                )

            record.reserved -= quantity
            movement = append_movement(
                db,
                variant_id=variant_id,
                operation_type=MovementType.RELEASE,
                quantity=quantity,
                from_location_id=location_id,
                context=context,
            )
            result = self._result(
                db,
                operation="release",
                variant_id=variant_id,
                reference=context.reference,
                records=[record],
                movements=[movement],
            )
        self._log_committed(result)
        return result

    def receive(
        self,
        variant_id: str,
        quantity: int,
        to_location_id: str,
        *,
        context: MovementContext | None = None,
    ) -> LedgerResultOut:
        context = context or MovementContext()
        validate_movement(
            variant_id=variant_id,
            quantity=quantity,
            context=context,
            locations={"to_location_id": to_location_id},
        )

        with self._transaction("receive", variant_id) as db:
            require_active_location(db, to_location_id)
            record = lock_or_create_stock_record(db, variant_id=variant_id, location_id=to_location_id)
            record.quantity += quantity
            movement = append_movement(
                db,
                variant_id=variant_id,
                operation_type=MovementType.RECEIVE,
                quantity=quantity,
                to_location_id=to_location_id,
                context=context,
            )
            result = self._result(
                db,
                operation="receive",
                variant_id=variant_id,
                reference=context.reference,
                records=[record],
                movements=[movement],
            )
        self._log_committed(result)
        return result

    def ship(
        self,
        variant_id: str,
        quantity: int,
        from_location_id: str,
        *,
        context: MovementContext | None = None,
    ) -> LedgerResultOut:
        context = context or MovementContext()
        validate_movement(
            variant_id=variant_id,
            quantity=quantity,
            context=context,
            locations={"from_location_id": from_location_id},
        )

        with self._transaction("ship", variant_id) as db:
            require_active_location(db, from_location_id)
            record = lock_stock_record(db, variant_id=variant_id, location_id=from_location_id)
            on_hand = record.quantity if record else 0
            if record is None or on_hand < quantity:
                raise InsufficientStockError(
                    f"Insufficient stock. On hand: {on_hand}, Requested: {quantity}",
                    available=on_hand,
                    requested=quantity,
                )
            if record.reserved < quantity:
                raise InvalidMovementError(
                    f"Cannot ship unreserved stock. Reserved: {record.reserved}, Requested: {quantity}"
                )

            record.quantity -= quantity
            record.reserved -= quantity
            movement = append_movement(
                db,
                variant_id=variant_id,
                operation_type=MovementType.SHIP,
                quantity=quantity,
                from_location_id=from_location_id,
                context=context,
            )
            result = self._result(
                db,
                operation="ship",
                variant_id=variant_id,
                reference=context.reference,
                records=[record],
                movements=[movement],
            )
        self._log_committed(result)
        return result

    def transfer(
        self,
        variant_id: str,
        quantity: int,
        from_location_id: str,
        to_location_id: str,
        *,
        context: MovementContext | None = None,
    ) -> LedgerResultOut:
        context = context or MovementContext()
        validate_transfer(
            variant_id=variant_id,
            quantity=quantity,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            context=context,
        )
        if not context.reference:
            context = replace(context, reference=generate_reference("TRF"))

        with self._transaction("transfer", variant_id) as db:
            require_active_location(db, from_location_id)
            require_active_location(db, to_location_id)

            # Fixed lock order keeps two opposite transfers from deadlocking.
            locked: dict[str, StockRecord | None] = {}
            for location_id in sorted((from_location_id, to_location_id)):
                if location_id == from_location_id:
                    locked[location_id] = lock_stock_record(db, variant_id=variant_id, location_id=location_id)
                else:
                    locked[location_id] = lock_or_create_stock_record(
                        db, variant_id=variant_id, location_id=location_id
                    )
            source = locked[from_location_id]
            destination = locked[to_location_id]

            available = source.available if source else 0
            if source is None or available < quantity:
                raise InsufficientStockError(
                    f"Insufficient available stock. Available: {available}, Requested: {quantity}",
                    available=available,
                    requested=quantity,
                )

            source.quantity -= quantity
            destination.quantity += quantity
            movements = [
                append_movement(
                    db,
                    variant_id=variant_id,
                    operation_type=MovementType.TRANSFER_OUT,
                    quantity=quantity,
                    from_location_id=from_location_id,
                    to_location_id=to_location_id,
                    context=context,
                ),
                append_movement(
                    db,
                    variant_id=variant_id,
                    operation_type=MovementType.TRANSFER_IN,
                    quantity=quantity,
                    from_location_id=from_location_id,
                    to_location_id=to_location_id,
                    context=context,
                ),
            ]
            result = self._result(
                db,
                operation="transfer",
                variant_id=variant_id,
                reference=context.reference,
                records=[source, destination],
                movements=movements,
            )
        self._log_committed(result)
        return result

    def adjust(
        self,
        variant_id: str,
        location_id: str,
        new_quantity: int,
        *,
        context: MovementContext | None = None,
    ) -> LedgerResultOut:
        context = context or MovementContext()
        validate_adjustment(
            variant_id=variant_id,
            location_id=location_id,
            new_quantity=new_quantity,
            context=context,
        )

        with self._transaction("adjust", variant_id) as db:
            require_active_location(db, location_id)
            record = lock_or_create_stock_record(db, variant_id=variant_id, location_id=location_id)
            if new_quantity < record.reserved:
                raise InvalidMovementError(
                    f"Cannot set quantity to {new_quantity} below reserved {record.reserved}; "
                    "release the reservations first"
                )

            previous_quantity = record.quantity
            record.quantity = new_quantity
            movement = append_movement(
                db,
                variant_id=variant_id,
                operation_type=MovementType.ADJUST,
                quantity=new_quantity - previous_quantity,
                to_location_id=location_id,
                context=context,
                notes=context.notes or f"Adjusted from {previous_quantity} to {new_quantity}",
            )
            result = self._result(
                db,
                operation="adjust",
                variant_id=variant_id,
                reference=context.reference,
                records=[record],
                movements=[movement],
            )
        self._log_committed(result)
        return result

    def set_minimum_stock(self, variant_id: str, location_id: str, minimum: int) -> StockRecordOut:
        validate_minimum_stock(variant_id=variant_id, location_id=location_id, minimum=minimum)

        with self._transaction("set_minimum_stock", variant_id) as db:
            require_active_location(db, location_id)
            record = lock_or_create_stock_record(db, variant_id=variant_id, location_id=location_id)
            record.minimum = minimum
            db.flush()
            out = stock_record_out(record)
        logger.info(
            json.dumps(
                {
                    "event": "inventory.minimum_set",
                    "variant_id": variant_id,
                    "location_id": location_id,
                    "minimum": minimum,
                }
            )
        )
        return out
