import math
from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session, sessionmaker

from stockledger.core.config import settings
from stockledger.core.errors import ConcurrencyConflictError
from stockledger.db.session import is_lock_conflict
from stockledger.models.inventory import StockMovement, StockRecord
from stockledger.schemas.common import build_pagination
from stockledger.schemas.inventory import (
    InventoryListOut,
    LowStockListOut,
    MovementHistoryOut,
    StockFilter,
    StockListOut,
)
from stockledger.services.stock_store import movement_out, stock_record_out


class InventoryQueryService:
    """Read-only projections over stock records and the movement log."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _reading(self) -> Iterator[Session]:
        try:
            with self._session_factory() as db:
                yield db
        except DBAPIError as exc:
            if not is_lock_conflict(exc):
                raise
            raise ConcurrencyConflictError("Stock is busy, retry the read") from exc

    def get_stock(self, variant_id: str, location_id: str | None = None) -> StockListOut:
        stmt = select(StockRecord).where(StockRecord.variant_id == variant_id)
        if location_id is not None:
            stmt = stmt.where(StockRecord.location_id == location_id)

        with self._reading() as db:
            rows = db.execute(stmt.order_by(StockRecord.location_id.asc())).scalars().all()
            items = [stock_record_out(row) for row in rows]
        return StockListOut(variant_id=variant_id, items=items)

    def get_total_available_stock(self, variant_id: str) -> int:
        stmt = select(
            func.coalesce(func.sum(StockRecord.quantity - StockRecord.reserved), 0)
        ).where(StockRecord.variant_id == variant_id)
        with self._reading() as db:
            total = int(db.execute(stmt).scalar_one())
        return max(total, 0)

    def get_low_stock(
        self,
        *,
        threshold: int | None = None,
        location_id: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> LowStockListOut:
        if threshold is None:
            condition = StockRecord.quantity < StockRecord.minimum
        else:
            condition = StockRecord.quantity < threshold
        filters = [condition]
        if location_id is not None:
            filters.append(StockRecord.location_id == location_id)

        with self._reading() as db:
            total = int(db.execute(select(func.count(StockRecord.id)).where(*filters)).scalar_one())
            rows = db.execute(
                select(StockRecord)
                .where(*filters)
                .order_by(StockRecord.quantity.asc(), StockRecord.location_id.asc(), StockRecord.variant_id.asc())
                .offset(offset)
                .limit(limit)
            ).scalars().all()
            items = [stock_record_out(row) for row in rows]

        return LowStockListOut(
            threshold=threshold,
            items=items,
            pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
        )

    def get_movement_history(
        self,
        variant_id: str,
        *,
        page: int = 1,
        limit: int | None = None,
        location_id: str | None = None,
    ) -> MovementHistoryOut:
        page = max(page, 1)
        limit = min(limit or settings.movement_history_default_limit, settings.movement_history_max_limit)
        offset = (page - 1) * limit

        filters = [StockMovement.variant_id == variant_id]
        if location_id is not None:
            filters.append(
                or_(
                    StockMovement.from_location_id == location_id,
                    StockMovement.to_location_id == location_id,
                )
            )

        with self._reading() as db:
            total = int(db.execute(select(func.count(StockMovement.id)).where(*filters)).scalar_one())
            rows = db.execute(
                select(StockMovement)
                .where(*filters)
                .order_by(StockMovement.created_at.desc(), StockMovement.id.desc())
                .offset(offset)
                .limit(limit)
            ).scalars().all()
            items = [movement_out(row) for row in rows]

        return MovementHistoryOut(
            variant_id=variant_id,
            page=page,
            total_pages=math.ceil(total / limit) if total else 0,
            items=items,
            pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
        )

    def list_inventory(
        self,
        *,
        location_id: str | None = None,
        stock_filter: StockFilter = "all",
        limit: int = 50,
        offset: int = 0,
    ) -> InventoryListOut:
        filters = []
        if location_id is not None:
            filters.append(StockRecord.location_id == location_id)
        if stock_filter == "low":
            filters.append(
                and_(
                    StockRecord.quantity > 0,
                    or_(
                        and_(StockRecord.minimum > 0, StockRecord.quantity <= StockRecord.minimum),
                        StockRecord.quantity <= settings.low_stock_default_threshold,
                    ),
                )
            )
        elif stock_filter == "out":
            filters.append(StockRecord.quantity == 0)

        with self._reading() as db:
            total = int(db.execute(select(func.count(StockRecord.id)).where(*filters)).scalar_one())
            rows = db.execute(
                select(StockRecord)
                .where(*filters)
                .order_by(StockRecord.quantity.asc(), StockRecord.location_id.asc(), StockRecord.variant_id.asc())
                .offset(offset)
                .limit(limit)
            ).scalars().all()
            items = [stock_record_out(row) for row in rows]

        return InventoryListOut(
            filter=stock_filter,
            items=items,
            pagination=build_pagination(total=total, limit=limit, offset=offset, count=len(items)),
        )
