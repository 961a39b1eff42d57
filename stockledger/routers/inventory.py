from fastapi import APIRouter, Depends, Query

from stockledger.core.api_docs import error_responses
from stockledger.core.config import settings
from stockledger.core.deps import get_actor_id, get_ledger, get_query_service
from stockledger.schemas.inventory import (
    AdjustIn,
    AvailableStockOut,
    InventoryListOut,
    LedgerResultOut,
    LowStockListOut,
    MinimumStockIn,
    MovementHistoryOut,
    ReceiveIn,
    ReleaseIn,
    ReserveIn,
    ShipIn,
    StockFilter,
    StockListOut,
    StockRecordOut,
    TransferIn,
)
from stockledger.services.inventory_ledger import InventoryLedger
from stockledger.services.inventory_query_service import InventoryQueryService
from stockledger.services.stock_store import MovementContext

router = APIRouter(prefix="/inventory", tags=["inventory"])

_MUTATION_ERRORS = error_responses(400, 409, 422, 500, 503)


def _context(payload, actor_id: str | None) -> MovementContext:
    return MovementContext(reference=payload.reference, notes=payload.notes, created_by=actor_id)


@router.get(
    "",
    response_model=InventoryListOut,
    summary="List stock records",
    responses=error_responses(422, 500),
)
def list_inventory(
    location_id: str | None = Query(default=None),
    stock_filter: StockFilter = Query(default="all", alias="filter"),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    queries: InventoryQueryService = Depends(get_query_service),
):
    return queries.list_inventory(location_id=location_id, stock_filter=stock_filter, limit=limit, offset=offset)


@router.get(
    "/low-stock",
    response_model=LowStockListOut,
    summary="List stock records below their minimum",
    responses=error_responses(422, 500),
)
def list_low_stock(
    threshold: int | None = Query(default=None, ge=0, description="Overrides each record's minimum."),
    location_id: str | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    queries: InventoryQueryService = Depends(get_query_service),
):
    return queries.get_low_stock(threshold=threshold, location_id=location_id, limit=limit, offset=offset)


@router.post(
    "/reserve",
    response_model=LedgerResultOut,
    summary="Reserve stock for an order",
    responses=_MUTATION_ERRORS,
)
def reserve_stock(
    payload: ReserveIn,
    ledger: InventoryLedger = Depends(get_ledger),
    actor_id: str | None = Depends(get_actor_id),
):
    return ledger.reserve(
        payload.variant_id,
        payload.quantity,
        payload.location_id,
        context=_context(payload, actor_id),
    )


@router.post(
    "/release",
    response_model=LedgerResultOut,
    summary="Release reserved stock",
    responses=_MUTATION_ERRORS,
)
def release_stock(
    payload: ReleaseIn,
    ledger: InventoryLedger = Depends(get_ledger),
    actor_id: str | None = Depends(get_actor_id),
):
    return ledger.release(
        payload.variant_id,
        payload.quantity,
        payload.location_id,
        context=_context(payload, actor_id),
    )


@router.post(
    "/receive",
    response_model=LedgerResultOut,
    summary="Receive goods into a location",
    responses=_MUTATION_ERRORS,
)
def receive_stock(
    payload: ReceiveIn,
    ledger: InventoryLedger = Depends(get_ledger),
    actor_id: str | None = Depends(get_actor_id),
):
    return ledger.receive(
        payload.variant_id,
        payload.quantity,
        payload.to_location_id,
        context=_context(payload, actor_id),
    )


@router.post(
    "/ship",
    response_model=LedgerResultOut,
    summary="Ship reserved stock out of a location",
    responses=_MUTATION_ERRORS,
)
def ship_stock(
    payload: ShipIn,
    ledger: InventoryLedger = Depends(get_ledger),
    actor_id: str | None = Depends(get_actor_id),
):
    return ledger.ship(
        payload.variant_id,
        payload.quantity,
        payload.from_location_id,
        context=_context(payload, actor_id),
    )


@router.post(
    "/transfer",
    response_model=LedgerResultOut,
    summary="Transfer available stock between locations",
    responses=_MUTATION_ERRORS,
)
def transfer_stock(
    payload: TransferIn,
    ledger: InventoryLedger = Depends(get_ledger),
    actor_id: str | None = Depends(get_actor_id),
):
    return ledger.transfer(
        payload.variant_id,
        payload.quantity,
        payload.from_location_id,
        payload.to_location_id,
        context=_context(payload, actor_id),
    )


@router.post(
    "/adjust",
    response_model=LedgerResultOut,
    summary="Set the on-hand count at a location",
    responses=_MUTATION_ERRORS,
)
def adjust_stock(
    payload: AdjustIn,
    ledger: InventoryLedger = Depends(get_ledger),
    actor_id: str | None = Depends(get_actor_id),
):
    return ledger.adjust(
        payload.variant_id,
        payload.location_id,
        payload.new_quantity,
        context=_context(payload, actor_id),
    )


@router.put(
    "/minimum",
    response_model=StockRecordOut,
    summary="Set the reorder threshold for a variant at a location",
    responses=error_responses(400, 422, 500, 503),
)
def set_minimum_stock(
    payload: MinimumStockIn,
    ledger: InventoryLedger = Depends(get_ledger),
):
    return ledger.set_minimum_stock(payload.variant_id, payload.location_id, payload.minimum)


@router.get(
    "/{variant_id}",
    response_model=StockListOut,
    summary="Get stock records for a variant",
    responses=error_responses(422, 500),
)
def get_stock(
    variant_id: str,
    location_id: str | None = Query(default=None),
    queries: InventoryQueryService = Depends(get_query_service),
):
    return queries.get_stock(variant_id, location_id)


@router.get(
    "/{variant_id}/available",
    response_model=AvailableStockOut,
    summary="Get total available stock for a variant",
    responses=error_responses(500),
)
def get_available_stock(
    variant_id: str,
    queries: InventoryQueryService = Depends(get_query_service),
):
    return AvailableStockOut(variant_id=variant_id, available=queries.get_total_available_stock(variant_id))


@router.get(
    "/{variant_id}/movements",
    response_model=MovementHistoryOut,
    summary="Get movement history for a variant",
    responses=error_responses(422, 500),
)
def get_movement_history(
    variant_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(
        default=settings.movement_history_default_limit,
        ge=1,
        le=settings.movement_history_max_limit,
    ),
    location_id: str | None = Query(default=None),
    queries: InventoryQueryService = Depends(get_query_service),
):
    return queries.get_movement_history(variant_id, page=page, limit=limit, location_id=location_id)
