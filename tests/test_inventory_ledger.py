import random
import threading

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from stockledger.core.errors import (
    ConcurrencyConflictError,
    InsufficientStockError,
    InvalidLocationError,
    InvalidMovementError,
    LedgerError,
    ValidationError,
)
from stockledger.db.base import Base
from stockledger.db.session import WRITE_LOCK_OPTION, create_db_engine, create_session_factory
from stockledger.models.inventory import MovementType, StockMovement, StockRecord
from stockledger.models.location import Location
from stockledger.services.inventory_ledger import InventoryLedger, is_lock_conflict
from stockledger.services.inventory_query_service import InventoryQueryService
from stockledger.services.stock_store import MovementContext


def _record(queries: InventoryQueryService, variant_id: str, location_id: str):
    items = queries.get_stock(variant_id, location_id).items
    return items[0] if items else None


def _movement_count(session_factory, variant_id: str | None = None) -> int:
    stmt = select(func.count(StockMovement.id))
    if variant_id is not None:
        stmt = stmt.where(StockMovement.variant_id == variant_id)
    with session_factory() as db:
        return int(db.execute(stmt).scalar_one())


def _record_count(session_factory) -> int:
    with session_factory() as db:
        return int(db.execute(select(func.count(StockRecord.id))).scalar_one())


@pytest.fixture()
def loc_a(session_local, add_location):
    return add_location(session_local, "loc-a")


@pytest.fixture()
def loc_b(session_local, add_location):
    return add_location(session_local, "loc-b")


def test_reserve_increments_reserved_and_appends_movement(ledger, queries, loc_a):
    ledger.receive("v1", 10, loc_a)

    result = ledger.reserve("v1", 4, loc_a, context=MovementContext(reference="ORD-1", created_by="user-7"))

    record = _record(queries, "v1", loc_a)
    assert (record.quantity, record.reserved, record.available) == (10, 4, 6)
    assert result.operation == "reserve"
    assert len(result.movements) == 1
    movement = result.movements[0]
    assert movement.operation_type == MovementType.RESERVE
    assert movement.quantity == 4
    assert movement.to_location_id == loc_a
    assert movement.reference == "ORD-1"
    assert movement.created_by == "user-7"


def test_ship_consumes_reservation(ledger, queries, loc_a):
    ledger.receive("v1", 10, loc_a)
    ledger.reserve("v1", 4, loc_a)

    result = ledger.ship("v1", 4, loc_a, context=MovementContext(reference="ORD-1"))

    record = _record(queries, "v1", loc_a)
    assert (record.quantity, record.reserved) == (6, 0)
    assert result.movements[0].operation_type == MovementType.SHIP
    assert result.movements[0].quantity == 4
    assert result.movements[0].from_location_id == loc_a


def test_transfer_creates_destination_lazily_with_paired_movements(ledger, queries, session_local, loc_a, loc_b):
    ledger.receive("v2", 5, loc_a)
    assert _record(queries, "v2", loc_b) is None

    result = ledger.transfer("v2", 5, loc_a, loc_b, context=MovementContext(reference="MM-1"))

    assert _record(queries, "v2", loc_a).quantity == 0
    assert _record(queries, "v2", loc_b).quantity == 5
    out_row, in_row = result.movements
    assert out_row.operation_type == MovementType.TRANSFER_OUT
    assert in_row.operation_type == MovementType.TRANSFER_IN
    assert out_row.reference == in_row.reference == "MM-1"
    assert (out_row.from_location_id, out_row.to_location_id) == (loc_a, loc_b)
    assert (in_row.from_location_id, in_row.to_location_id) == (loc_a, loc_b)
    assert _movement_count(session_local, "v2") == 3


def test_transfer_without_reference_generates_shared_reference(ledger, loc_a, loc_b):
    ledger.receive("v2", 3, loc_a)

    result = ledger.transfer("v2", 2, loc_a, loc_b)

    assert result.reference is not None
    assert result.reference.startswith("TRF-")
    assert {movement.reference for movement in result.movements} == {result.reference}


def test_reserve_beyond_available_changes_nothing(ledger, queries, session_local, loc_a):
    ledger.receive("v3", 3, loc_a)
    movements_before = _movement_count(session_local)

    with pytest.raises(InsufficientStockError) as exc_info:
        ledger.reserve("v3", 5, loc_a)

    assert exc_info.value.available == 3
    assert exc_info.value.requested == 5
    record = _record(queries, "v3", loc_a)
    assert (record.quantity, record.reserved) == (3, 0)
    assert _movement_count(session_local) == movements_before


def test_concurrent_reserves_never_oversell(file_session_local, add_location):
    location_id = add_location(file_session_local, "loc-a")
    ledger = InventoryLedger(file_session_local)
    ledger.receive("v4", 10, location_id)

    barrier = threading.Barrier(2)
    outcomes: list[object] = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        try:
            ledger.reserve("v4", 6, location_id)
            outcome: object = "ok"
        except LedgerError as exc:
            outcome = exc
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert outcomes.count("ok") == 1
    failures = [outcome for outcome in outcomes if outcome != "ok"]
    assert len(failures) == 1
    assert isinstance(failures[0], InsufficientStockError)

    record = InventoryQueryService(file_session_local).get_stock("v4", location_id).items[0]
    assert (record.quantity, record.reserved) == (10, 6)
    assert _movement_count(file_session_local, "v4") == 2


def test_adjust_below_reserved_is_rejected(ledger, queries, session_local, loc_a):
    ledger.receive("v5", 10, loc_a)
    ledger.reserve("v5", 5, loc_a)
    movements_before = _movement_count(session_local)

    with pytest.raises(InvalidMovementError):
        ledger.adjust("v5", loc_a, 2)

    record = _record(queries, "v5", loc_a)
    assert (record.quantity, record.reserved) == (10, 5)
    assert _movement_count(session_local) == movements_before


@pytest.mark.parametrize(
    "requested, succeeds",
    [(6, True), (7, False)],
)
def test_reserve_boundary_at_available(ledger, queries, loc_a, requested, succeeds):
    ledger.receive("v6", 10, loc_a)
    ledger.reserve("v6", 4, loc_a)

    if succeeds:
        ledger.reserve("v6", requested, loc_a)
        assert _record(queries, "v6", loc_a).available == 0
    else:
        with pytest.raises(InsufficientStockError):
            ledger.reserve("v6", requested, loc_a)
        assert _record(queries, "v6", loc_a).reserved == 4


def test_ship_more_than_reserved_fails_even_with_stock_on_hand(ledger, queries, loc_a):
    ledger.receive("v7", 10, loc_a)
    ledger.reserve("v7", 2, loc_a)

    with pytest.raises(InvalidMovementError):
        ledger.ship("v7", 3, loc_a)

    record = _record(queries, "v7", loc_a)
    assert (record.quantity, record.reserved) == (10, 2)


def test_ship_more_than_on_hand_is_insufficient_stock(ledger, loc_a):
    ledger.receive("v7", 2, loc_a)
    ledger.reserve("v7", 2, loc_a)

    with pytest.raises(InsufficientStockError):
        ledger.ship("v7", 3, loc_a)


def test_ship_from_location_without_record_is_insufficient_stock(ledger, session_local, loc_a):
    with pytest.raises(InsufficientStockError):
        ledger.ship("v-missing", 1, loc_a)
    assert _record_count(session_local) == 0


def test_transfer_is_limited_by_available_not_on_hand(ledger, queries, loc_a, loc_b):
    ledger.receive("v8", 10, loc_a)
    ledger.reserve("v8", 4, loc_a)

    with pytest.raises(InsufficientStockError):
        ledger.transfer("v8", 7, loc_a, loc_b)
    assert _record(queries, "v8", loc_b) is None

    ledger.transfer("v8", 6, loc_a, loc_b)
    source = _record(queries, "v8", loc_a)
    assert (source.quantity, source.reserved, source.available) == (4, 4, 0)
    assert _record(queries, "v8", loc_b).quantity == 6


def test_transfer_from_higher_to_lower_location_id(ledger, queries, loc_a, loc_b):
    ledger.receive("v8", 5, loc_b)

    ledger.transfer("v8", 2, loc_b, loc_a)

    assert _record(queries, "v8", loc_a).quantity == 2
    assert _record(queries, "v8", loc_b).quantity == 3


def test_adjust_twice_records_zero_delta_second_time(ledger, queries, loc_a):
    ledger.receive("v9", 4, loc_a)

    first = ledger.adjust("v9", loc_a, 9)
    second = ledger.adjust("v9", loc_a, 9)

    assert _record(queries, "v9", loc_a).quantity == 9
    assert first.movements[0].quantity == 5
    assert first.movements[0].notes == "Adjusted from 4 to 9"
    assert second.movements[0].operation_type == MovementType.ADJUST
    assert second.movements[0].quantity == 0


def test_adjust_records_negative_delta_and_keeps_caller_notes(ledger, loc_a):
    ledger.receive("v9", 10, loc_a)

    result = ledger.adjust("v9", loc_a, 7, context=MovementContext(notes="Stock take"))

    assert result.movements[0].quantity == -3
    assert result.movements[0].notes == "Stock take"


def test_adjust_creates_record_for_new_pair(ledger, queries, loc_a):
    ledger.adjust("v10", loc_a, 12)

    record = _record(queries, "v10", loc_a)
    assert (record.quantity, record.reserved, record.minimum) == (12, 0, 0)


def test_reserve_then_release_restores_reserved(ledger, queries, loc_a):
    ledger.receive("v11", 8, loc_a)
    ledger.reserve("v11", 1, loc_a)

    ledger.reserve("v11", 5, loc_a)
    result = ledger.release("v11", 5, loc_a)

    assert _record(queries, "v11", loc_a).reserved == 1
    assert result.movements[0].operation_type == MovementType.RELEASE
    assert result.movements[0].from_location_id == loc_a


def test_release_more_than_reserved_is_not_clamped(ledger, queries, loc_a):
    ledger.receive("v12", 8, loc_a)
    ledger.reserve("v12", 2, loc_a)

    with pytest.raises(InvalidMovementError):
        ledger.release("v12", 3, loc_a)

    assert _record(queries, "v12", loc_a).reserved == 2


def test_reserve_without_location_picks_first_location_by_id(ledger, queries, session_local, add_location):
    loc_c = add_location(session_local, "loc-c")
    loc_a = add_location(session_local, "loc-a")
    loc_b = add_location(session_local, "loc-b")
    ledger.receive("v13", 2, loc_a)
    ledger.receive("v13", 9, loc_b)
    ledger.receive("v13", 9, loc_c)

    result = ledger.reserve("v13", 5)

    assert result.movements[0].to_location_id == loc_b
    assert _record(queries, "v13", loc_b).reserved == 5
    assert _record(queries, "v13", loc_c).reserved == 0


def test_reserve_without_location_skips_inactive_locations(ledger, queries, session_local, loc_a, loc_b):
    ledger.receive("v14", 10, loc_a)
    ledger.receive("v14", 10, loc_b)
    with session_local.begin() as db:
        db.get(Location, loc_a).is_active = False

    result = ledger.reserve("v14", 3)

    assert result.movements[0].to_location_id == loc_b
    assert _record(queries, "v14", loc_a).reserved == 0


def test_reserve_without_location_never_splits(ledger, queries, session_local, loc_a, loc_b):
    ledger.receive("v15", 4, loc_a)
    ledger.receive("v15", 4, loc_b)

    with pytest.raises(InsufficientStockError) as exc_info:
        ledger.reserve("v15", 6)

    assert exc_info.value.available == 4
    assert queries.get_total_available_stock("v15") == 8
    assert _movement_count(session_local, "v15") == 2


def test_mutations_reject_inactive_location(ledger, session_local, add_location):
    location_id = add_location(session_local, "loc-closed", is_active=False)

    with pytest.raises(InvalidLocationError) as exc_info:
        ledger.receive("v16", 1, location_id)

    assert exc_info.value.reason == "inactive"
    assert _record_count(session_local) == 0


def test_mutations_reject_unknown_location(ledger, session_local, loc_a):
    ledger.receive("v16", 5, loc_a)

    with pytest.raises(InvalidLocationError):
        ledger.transfer("v16", 1, loc_a, "nowhere")
    with pytest.raises(InvalidLocationError):
        ledger.adjust("v16", "nowhere", 3)
    with pytest.raises(InvalidLocationError):
        ledger.set_minimum_stock("v16", "nowhere", 3)

    assert _record_count(session_local) == 1
    assert _movement_count(session_local) == 1


def test_validation_reports_every_failed_field(ledger, session_local):
    with pytest.raises(ValidationError) as exc_info:
        ledger.transfer("", 0, None, None, context=MovementContext(reference="x" * 121))

    fields = {issue.field for issue in exc_info.value.issues}
    assert fields == {"variant_id", "quantity", "from_location_id", "to_location_id", "reference"}
    assert _movement_count(session_local) == 0


@pytest.mark.parametrize(
    "call, field",
    [
        (lambda ledger: ledger.reserve("v", True), "quantity"),
        (lambda ledger: ledger.receive("v", 2.5, "loc-a"), "quantity"),
        (lambda ledger: ledger.release("v", 1, "  "), "location_id"),
        (lambda ledger: ledger.adjust("v", "loc-a", -1), "new_quantity"),
        (lambda ledger: ledger.set_minimum_stock("v", "loc-a", -2), "minimum"),
        (lambda ledger: ledger.transfer("v", 1, "loc-a", "loc-a"), "to_location_id"),
    ],
)
def test_validation_rejects_bad_numbers_and_identifiers(ledger, call, field):
    with pytest.raises(ValidationError) as exc_info:
        call(ledger)

    assert field in {issue.field for issue in exc_info.value.issues}


def test_validation_rejects_non_string_context_fields(ledger, session_local):
    context = MovementContext(reference=12345, notes=["recount"], created_by=7)

    with pytest.raises(ValidationError) as exc_info:
        ledger.receive("v", 0, "loc-a", context=context)

    issues = {issue.field: issue.type for issue in exc_info.value.issues}
    assert issues == {
        "quantity": "greater_than",
        "reference": "string_type",
        "notes": "string_type",
        "created_by": "string_type",
    }
    assert _movement_count(session_local) == 0


def test_set_minimum_stock_writes_no_movement(ledger, queries, session_local, loc_a):
    ledger.receive("v17", 3, loc_a)

    record = ledger.set_minimum_stock("v17", loc_a, 5)

    assert record.minimum == 5
    assert record.quantity == 3
    assert _movement_count(session_local, "v17") == 1
    low = queries.get_low_stock()
    assert [(item.variant_id, item.location_id) for item in low.items] == [("v17", loc_a)]


def test_is_lock_conflict_recognizes_database_lock_errors():
    class _PgLockError(Exception):
        pgcode = "55P03"

    class _PgUniqueViolation(Exception):
        pgcode = "23505"

    assert is_lock_conflict(OperationalError("SELECT 1", {}, _PgLockError("lock timeout")))
    assert is_lock_conflict(OperationalError("BEGIN IMMEDIATE", {}, Exception("database is locked")))
    assert not is_lock_conflict(OperationalError("INSERT", {}, _PgUniqueViolation("duplicate key")))


@pytest.fixture()
def busy_engine(tmp_path):
    engine = create_db_engine(
        f"sqlite:///{tmp_path / 'busy.db'}",
        connect_args={"check_same_thread": False, "timeout": 0.1},
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


def test_busy_row_surfaces_concurrency_conflict(busy_engine, add_location):
    session_factory = create_session_factory(busy_engine)
    location_id = add_location(session_factory, "loc-a")
    ledger = InventoryLedger(session_factory)

    blocker = busy_engine.connect().execution_options(**{WRITE_LOCK_OPTION: True})
    transaction = blocker.begin()
    try:
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            ledger.receive("v18", 1, location_id)
        assert exc_info.value.retryable is True
    finally:
        transaction.rollback()
        blocker.close()

    ledger.receive("v18", 1, location_id)
    assert InventoryQueryService(session_factory).get_total_available_stock("v18") == 1


def test_reads_do_not_wait_for_a_pending_writer(busy_engine, add_location):
    session_factory = create_session_factory(busy_engine)
    location_id = add_location(session_factory, "loc-a")
    ledger = InventoryLedger(session_factory)
    queries = InventoryQueryService(session_factory)
    ledger.receive("v19", 4, location_id)

    blocker = busy_engine.connect().execution_options(**{WRITE_LOCK_OPTION: True})
    transaction = blocker.begin()
    try:
        assert queries.get_total_available_stock("v19") == 4
        assert queries.get_stock("v19").items[0].quantity == 4
        assert queries.get_movement_history("v19").pagination.total == 1
        with pytest.raises(ConcurrencyConflictError):
            ledger.reserve("v19", 1, location_id)
    finally:
        transaction.rollback()
        blocker.close()


def test_locked_read_surfaces_concurrency_conflict(busy_engine, add_location):
    session_factory = create_session_factory(busy_engine)
    location_id = add_location(session_factory, "loc-a")
    InventoryLedger(session_factory).receive("v20", 2, location_id)
    queries = InventoryQueryService(session_factory)

    raw = busy_engine.raw_connection()
    raw.cursor().execute("BEGIN EXCLUSIVE")
    try:
        with pytest.raises(ConcurrencyConflictError) as exc_info:
            queries.get_total_available_stock("v20")
        assert exc_info.value.retryable is True
    finally:
        raw.rollback()
        raw.close()

    assert queries.get_total_available_stock("v20") == 2


def test_random_operation_sequences_preserve_invariants(ledger, queries, session_local, add_location):
    locations = [add_location(session_local, f"loc-{suffix}") for suffix in ("a", "b", "c")]
    variants = ["rv1", "rv2"]
    rng = random.Random(20261019)
    expected_movements = 0

    for _ in range(250):
        variant_id = rng.choice(variants)
        location_id = rng.choice(locations)
        other_location = rng.choice([loc for loc in locations if loc != location_id])
        quantity = rng.randint(1, 6)
        operation = rng.choice(["reserve", "reserve_any", "release", "receive", "ship", "transfer", "adjust"])
        total_before = sum(item.quantity for item in queries.get_stock(variant_id).items)

        try:
            if operation == "reserve":
                result = ledger.reserve(variant_id, quantity, location_id)
            elif operation == "reserve_any":
                result = ledger.reserve(variant_id, quantity)
            elif operation == "release":
                result = ledger.release(variant_id, quantity, location_id)
            elif operation == "receive":
                result = ledger.receive(variant_id, quantity, location_id)
            elif operation == "ship":
                result = ledger.ship(variant_id, quantity, location_id)
            elif operation == "transfer":
                result = ledger.transfer(variant_id, quantity, location_id, other_location)
            else:
                result = ledger.adjust(variant_id, location_id, rng.randint(0, 15))
        except (InsufficientStockError, InvalidMovementError):
            result = None

        total_after = sum(item.quantity for item in queries.get_stock(variant_id).items)
        if result is not None:
            expected_movements += 2 if operation == "transfer" else 1
            if operation in {"reserve", "reserve_any", "release", "transfer"}:
                assert total_after == total_before
            elif operation == "receive":
                assert total_after == total_before + quantity
            elif operation == "ship":
                assert total_after == total_before - quantity
            else:
                assert total_after == total_before + result.movements[0].quantity
        else:
            assert total_after == total_before

        for variant in variants:
            for item in queries.get_stock(variant).items:
                assert 0 <= item.reserved <= item.quantity
                assert item.available == item.quantity - item.reserved
            assert queries.get_total_available_stock(variant) >= 0

    assert _movement_count(session_local) == expected_movements
