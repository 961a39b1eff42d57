import os
import threading
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import create_engine, inspect, text

from stockledger.core.errors import InsufficientStockError
from stockledger.db.base import Base
from stockledger.db.session import create_db_engine, create_session_factory
from stockledger.models.location import Location
from stockledger.services.inventory_ledger import InventoryLedger
from stockledger.services.inventory_query_service import InventoryQueryService


def _test_pg_url() -> str | None:
    return os.getenv("TEST_POSTGRES_DATABASE_URL")


@pytest.fixture()
def pg_session_local():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    engine = create_db_engine(url)
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    try:
        yield create_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.mark.integration
def test_postgres_connection_and_core_tables():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run Postgres integration tests.")

    engine = create_engine(url, pool_pre_ping=True)
    with engine.connect() as conn:
        assert conn.execute(text("SELECT 1")).scalar_one() == 1
    engine.dispose()


@pytest.mark.integration
def test_parallel_reserves_and_crossing_transfers_on_postgres(pg_session_local):
    with pg_session_local.begin() as db:
        db.add(Location(id="pg-loc-a", name="Main Warehouse", code="PG-A"))
        db.add(Location(id="pg-loc-b", name="Lekki Store", code="PG-B"))

    ledger = InventoryLedger(pg_session_local)
    ledger.receive("pg-variant", 10, "pg-loc-a")
    ledger.receive("pg-variant", 10, "pg-loc-b")

    barrier = threading.Barrier(8)
    reserved_ok: list[int] = []
    lock = threading.Lock()

    def reserve():
        barrier.wait()
        try:
            ledger.reserve("pg-variant", 3, "pg-loc-a")
        except InsufficientStockError:
            return
        with lock:
            reserved_ok.append(3)

    def transfer(source: str, destination: str):
        barrier.wait()
        try:
            ledger.transfer("pg-variant", 1, source, destination)
        except InsufficientStockError:
            pass

    threads = [threading.Thread(target=reserve) for _ in range(4)]
    threads += [threading.Thread(target=transfer, args=("pg-loc-b", "pg-loc-a")) for _ in range(2)]
    threads += [threading.Thread(target=transfer, args=("pg-loc-a", "pg-loc-b")) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    queries = InventoryQueryService(pg_session_local)
    records = {item.location_id: item for item in queries.get_stock("pg-variant").items}
    assert sum(item.quantity for item in records.values()) == 20
    for item in records.values():
        assert 0 <= item.reserved <= item.quantity
    assert records["pg-loc-a"].reserved == sum(reserved_ok)


@pytest.mark.integration
def test_alembic_upgrade_downgrade_smoke():
    url = _test_pg_url()
    if not url:
        pytest.skip("Set TEST_POSTGRES_DATABASE_URL to run migration smoke tests.")
    if os.getenv("ALLOW_DESTRUCTIVE_MIGRATION_TESTS") != "1":
        pytest.skip("Set ALLOW_DESTRUCTIVE_MIGRATION_TESTS=1 for downgrade smoke test.")

    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", url.replace("%", "%%"))

    command.upgrade(alembic_cfg, "head")
    engine = create_engine(url)
    table_names = set(inspect(engine).get_table_names())
    assert {"locations", "stock_records", "stock_movements"} <= table_names

    command.downgrade(alembic_cfg, "base")
    assert "stock_records" not in set(inspect(engine).get_table_names())

    command.upgrade(alembic_cfg, "head")
    command.downgrade(alembic_cfg, "base")
    engine.dispose()
