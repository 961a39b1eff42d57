import os

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")

import stockledger.models  # noqa: F401
from stockledger.core.deps import get_session_factory
from stockledger.db.base import Base
from stockledger.db.session import create_db_engine, create_session_factory
from stockledger.main import app
from stockledger.models.location import Location
from stockledger.services.inventory_ledger import InventoryLedger
from stockledger.services.inventory_query_service import InventoryQueryService


@pytest.fixture()
def session_local():
    engine = create_db_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    try:
        yield create_session_factory(engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def file_session_local(tmp_path):
    # Threaded tests need real separate connections, which an in-memory database cannot share.
    engine = create_db_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(bind=engine)
    try:
        yield create_session_factory(engine)
    finally:
        engine.dispose()


@pytest.fixture()
def ledger(session_local):
    return InventoryLedger(session_local)


@pytest.fixture()
def queries(session_local):
    return InventoryQueryService(session_local)


@pytest.fixture()
def add_location():
    def _add(session_factory, location_id: str, *, code: str | None = None, is_active: bool = True) -> str:
        with session_factory.begin() as db:
            db.add(
                Location(
                    id=location_id,
                    name=f"Warehouse {location_id}",
                    code=(code or location_id).upper(),
                    is_active=is_active,
                )
            )
        return location_id

    return _add


@pytest.fixture()
def test_context(session_local):
    app.dependency_overrides[get_session_factory] = lambda: session_local

    with TestClient(app) as client:
        yield client, session_local

    app.dependency_overrides.clear()
