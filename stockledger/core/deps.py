from typing import Generator

from fastapi import Depends, Header
from sqlalchemy.orm import Session, sessionmaker

from stockledger.db.session import SessionLocal
from stockledger.services.inventory_ledger import InventoryLedger
from stockledger.services.inventory_query_service import InventoryQueryService


def get_session_factory() -> sessionmaker:
    return SessionLocal


def get_db(session_factory: sessionmaker = Depends(get_session_factory)) -> Generator[Session, None, None]:
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


def get_ledger(session_factory: sessionmaker = Depends(get_session_factory)) -> InventoryLedger:
    return InventoryLedger(session_factory)


def get_query_service(session_factory: sessionmaker = Depends(get_session_factory)) -> InventoryQueryService:
    return InventoryQueryService(session_factory)


def get_actor_id(x_actor_id: str | None = Header(default=None, max_length=64)) -> str | None:
    if x_actor_id is None:
        return None
    cleaned = x_actor_id.strip()
    return cleaned or None
