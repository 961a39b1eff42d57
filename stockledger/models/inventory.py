import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MovementType(str, enum.Enum):
    RESERVE = "RESERVE"
    RELEASE = "RELEASE"
    RECEIVE = "RECEIVE"
    SHIP = "SHIP"
    TRANSFER_OUT = "TRANSFER_OUT"
    TRANSFER_IN = "TRANSFER_IN"
    ADJUST = "ADJUST"


class StockRecord(Base):
    """
    On-hand and reserved quantity of one variant at one location.
    Mutated in place by the ledger, never deleted.
    """
    __tablename__ = "stock_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    variant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    location_id: Mapped[str] = mapped_column(String(36), ForeignKey("locations.id"), nullable=False, index=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    reserved: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    minimum: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=_utcnow,
        onupdate=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        UniqueConstraint("variant_id", "location_id", name="uq_stock_records_variant_location"),
        CheckConstraint("quantity >= 0", name="ck_stock_records_quantity_non_negative"),
        CheckConstraint("reserved >= 0", name="ck_stock_records_reserved_non_negative"),
        CheckConstraint("reserved <= quantity", name="ck_stock_records_reserved_within_quantity"),
        CheckConstraint("minimum >= 0", name="ck_stock_records_minimum_non_negative"),
        Index("ix_stock_records_location_quantity", "location_id", "quantity"),
    )

    @property
    def available(self) -> int:
        return self.quantity - self.reserved


class StockMovement(Base):
    """
    Append-only audit row. quantity is the positive magnitude of the change,
    except for ADJUST where it holds the signed delta.
    """
    __tablename__ = "stock_movements"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    variant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    operation_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    from_location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    to_location_id: Mapped[Optional[str]] = mapped_column(String(36), ForeignKey("locations.id"), nullable=True)
    reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True, index=True)
    notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=func.now(),
    )

    __table_args__ = (
        Index("ix_stock_movements_variant_created_at", "variant_id", "created_at"),
        Index("ix_stock_movements_from_location_created_at", "from_location_id", "created_at"),
        Index("ix_stock_movements_to_location_created_at", "to_location_id", "created_at"),
    )
