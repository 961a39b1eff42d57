import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, String, func
from sqlalchemy.orm import Mapped, mapped_column

from stockledger.db.base import Base


class LocationType(str, enum.Enum):
    WAREHOUSE = "WAREHOUSE"
    ZONE = "ZONE"
    SHELF = "SHELF"
    BIN = "BIN"


class Location(Base):
    __tablename__ = "locations"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    code: Mapped[str] = mapped_column(String(30), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=LocationType.WAREHOUSE.value,
        server_default=LocationType.WAREHOUSE.value,
    )
    parent_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("locations.id"),
        nullable=True,
        index=True,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
    )

    __table_args__ = (
        Index("ix_locations_active_created_at", "is_active", "created_at"),
        Index("ix_locations_type_active", "type", "is_active"),
    )
