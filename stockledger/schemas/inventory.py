from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from stockledger.models.inventory import MovementType
from stockledger.schemas.common import PaginationMeta

StockFilter = Literal["all", "low", "out"]


class MovementIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=64)
    quantity: int = Field(gt=0)
    reference: str | None = Field(default=None, max_length=120)
    notes: str | None = Field(default=None, max_length=500)


class ReserveIn(MovementIn):
    location_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=36,
        description="Omit to reserve at the first location (by id) with enough available stock.",
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "quantity": 2,
                "location_id": "location-id-here",
                "reference": "ORD-10045",
            }
        }
    )


class ReleaseIn(MovementIn):
    location_id: str = Field(min_length=1, max_length=36)


class ReceiveIn(MovementIn):
    to_location_id: str = Field(min_length=1, max_length=36)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "quantity": 50,
                "to_location_id": "location-id-here",
                "reference": "PO-2026-118",
                "notes": "Supplier delivery",
            }
        }
    )


class ShipIn(MovementIn):
    from_location_id: str = Field(min_length=1, max_length=36)


class TransferIn(MovementIn):
    from_location_id: str = Field(min_length=1, max_length=36)
    to_location_id: str = Field(min_length=1, max_length=36)

    @model_validator(mode="after")
    def validate_distinct_locations(self) -> "TransferIn":
        if self.from_location_id == self.to_location_id:
            raise ValueError("Source and destination locations must be different")
        return self


class AdjustIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=64)
    location_id: str = Field(min_length=1, max_length=36)
    new_quantity: int = Field(ge=0, description="Absolute on-hand count, e.g. after a stock take.")
    reference: str | None = Field(default=None, max_length=120)
    notes: str | None = Field(default=None, max_length=500)

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "variant_id": "variant-id-here",
                "location_id": "location-id-here",
                "new_quantity": 17,
                "notes": "Quarterly stock take",
            }
        }
    )


class MinimumStockIn(BaseModel):
    variant_id: str = Field(min_length=1, max_length=64)
    location_id: str = Field(min_length=1, max_length=36)
    minimum: int = Field(ge=0)


class StockRecordOut(BaseModel):
    variant_id: str
    location_id: str
    quantity: int
    reserved: int
    minimum: int
    available: int
    updated_at: datetime | None = None


class MovementOut(BaseModel):
    id: int
    variant_id: str
    operation_type: MovementType
    quantity: int
    from_location_id: str | None = None
    to_location_id: str | None = None
    reference: str | None = None
    notes: str | None = None
    created_by: str | None = None
    created_at: datetime


class LedgerResultOut(BaseModel):
    operation: str
    variant_id: str
    reference: str | None = None
    stock: list[StockRecordOut]
    movements: list[MovementOut]


class StockListOut(BaseModel):
    variant_id: str
    items: list[StockRecordOut]


class AvailableStockOut(BaseModel):
    variant_id: str
    available: int


class LowStockListOut(BaseModel):
    threshold: int | None = None
    items: list[StockRecordOut]
    pagination: PaginationMeta


class InventoryListOut(BaseModel):
    filter: StockFilter
    items: list[StockRecordOut]
    pagination: PaginationMeta


class MovementHistoryOut(BaseModel):
    variant_id: str
    page: int
    total_pages: int
    items: list[MovementOut]
    pagination: PaginationMeta
