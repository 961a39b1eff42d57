from datetime import datetime

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

from stockledger.models.location import LocationType
from stockledger.schemas.common import PaginationMeta


class LocationCreateIn(BaseModel):
    name: str = Field(min_length=2, max_length=120)
    code: str = Field(min_length=2, max_length=30)
    type: LocationType = LocationType.WAREHOUSE
    parent_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=36,
        validation_alias=AliasChoices("parent_id", "parentId"),
    )

    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "name": "Aisle 4",
                "code": "MAIN-A4",
                "type": "ZONE",
                "parent_id": "location-id-here",
            }
        },
    )


class LocationUpdateIn(BaseModel):
    name: str | None = Field(default=None, min_length=2, max_length=120)
    type: LocationType | None = None
    parent_id: str | None = Field(
        default=None,
        min_length=1,
        max_length=36,
        validation_alias=AliasChoices("parent_id", "parentId"),
        description="Send null to detach the location from its parent.",
    )
    is_active: bool | None = Field(default=None, validation_alias=AliasChoices("is_active", "isActive"))

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("name cannot be empty")
        return cleaned

    @model_validator(mode="after")
    def validate_any_field_present(self) -> "LocationUpdateIn":
        if not self.model_fields_set:
            raise ValueError("At least one field must be provided")
        return self

    model_config = ConfigDict(populate_by_name=True)


class LocationOut(BaseModel):
    id: str
    name: str
    code: str
    type: LocationType
    parent_id: str | None = None
    is_active: bool
    stock_record_count: int = 0
    created_at: datetime
    updated_at: datetime


class LocationListOut(BaseModel):
    items: list[LocationOut]
    pagination: PaginationMeta


class LocationTreeNodeOut(BaseModel):
    id: str
    name: str
    code: str
    type: LocationType
    stock_record_count: int = 0
    children: list["LocationTreeNodeOut"] = Field(default_factory=list)


class LocationTreeOut(BaseModel):
    items: list[LocationTreeNodeOut]
