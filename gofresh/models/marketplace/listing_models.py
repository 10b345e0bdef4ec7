# gofresh/models/marketplace/listing_models.py

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from gofresh.mongo import as_utc


class ListingCreateModel(BaseModel):
    name: str = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    description: Optional[str] = None

    quantity: float = Field(..., gt=0)
    unit: str = "kg"
    price: int = Field(..., gt=0)          # base price, whole currency units

    bid_start: Optional[datetime] = None
    bid_end: Optional[datetime] = None

    location: Optional[str] = None
    harvest_date: Optional[str] = None
    minimum_order: Optional[float] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _window_order(self):
        # naive timestamps are UTC, same as everywhere else
        self.bid_start = as_utc(self.bid_start)
        self.bid_end = as_utc(self.bid_end)
        if self.bid_start and self.bid_end and self.bid_end <= self.bid_start:
            raise ValueError("bid_end must be after bid_start")
        return self


class ListingUpdateModel(BaseModel):
    """Partial update; only fields that are sent are changed."""

    name: Optional[str] = Field(default=None, min_length=1)
    category: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None

    quantity: Optional[float] = Field(default=None, gt=0)
    unit: Optional[str] = None
    price: Optional[int] = Field(default=None, gt=0)

    bid_start: Optional[datetime] = None
    bid_end: Optional[datetime] = None

    location: Optional[str] = None
    harvest_date: Optional[str] = None
    minimum_order: Optional[float] = Field(default=None, ge=0)

    @field_validator("name", "category", "quantity", "unit", "price")
    @classmethod
    def _not_null(cls, v):
        # omitted keeps the stored value; an explicit null would wipe a required field
        if v is None:
            raise ValueError("cannot be null")
        return v

    @field_validator("bid_start", "bid_end")
    @classmethod
    def _utc(cls, v):
        return as_utc(v)
