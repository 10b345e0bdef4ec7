# gofresh/models/marketplace/bid_models.py

from pydantic import BaseModel, Field


class PlaceBidModel(BaseModel):
    amount: int = Field(..., gt=0)
