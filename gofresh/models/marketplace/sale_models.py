# gofresh/models/marketplace/sale_models.py

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PaymentMethod(str, Enum):
    CARD = "card"
    UPI = "upi"
    COD = "cod"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryAddress(BaseModel):
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: Optional[str] = None
    postal_code: str = Field(..., min_length=1)


class CheckoutModel(BaseModel):
    payment_method: PaymentMethod
    delivery_address: DeliveryAddress


class VerifyPaymentModel(BaseModel):
    order_id: str = Field(..., min_length=1)
    payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.CARD
    delivery_address: DeliveryAddress


class PaymentFailedModel(BaseModel):
    order_id: Optional[str] = None
    payment_method: PaymentMethod = PaymentMethod.CARD
    reason: Optional[str] = None
