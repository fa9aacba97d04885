"""Request payloads.

Clients send camelCase keys; snake_case field names are accepted as well.
Range checks such as ``quantity > 0`` live in the services so that every
caller, not only HTTP, gets the same ``ValidationError``.
"""

from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .domain import OrderType


class _Payload(BaseModel):
    # NaN and Infinity are valid JSON to the parser but never valid money
    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False)


class OrderLine(_Payload):
    product_id: int = Field(validation_alias=AliasChoices("product_id", "productId"))
    quantity: int


class OrderCreate(_Payload):
    table_id: Optional[int] = Field(None, alias="tableId")
    customer_name: Optional[str] = Field(None, alias="customerName")
    order_type: OrderType = Field(OrderType.DINE_IN, alias="orderType")
    items: List[OrderLine] = []
    discount_amount: float = Field(0.0, alias="discountAmount")
    service_charge: float = Field(0.0, alias="serviceCharge")
    payment_method: Optional[str] = Field(None, alias="paymentMethod")
    notes: Optional[str] = None


class StatusUpdate(_Payload):
    status: str
    served_by: Optional[str] = Field(None, alias="servedBy")


class CancelRequest(_Payload):
    reason: Optional[str] = None


class StockAdjustment(_Payload):
    adjustment_type: str = Field(alias="adjustmentType")
    quantity: int
    reason: Optional[str] = None
    notes: Optional[str] = None
    cost_price: Optional[float] = Field(None, alias="costPrice")


class BulkAdjustmentLine(StockAdjustment):
    product_id: int = Field(validation_alias=AliasChoices("product_id", "productId"))


class BulkAdjustRequest(_Payload):
    adjustments: List[BulkAdjustmentLine] = []


class ProductCreate(_Payload):
    name: str
    price: float
    tax_rate: float = Field(0.0, alias="taxRate")
    is_trackable: bool = Field(False, alias="isTrackable")
    initial_stock: int = Field(0, alias="initialStock")
    reorder_level: int = Field(0, alias="reorderLevel")
    max_stock: Optional[int] = Field(None, alias="maxStock")
    cost_price: Optional[float] = Field(None, alias="costPrice")


class TableCreate(_Payload):
    table_number: str = Field(alias="tableNumber")
    capacity: int = 4
    section: Optional[str] = None

    @field_validator("table_number", mode="before")
    @classmethod
    def _number_as_text(cls, value):
        return str(value) if isinstance(value, int) else value


class TableStatusUpdate(_Payload):
    status: str


class ReservationCreate(_Payload):
    table_id: int = Field(alias="tableId")
    customer_name: str = Field(alias="customerName")
    customer_phone: Optional[str] = Field(None, alias="customerPhone")
    reservation_date: str = Field(alias="reservationDate")
    reservation_time: str = Field(alias="reservationTime")
    party_size: int = Field(alias="partySize")
    duration: int = 120
    notes: Optional[str] = None


class ReservationStatusUpdate(_Payload):
    status: str


class BackupRequest(_Payload):
    description: Optional[str] = None
    since: Optional[datetime] = None
