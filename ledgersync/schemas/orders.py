"""
schemas/orders.py — Order mirror responses

Amounts stay decimal strings exactly as mirrored; line items and tax lines
are passed through as the normalized JSON the sync engine stored.

Called by: routers/orders.py
Depends on: pydantic
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from .responses import PaginatedResponse


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    external_id: int
    account_id: str
    number: str | None = None
    status: str
    currency: str | None = None
    date_created: datetime
    date_modified: datetime | None = None
    total: str = "0.00"
    total_tax: str = "0.00"
    shipping_total: str = "0.00"
    shipping_tax: str = "0.00"
    customer_id: int | None = None
    billing: dict = Field(default_factory=dict)
    shipping: dict = Field(default_factory=dict)
    line_items: list[dict] = Field(default_factory=list)
    tax_lines: list[dict] = Field(default_factory=list)


class OrderListResponse(PaginatedResponse):
    orders: list[OrderOut] = Field(default_factory=list)
