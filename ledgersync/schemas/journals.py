"""
schemas/journals.py — Sales journal requests and responses

Business Rules:
- Dates are accepted as YYYY-MM-DD or DD/MM/YYYY; parsing (and the 400 on
  anything else) happens in the service so every caller gets the same rule
- Amounts are two-decimal strings

Called by: routers/journals.py
Depends on: pydantic
"""

from __future__ import annotations

import datetime as dt

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .responses import PaginatedResponse


class JournalGenerateRequest(BaseModel):
    date: str

    @field_validator("date", mode="before")
    @classmethod
    def strip_date(cls, v) -> str:
        return str(v or "").strip()


class TaxBreakdownItem(BaseModel):
    rate: int
    base: str
    amount: str


class JournalTotals(BaseModel):
    total_ht: str = "0.00"
    total_ttc: str = "0.00"
    total_tax: str = "0.00"
    tax_breakdown: list[TaxBreakdownItem] = Field(default_factory=list)


class JournalOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    number: str
    date: dt.date
    status: str
    orders_included: list[int] = Field(default_factory=list)
    lines: list[dict] = Field(default_factory=list)
    totals: JournalTotals = Field(default_factory=JournalTotals)
    notes: str | None = None
    created_at: dt.datetime | None = None
    updated_at: dt.datetime | None = None


class JournalGenerateResponse(BaseModel):
    orders_found: bool
    journal: JournalOut | None = None


class JournalListResponse(PaginatedResponse):
    journals: list[JournalOut] = Field(default_factory=list)


class JournalStatsResponse(BaseModel):
    total: int = 0
    draft: int = 0
    validated: int = 0
    total_value: str = "0.00"
    total_lines: int = 0
