"""
schemas/numbers.py — Document numbering requests and responses

Called by: routers/numbers.py
Depends on: pydantic
"""

from __future__ import annotations

from pydantic import BaseModel, field_validator


class NumberRequest(BaseModel):
    document_type: str
    year: int | None = None
    owner_entity_id: str | None = None

    @field_validator("document_type")
    @classmethod
    def upper_type(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("owner_entity_id", mode="before")
    @classmethod
    def owner_as_str(cls, v) -> str | None:
        if v is None or str(v).strip() == "":
            return None
        return str(v).strip()


class NumberResponse(BaseModel):
    number: str
    document_type: str
    year: int | None = None
    owner_entity_id: str | None = None


class NumberValidityResponse(BaseModel):
    number: str
    valid: bool
