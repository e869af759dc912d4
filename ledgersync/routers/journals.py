"""Sales journal API — generate, list, validate, delete."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import get_tax_cache
from ..errors import NotFoundError
from ..schemas.journals import (
    JournalGenerateRequest,
    JournalGenerateResponse,
    JournalListResponse,
    JournalOut,
    JournalStatsResponse,
)
from ..schemas.responses import OkResponse
from ..services import sales_journal_service as journals

router = APIRouter(tags=["journals"])


@router.post("/api/journals/generate", response_model=JournalGenerateResponse)
def generate_journal(
    body: JournalGenerateRequest,
    db: Session = Depends(get_db),
    tax_cache=Depends(get_tax_cache),
):
    journal, found = journals.generate_journal(db, body.date, tax_cache)
    return JournalGenerateResponse(
        orders_found=found,
        journal=JournalOut.model_validate(journal) if journal else None,
    )


@router.get("/api/journals", response_model=JournalListResponse)
def list_journals(
    status: str = Query(None),
    start: str = Query(None, description="YYYY-MM-DD or DD/MM/YYYY"),
    end: str = Query(None, description="YYYY-MM-DD or DD/MM/YYYY"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    if start and end:
        rows = journals.journals_for_range(db, start, end)
        if status:
            rows = [j for j in rows if j.status == status]
        total = len(rows)
        rows = rows[offset:offset + limit]
    else:
        rows, total = journals.list_journals(db, status=status, limit=limit, offset=offset)
    return JournalListResponse(
        total=total,
        limit=limit,
        offset=offset,
        journals=[JournalOut.model_validate(j) for j in rows],
    )


@router.get("/api/journals/stats", response_model=JournalStatsResponse)
def journal_stats(db: Session = Depends(get_db)):
    return JournalStatsResponse(**journals.journal_stats(db))


@router.get("/api/journals/preview-number")
def preview_journal_number(year: int = Query(None), db: Session = Depends(get_db)):
    return {"number": journals.preview_journal_number(db, year)}


@router.get("/api/journals/{journal_id}", response_model=JournalOut)
def get_journal(journal_id: str, db: Session = Depends(get_db)):
    journal = journals.get_journal(db, journal_id)
    if not journal:
        raise NotFoundError("journal", journal_id)
    return JournalOut.model_validate(journal)


@router.post("/api/journals/{journal_id}/validate", response_model=JournalOut)
def validate_journal(journal_id: str, db: Session = Depends(get_db)):
    return JournalOut.model_validate(journals.validate_journal(db, journal_id))


@router.delete("/api/journals/{journal_id}", response_model=OkResponse)
def delete_journal(journal_id: str, db: Session = Depends(get_db)):
    if not journals.delete_journal(db, journal_id):
        raise NotFoundError("journal", journal_id)
    return OkResponse()
