"""Document numbering API — preview, issue, check and release numbers."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import NotFoundError
from ..schemas.numbers import NumberRequest, NumberResponse, NumberValidityResponse
from ..schemas.responses import OkResponse
from ..services import numbering_service

router = APIRouter(tags=["numbers"])


@router.post("/api/numbers", response_model=NumberResponse)
def issue_number(body: NumberRequest, db: Session = Depends(get_db)):
    number = numbering_service.generate_number(
        db, body.document_type, body.year, body.owner_entity_id
    )
    return NumberResponse(
        number=number,
        document_type=body.document_type,
        year=body.year,
        owner_entity_id=body.owner_entity_id,
    )


@router.get("/api/numbers/preview")
def preview_number(
    document_type: str = Query(...),
    year: int = Query(None),
    db: Session = Depends(get_db),
):
    return {"number": numbering_service.generate_preview_number(db, document_type, year)}


@router.get("/api/numbers/sequence")
def sequence_info(
    document_type: str = Query(...),
    year: int = Query(None),
    db: Session = Depends(get_db),
):
    return numbering_service.sequence_info(db, document_type, year)


@router.get("/api/numbers/by-entity/{owner_entity_id}")
def number_for_entity(owner_entity_id: str, db: Session = Depends(get_db)):
    number = numbering_service.get_number_by_entity_id(db, owner_entity_id)
    if not number:
        raise NotFoundError("number for entity", owner_entity_id)
    return {"number": number, "owner_entity_id": owner_entity_id}


@router.get("/api/numbers/{number}/valid", response_model=NumberValidityResponse)
def number_is_valid(number: str, db: Session = Depends(get_db)):
    return NumberValidityResponse(number=number, valid=numbering_service.validate_number(db, number))


@router.delete("/api/numbers/{number}", response_model=OkResponse)
def release_number(number: str, db: Session = Depends(get_db)):
    if not numbering_service.delete_number(db, number):
        raise NotFoundError("number", number)
    return OkResponse()
