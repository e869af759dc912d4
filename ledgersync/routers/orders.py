"""Order mirror API — read-only views plus operator delete."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..errors import NotFoundError
from ..schemas.orders import OrderListResponse, OrderOut
from ..schemas.responses import OkResponse
from ..services import order_service

router = APIRouter(tags=["orders"])


@router.get("/api/orders", response_model=OrderListResponse)
def list_orders(
    status: str = Query(None),
    q: str = Query(None, description="Order number or billing text"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows, total = order_service.list_orders(db, status=status, q=q, limit=limit, offset=offset)
    return OrderListResponse(
        total=total,
        limit=limit,
        offset=offset,
        orders=[OrderOut.model_validate(o) for o in rows],
    )


@router.get("/api/orders/stats")
def order_stats(db: Session = Depends(get_db)):
    return order_service.order_stats(db)


@router.get("/api/orders/{external_id}", response_model=OrderOut)
def get_order(external_id: int, db: Session = Depends(get_db)):
    order = order_service.get_order(db, external_id)
    if not order:
        raise NotFoundError("order", external_id)
    return OrderOut.model_validate(order)


@router.delete("/api/orders/{external_id}", response_model=OkResponse)
def delete_order(external_id: int, db: Session = Depends(get_db)):
    if not order_service.delete_order(db, external_id):
        raise NotFoundError("order", external_id)
    return OkResponse()
