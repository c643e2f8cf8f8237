from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin_key
from app.models.billing import PaymentStatus
from app.schemas.billing import (
    PaymentConfirm,
    PaymentConfirmRead,
    PaymentCreate,
    PaymentRead,
)
from app.schemas.common import ListResponse
from app.services.payments import payments

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "",
    response_model=PaymentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_key)],
)
def create_payment(payload: PaymentCreate, db: Session = Depends(get_db)):
    """Record a pending payment when the gateway initiates a push."""
    return payments.create_pending(
        db,
        payload.reference,
        payload.plan_id,
        amount=payload.amount,
        subscriber_id=payload.subscriber_id,
        phone=payload.phone,
        device_name=payload.device_name,
    )


@router.post(
    "/confirm",
    response_model=PaymentConfirmRead,
    dependencies=[Depends(require_admin_key)],
)
def confirm_payment(payload: PaymentConfirm, db: Session = Depends(get_db)):
    """Apply a gateway callback; repeated deliveries are acknowledged as duplicates."""
    return payments.confirm(
        db,
        payload.reference,
        payload.result_code,
        receipt_code=payload.receipt_code,
        amount=payload.amount,
        result_description=payload.result_description,
        payload=payload.model_dump(mode="json"),
    )


@router.get(
    "",
    response_model=ListResponse[PaymentRead],
    dependencies=[Depends(require_admin_key)],
)
def list_payments(
    subscriber_id: int | None = None,
    status: PaymentStatus | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return payments.list_response(
        db,
        subscriber_id=subscriber_id,
        status=status,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.get(
    "/{reference}",
    response_model=PaymentRead,
    dependencies=[Depends(require_admin_key)],
)
def get_payment(reference: str, db: Session = Depends(get_db)):
    """Look up a payment by gateway reference, e.g. while polling a push."""
    return payments.get_by_reference(db, reference)
