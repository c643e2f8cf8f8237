from fastapi import APIRouter, Depends, Query, Request, Response, status
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin_key
from app.config import settings
from app.models.voucher import VoucherStatus
from app.schemas.common import ListResponse
from app.schemas.voucher import (
    VoucherBatchCreate,
    VoucherBatchRead,
    VoucherCheckRead,
    VoucherExpireRead,
    VoucherRead,
    VoucherRedeem,
    VoucherRedemptionRead,
)
from app.services.vouchers import vouchers

limiter = Limiter(key_func=get_remote_address)

router = APIRouter(prefix="/vouchers", tags=["vouchers"])


@router.post("/redeem", response_model=VoucherRedemptionRead)
@limiter.limit(settings.voucher_rate_limit)
def redeem_voucher(request: Request, payload: VoucherRedeem, db: Session = Depends(get_db)):
    return vouchers.redeem(
        db, payload.code, phone=payload.phone, device_name=payload.device_name
    )


@router.get("/check/{code}", response_model=VoucherCheckRead)
@limiter.limit(settings.voucher_rate_limit)
def check_voucher(request: Request, code: str, db: Session = Depends(get_db)):
    return vouchers.check(db, code)


@router.post(
    "",
    response_model=VoucherBatchRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin_key)],
)
def create_vouchers(payload: VoucherBatchCreate, db: Session = Depends(get_db)):
    items = vouchers.create_vouchers(
        db, payload.plan_id, quantity=payload.quantity, ttl_days=payload.ttl_days
    )
    return {"count": len(items), "items": items}


@router.get(
    "",
    response_model=ListResponse[VoucherRead],
    dependencies=[Depends(require_admin_key)],
)
def list_vouchers(
    status: VoucherStatus | None = None,
    plan_id: int | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return vouchers.list_response(
        db,
        status=status,
        plan_id=plan_id,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.post(
    "/expire",
    response_model=VoucherExpireRead,
    dependencies=[Depends(require_admin_key)],
)
def expire_vouchers(db: Session = Depends(get_db)):
    return {"expired": vouchers.expire_stale(db)}


@router.delete(
    "/{voucher_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin_key)],
)
def delete_voucher(voucher_id: int, db: Session = Depends(get_db)):
    vouchers.delete(db, voucher_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
