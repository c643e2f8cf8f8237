from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin_key
from app.models.catalog import SubscriptionStatus
from app.schemas.catalog import (
    CurrentSubscriptionRead,
    SubscriptionGrant,
    SubscriptionRead,
)
from app.schemas.common import ListResponse
from app.schemas.expiry import ExpiryRunRead
from app.services.entitlements import entitlements
from app.services.expiry import expiry_reconciler

router = APIRouter(
    prefix="/subscriptions",
    tags=["subscriptions"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("", response_model=ListResponse[SubscriptionRead])
def list_subscriptions(
    subscriber_id: int | None = None,
    status: SubscriptionStatus | None = None,
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return entitlements.list_response(
        db,
        subscriber_id=subscriber_id,
        status=status,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.post("", response_model=SubscriptionRead, status_code=status.HTTP_201_CREATED)
def grant_subscription(payload: SubscriptionGrant, db: Session = Depends(get_db)):
    """Admin grant with no payment or voucher behind it."""
    subscription = entitlements.activate(db, payload.subscriber_id, payload.plan_id)
    entitlements.grant(db, subscription.subscriber, subscription)
    return subscription


@router.post("/expire-sweep", response_model=ExpiryRunRead)
def run_expiry_sweep(db: Session = Depends(get_db)):
    return expiry_reconciler.run(db)


@router.get("/current/{subscriber_id}", response_model=CurrentSubscriptionRead)
def current_subscription(subscriber_id: int, db: Session = Depends(get_db)):
    return entitlements.current_summary(db, subscriber_id)


@router.get("/{subscription_id}", response_model=SubscriptionRead)
def get_subscription(subscription_id: int, db: Session = Depends(get_db)):
    return entitlements.get(db, subscription_id)


@router.post("/{subscription_id}/expire", response_model=SubscriptionRead)
def force_expire(subscription_id: int, db: Session = Depends(get_db)):
    return entitlements.expire(db, subscription_id, cause="admin-reset")
