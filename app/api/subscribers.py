from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin_key
from app.models.subscriber import SubscriberStatus
from app.schemas.common import ListResponse
from app.schemas.subscriber import PairingTokenRead, SubscriberRead
from app.services.identity import identity_resolver
from app.services.subscribers import subscribers

router = APIRouter(
    prefix="/subscribers",
    tags=["subscribers"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("", response_model=ListResponse[SubscriberRead])
def list_subscribers(
    status: SubscriberStatus | None = None,
    search: str | None = Query(default=None, max_length=64),
    order_by: str = Query(default="created_at"),
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return subscribers.list_response(
        db,
        status=status,
        search=search,
        order_by=order_by,
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.get("/{subscriber_id}", response_model=SubscriberRead)
def get_subscriber(subscriber_id: int, db: Session = Depends(get_db)):
    return subscribers.get(db, subscriber_id)


@router.post("/{subscriber_id}/block", response_model=SubscriberRead)
def block_subscriber(subscriber_id: int, db: Session = Depends(get_db)):
    return subscribers.block(db, subscriber_id)


@router.post("/{subscriber_id}/unblock", response_model=SubscriberRead)
def unblock_subscriber(subscriber_id: int, db: Session = Depends(get_db)):
    return subscribers.unblock(db, subscriber_id)


@router.post("/{subscriber_id}/pairing-token", response_model=PairingTokenRead)
def issue_pairing_token(subscriber_id: int, db: Session = Depends(get_db)):
    subscriber = identity_resolver.issue_pairing_token(db, subscriber_id)
    return {
        "subscriber_id": subscriber.id,
        "pairing_token": subscriber.pairing_token,
        "expires_at": subscriber.pairing_token_expires_at,
    }
