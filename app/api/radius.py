from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_admin_key
from app.models.access_session import AccessSessionStatus
from app.schemas.catalog import RateLimitOverride, SubscriptionRead
from app.schemas.common import ListResponse
from app.schemas.radius import AccessSessionRead, RadiusStatsRead, RadiusUserRead
from app.services.access_sessions import access_sessions
from app.services.entitlements import entitlements
from app.services.radius import radius_provisioner
from app.services.subscribers import subscribers

router = APIRouter(
    prefix="/radius",
    tags=["radius"],
    dependencies=[Depends(require_admin_key)],
)


@router.get("/stats", response_model=RadiusStatsRead)
def radius_stats(db: Session = Depends(get_db)):
    return entitlements.aaa_stats(db)


@router.get("/sessions", response_model=ListResponse[AccessSessionRead])
def list_open_sessions(
    subscriber_id: int | None = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    return access_sessions.list_response(
        db, subscriber_id=subscriber_id, open_only=True, limit=limit, offset=offset
    )


@router.get("/sessions/history", response_model=ListResponse[AccessSessionRead])
def list_session_history(
    subscriber_id: int | None = None,
    order_dir: str = Query(default="desc", pattern="^(asc|desc)$"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    """Closed sessions, most recently ended first."""
    return access_sessions.list_response(
        db,
        subscriber_id=subscriber_id,
        status=AccessSessionStatus.inactive,
        order_by="ended_at",
        order_dir=order_dir,
        limit=limit,
        offset=offset,
    )


@router.get("/users/{username}", response_model=RadiusUserRead)
def get_radius_user(username: str, db: Session = Depends(get_db)):
    return radius_provisioner.get_user(db, username)


@router.delete("/users/{username}")
def deprovision_radius_user(username: str, db: Session = Depends(get_db)):
    removed = radius_provisioner.deprovision(db, username)
    return {"username": username, "removed": removed}


@router.post("/subscribers/{subscriber_id}/provision", response_model=SubscriptionRead)
def reprovision_subscriber(subscriber_id: int, db: Session = Depends(get_db)):
    return entitlements.reprovision(db, subscriber_id)


@router.put("/subscribers/{subscriber_id}/rate-limit")
def override_rate_limit(
    subscriber_id: int, payload: RateLimitOverride, db: Session = Depends(get_db)
):
    updated = entitlements.override_rate_limit(db, subscriber_id, payload.rate_limit)
    subscriber = subscribers.get(db, subscriber_id)
    return {
        "username": subscriber.username,
        "rate_limit": payload.rate_limit,
        "updated": updated,
    }
