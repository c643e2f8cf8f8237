from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_router_key
from app.schemas.identity import ConnectionReport, IdentityResolutionRead
from app.services.identity import identity_resolver

router = APIRouter(prefix="/identity", tags=["identity"])


@router.post(
    "/events",
    response_model=IdentityResolutionRead,
    dependencies=[Depends(require_router_key)],
)
def identity_event(payload: ConnectionReport, db: Session = Depends(get_db)):
    """Resolve a connection report synchronously and report the matched rule."""
    result = identity_resolver.resolve(
        db,
        payload.identifier,
        payload.detected_mac,
        ip=payload.ip,
        phone=payload.phone,
        pairing_token=payload.pairing_token,
    )
    return result.as_dict()
