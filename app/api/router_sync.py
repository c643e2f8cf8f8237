"""
Router Sync REST API Endpoints

Pull interface polled by the hotspot access point:
- Credential list (JSON and line-oriented text)
- MAC bypass list and recently expired users
- Connect / disconnect event intake
"""
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from app.api.deps import get_db, require_router_key
from app.schemas.identity import ConnectionReport, IdentityResolutionRead
from app.schemas.router_sync import (
    CredentialList,
    DisconnectEvent,
    DisconnectRead,
    ExpiredList,
    MacBypassList,
)
from app.services.router_sync import router_sync

router = APIRouter(
    prefix="/router",
    tags=["router-sync"],
    dependencies=[Depends(require_router_key)],
)


@router.get("/sync", response_model=CredentialList)
def sync_users(
    since: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return router_sync.credential_list(db, since=since)


@router.get("/sync.txt", response_class=PlainTextResponse)
def sync_users_text(
    since: datetime | None = Query(default=None),
    db: Session = Depends(get_db),
):
    return PlainTextResponse(router_sync.credential_lines(db, since=since))


@router.get("/mac-bypass", response_model=MacBypassList)
def mac_bypass(db: Session = Depends(get_db)):
    return router_sync.mac_bypass(db)


@router.get("/expired", response_model=ExpiredList)
def expired_users(
    window_minutes: int | None = Query(default=None, ge=1, le=1440),
    db: Session = Depends(get_db),
):
    return router_sync.expired(db, window_minutes=window_minutes)


@router.post("/events/connect", response_model=IdentityResolutionRead)
def connect_event(payload: ConnectionReport, db: Session = Depends(get_db)):
    return router_sync.connect(
        db,
        payload.identifier,
        payload.detected_mac,
        ip=payload.ip,
        phone=payload.phone,
        pairing_token=payload.pairing_token,
    )


@router.post("/events/disconnect", response_model=DisconnectRead)
def disconnect_event(payload: DisconnectEvent, db: Session = Depends(get_db)):
    return router_sync.disconnect(
        db,
        mac_address=payload.mac_address,
        username=payload.username,
        terminate_cause=payload.terminate_cause,
    )
