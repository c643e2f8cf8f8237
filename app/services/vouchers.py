"""Voucher engine: batch issuance and exactly-once redemption."""

import logging
import secrets
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app.config import settings
from app.exceptions import (
    InvalidStateError,
    PlanNotFound,
    SubscriberBlocked,
    VoucherAlreadyUsed,
    VoucherExpired,
    VoucherNotFound,
)
from app.metrics import AccessMetrics, default_metrics
from app.models.catalog import Plan
from app.models.voucher import Voucher, VoucherStatus
from app.services.common import (
    apply_ordering,
    apply_pagination,
    as_utc,
    get_or_404,
    utcnow,
)
from app.services.entitlements import Entitlements, entitlements
from app.services.identity import IdentityResolver, identity_resolver
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
CODE_GROUPS = 3
CODE_GROUP_LENGTH = 4


def generate_code() -> str:
    groups = (
        "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_GROUP_LENGTH))
        for _ in range(CODE_GROUPS)
    )
    return "-".join(groups)


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


class Vouchers(ListResponseMixin):
    def __init__(
        self,
        ledger: Entitlements = entitlements,
        resolver: IdentityResolver = identity_resolver,
        metrics: AccessMetrics = default_metrics,
    ):
        self.ledger = ledger
        self.resolver = resolver
        self.metrics = metrics

    @staticmethod
    def get_by_code(db: Session, code: str) -> Voucher:
        voucher = db.query(Voucher).filter(Voucher.code == normalize_code(code)).first()
        if voucher is None:
            raise VoucherNotFound(code=normalize_code(code))
        return voucher

    @staticmethod
    def _is_past_expiry(voucher: Voucher, now: datetime) -> bool:
        expires_at = as_utc(voucher.expires_at)
        return expires_at is not None and expires_at <= now

    def _mark_expired(self, db: Session, voucher: Voucher) -> None:
        updated = (
            db.query(Voucher)
            .filter(Voucher.id == voucher.id)
            .filter(Voucher.status == VoucherStatus.unused)
            .update({Voucher.status: VoucherStatus.expired}, synchronize_session=False)
        )
        db.commit()
        if updated:
            logger.info("Voucher %s expired on redemption attempt", voucher.code)

    def _validate(self, db: Session, voucher: Voucher, now: datetime) -> None:
        if voucher.status == VoucherStatus.used:
            self.metrics.voucher("already_used")
            raise VoucherAlreadyUsed(code=voucher.code)
        if voucher.status == VoucherStatus.expired:
            self.metrics.voucher("expired")
            raise VoucherExpired(code=voucher.code)
        if self._is_past_expiry(voucher, now):
            self._mark_expired(db, voucher)
            self.metrics.voucher("expired")
            raise VoucherExpired(code=voucher.code)

    def redeem(
        self,
        db: Session,
        code: str,
        phone: str | None = None,
        device_name: str | None = None,
    ) -> dict:
        now = utcnow()
        voucher = self.get_by_code(db, code)
        self._validate(db, voucher, now)
        voucher_id = voucher.id
        plan_id = voucher.plan_id

        subscriber, rule = self.resolver.resolve_hint(db, phone=phone, device_name=device_name)
        if subscriber.is_blocked:
            self.metrics.voucher("blocked")
            raise SubscriberBlocked(subscriber_id=subscriber.id)

        claimed = (
            db.query(Voucher)
            .filter(Voucher.id == voucher_id)
            .filter(Voucher.status == VoucherStatus.unused)
            .update(
                {
                    Voucher.status: VoucherStatus.used,
                    Voucher.used_at: now,
                    Voucher.used_by: subscriber.id,
                },
                synchronize_session=False,
            )
        )
        if not claimed:
            db.rollback()
            self.metrics.voucher("already_used")
            raise VoucherAlreadyUsed(code=normalize_code(code))
        try:
            subscription = self.ledger.activate(
                db, subscriber.id, plan_id, voucher_id=voucher_id, now=now, commit=False
            )
            db.query(Voucher).filter(Voucher.id == voucher_id).update(
                {Voucher.subscription_id: subscription.id}, synchronize_session=False
            )
            db.commit()
        except Exception:
            db.rollback()
            self.metrics.voucher("failed")
            raise
        db.refresh(subscription)

        provisioned = self.ledger.grant(db, subscriber, subscription)
        pairing_token = None
        if subscriber.mac_is_temporary:
            pairing_token = self.resolver.issue_pairing_token(db, subscriber.id).pairing_token
        self.metrics.voucher("redeemed")
        logger.info(
            "Voucher %s redeemed by subscriber %s (%s)",
            normalize_code(code),
            subscriber.id,
            rule,
            extra={"subscriber_id": subscriber.id, "subscription_id": subscription.id},
        )
        return {
            "subscriber_id": subscriber.id,
            "username": subscriber.username,
            "secret": subscriber.secret,
            "subscription": subscription,
            "provisioned": provisioned,
            "pairing_token": pairing_token,
        }

    def check(self, db: Session, code: str) -> dict:
        voucher = self.get_by_code(db, code)
        now = utcnow()
        valid = voucher.status == VoucherStatus.unused and not self._is_past_expiry(voucher, now)
        return {
            "code": voucher.code,
            "valid": valid,
            "status": voucher.status,
            "plan_id": voucher.plan_id,
            "plan_name": voucher.plan.name if voucher.plan else None,
            "expires_at": voucher.expires_at,
        }

    @staticmethod
    def create_vouchers(
        db: Session, plan_id: int, quantity: int = 1, ttl_days: int | None = None
    ) -> list[Voucher]:
        plan = get_or_404(db, Plan, plan_id, PlanNotFound)
        if quantity < 1 or quantity > settings.voucher_max_batch:
            raise InvalidStateError(
                f"Quantity must be between 1 and {settings.voucher_max_batch}",
                quantity=quantity,
            )
        expires_at = utcnow() + timedelta(days=ttl_days or settings.voucher_default_ttl_days)
        codes: set[str] = set()
        while len(codes) < quantity:
            code = generate_code()
            if code in codes:
                continue
            if db.query(Voucher.id).filter(Voucher.code == code).first() is not None:
                continue
            codes.add(code)
        vouchers = [Voucher(code=code, plan_id=plan.id, expires_at=expires_at) for code in codes]
        db.add_all(vouchers)
        db.commit()
        for voucher in vouchers:
            db.refresh(voucher)
        logger.info("Created %d voucher(s) for plan %s", len(vouchers), plan.id)
        return vouchers

    @staticmethod
    def delete(db: Session, voucher_id: int) -> None:
        voucher = get_or_404(db, Voucher, voucher_id, VoucherNotFound)
        if voucher.status == VoucherStatus.used:
            raise InvalidStateError("Used vouchers cannot be deleted", voucher_id=voucher_id)
        db.delete(voucher)
        db.commit()

    def expire_stale(self, db: Session, now: datetime | None = None) -> int:
        now = now or utcnow()
        expired = (
            db.query(Voucher)
            .filter(Voucher.status == VoucherStatus.unused)
            .filter(Voucher.expires_at.isnot(None))
            .filter(Voucher.expires_at <= now)
            .update({Voucher.status: VoucherStatus.expired}, synchronize_session=False)
        )
        db.commit()
        if expired:
            logger.info("Expired %d stale voucher(s)", expired)
        return expired

    @staticmethod
    def list(
        db: Session,
        status: VoucherStatus | None = None,
        plan_id: int | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Voucher)
        if status is not None:
            query = query.filter(Voucher.status == status)
        if plan_id is not None:
            query = query.filter(Voucher.plan_id == plan_id)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Voucher.created_at, "code": Voucher.code, "status": Voucher.status},
        )
        return apply_pagination(query, limit, offset).all()


vouchers = Vouchers()
