"""Payment intake at the billing boundary.

The gateway collaborator records a pending payment when it initiates a push
and later delivers the provider callback here. Callbacks may arrive more than
once; only the first successful one activates access.
"""

import logging
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.exceptions import (
    InvalidStateError,
    PaymentNotFound,
    PlanNotFound,
    SubscriberNotFound,
)
from app.models.billing import Payment, PaymentStatus
from app.models.catalog import Plan
from app.models.subscriber import Subscriber
from app.services.common import (
    apply_ordering,
    apply_pagination,
    get_or_404,
    round_money,
    utcnow,
)
from app.services.entitlements import Entitlements, entitlements
from app.services.identity import IdentityResolver, identity_resolver
from app.services.response import ListResponseMixin

logger = logging.getLogger(__name__)

RESULT_CODE_SUCCESS = 0


class Payments(ListResponseMixin):
    def __init__(
        self,
        ledger: Entitlements = entitlements,
        resolver: IdentityResolver = identity_resolver,
    ):
        self.ledger = ledger
        self.resolver = resolver

    @staticmethod
    def get_by_reference(db: Session, reference: str) -> Payment:
        payment = db.query(Payment).filter(Payment.reference == reference).first()
        if payment is None:
            raise PaymentNotFound(reference=reference)
        return payment

    def create_pending(
        self,
        db: Session,
        reference: str,
        plan_id: int,
        amount: Decimal | None = None,
        subscriber_id: int | None = None,
        phone: str | None = None,
        device_name: str | None = None,
    ) -> Payment:
        existing = db.query(Payment).filter(Payment.reference == reference).first()
        if existing:
            return existing
        plan = get_or_404(db, Plan, plan_id, PlanNotFound)
        if subscriber_id is not None:
            subscriber = get_or_404(db, Subscriber, subscriber_id, SubscriberNotFound)
        else:
            subscriber, _ = self.resolver.resolve_hint(db, phone=phone, device_name=device_name)
        payment = Payment(
            reference=reference,
            subscriber_id=subscriber.id,
            plan_id=plan.id,
            amount=round_money(amount if amount is not None else plan.price),
            status=PaymentStatus.pending,
        )
        db.add(payment)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return self.get_by_reference(db, reference)
        db.refresh(payment)
        logger.info(
            "Recorded pending payment %s for subscriber %s",
            reference,
            subscriber.id,
            extra={"reference": reference, "plan_id": plan.id},
        )
        return payment

    def confirm(
        self,
        db: Session,
        reference: str,
        result_code: int,
        receipt_code: str | None = None,
        amount: Decimal | None = None,
        result_description: str | None = None,
        payload: dict | None = None,
    ) -> dict:
        """Apply a provider callback. Duplicate deliveries are no-ops."""
        payment = self.get_by_reference(db, reference)
        existing = self.ledger.by_origin(db, payment_id=payment.id)
        if existing is not None or payment.status != PaymentStatus.pending:
            logger.info(
                "Payment %s already processed, skipping",
                reference,
                extra={"reference": reference, "status": payment.status.value},
            )
            return {
                "reference": reference,
                "status": payment.status,
                "duplicate": True,
                "subscription_id": existing.id if existing else None,
                "provisioned": False,
            }

        if result_code != RESULT_CODE_SUCCESS:
            payment.result_code = result_code
            payment.result_description = result_description
            payment.callback_payload = payload
            payment.status = PaymentStatus.failed
            db.commit()
            logger.info(
                "Payment %s failed with result code %s",
                reference,
                result_code,
                extra={"reference": reference},
            )
            return {"reference": reference, "status": payment.status}

        if amount is not None and round_money(amount) < round_money(payment.amount):
            raise InvalidStateError(
                "Confirmed amount is below the plan price",
                reference=reference,
                amount=str(amount),
            )
        claimed = (
            db.query(Payment)
            .filter(Payment.id == payment.id)
            .filter(Payment.status == PaymentStatus.pending)
            .update(
                {
                    Payment.status: PaymentStatus.success,
                    Payment.receipt_code: receipt_code,
                    Payment.confirmed_at: utcnow(),
                    Payment.result_code: result_code,
                    Payment.result_description: result_description,
                    Payment.callback_payload: payload,
                },
                synchronize_session=False,
            )
        )
        if not claimed:
            db.rollback()
            existing = self.ledger.by_origin(db, payment_id=payment.id)
            return {
                "reference": reference,
                "status": PaymentStatus.success,
                "duplicate": True,
                "subscription_id": existing.id if existing else None,
                "provisioned": False,
            }
        try:
            subscription = self.ledger.activate(
                db, payment.subscriber_id, payment.plan_id, payment_id=payment.id, commit=False
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(subscription)
        subscriber = subscription.subscriber
        provisioned = self.ledger.grant(db, subscriber, subscription)
        logger.info(
            "Payment %s confirmed (receipt %s); subscription %s active",
            reference,
            receipt_code,
            subscription.id,
            extra={"reference": reference, "subscriber_id": subscriber.id},
        )
        return {
            "reference": reference,
            "status": PaymentStatus.success,
            "duplicate": False,
            "subscription_id": subscription.id,
            "provisioned": provisioned,
        }

    @staticmethod
    def list(
        db: Session,
        subscriber_id: int | None = None,
        status: PaymentStatus | None = None,
        order_by: str = "created_at",
        order_dir: str = "desc",
        limit: int = 50,
        offset: int = 0,
    ):
        query = db.query(Payment)
        if subscriber_id is not None:
            query = query.filter(Payment.subscriber_id == subscriber_id)
        if status is not None:
            query = query.filter(Payment.status == status)
        query = apply_ordering(
            query,
            order_by,
            order_dir,
            {"created_at": Payment.created_at, "confirmed_at": Payment.confirmed_at},
        )
        return apply_pagination(query, limit, offset).all()


payments = Payments()
