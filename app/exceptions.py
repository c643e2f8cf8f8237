"""Domain exceptions for the entitlement engine.

Every error carries an HTTP status and a machine-readable code so that
``app.errors`` can render it without the service layer knowing about HTTP.
"""

from __future__ import annotations


class AccessError(Exception):
    """Base class for entitlement engine failures."""

    status_code = 400
    code = "access_error"
    default_message = "Request could not be completed"

    def __init__(self, message: str | None = None, **details):
        self.message = message or self.default_message
        self.details = details or None
        super().__init__(self.message)


class NotFoundError(AccessError):
    status_code = 404
    code = "not_found"
    default_message = "Record not found"


class SubscriberNotFound(NotFoundError):
    code = "subscriber_not_found"
    default_message = "Subscriber not found"


class SubscriptionNotFound(NotFoundError):
    code = "subscription_not_found"
    default_message = "Subscription not found"


class PlanNotFound(NotFoundError):
    code = "plan_not_found"
    default_message = "Plan not found"


class PaymentNotFound(NotFoundError):
    code = "payment_not_found"
    default_message = "Payment not found"


class VoucherNotFound(NotFoundError):
    code = "voucher_not_found"
    default_message = "Invalid voucher code"


class VoucherAlreadyUsed(AccessError):
    status_code = 409
    code = "voucher_already_used"
    default_message = "Voucher has already been used"


class VoucherExpired(AccessError):
    status_code = 410
    code = "voucher_expired"
    default_message = "Voucher has expired"


class InvalidStateError(AccessError):
    status_code = 409
    code = "invalid_state"
    default_message = "Operation not allowed in the current state"


class SubscriberBlocked(AccessError):
    status_code = 403
    code = "subscriber_blocked"
    default_message = "Account blocked. Contact support."


class ConflictingOrigin(AccessError):
    """A subscription already exists for this payment or voucher.

    Raised only inside the ledger; callers receive the existing subscription.
    """

    status_code = 409
    code = "conflicting_origin"
    default_message = "Subscription already exists for this origin"


class DownstreamUnavailable(AccessError):
    status_code = 503
    code = "downstream_unavailable"
    default_message = "Access control store unavailable"


class InvalidIdentity(AccessError):
    status_code = 422
    code = "invalid_identity"
    default_message = "Invalid device identity"
