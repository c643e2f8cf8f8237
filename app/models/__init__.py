from app.models.access_session import (  # noqa: F401
    OPEN_SESSION_STATUSES,
    AccessSession,
    AccessSessionStatus,
)
from app.models.billing import Payment, PaymentStatus  # noqa: F401
from app.models.catalog import (  # noqa: F401
    DURATION_UNIT_SECONDS,
    DurationUnit,
    Plan,
    Subscription,
    SubscriptionStatus,
)
from app.models.radius import RadCheck, RadReply  # noqa: F401
from app.models.subscriber import Subscriber, SubscriberStatus  # noqa: F401
from app.models.voucher import Voucher, VoucherStatus  # noqa: F401
