"""Create subscriber, ledger, voucher, session and FreeRADIUS tables.

Revision ID: 0001_access_entitlement
Revises:
Create Date: 2026-10-19

"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "0001_access_entitlement"
down_revision = None
branch_labels = None
depends_on = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    subscriber_status = sa.Enum("active", "blocked", name="subscriberstatus")
    duration_unit = sa.Enum("minute", "hour", "day", "week", "month", name="durationunit")
    subscription_status = sa.Enum(
        "active", "expired", "canceled", name="subscriptionstatus"
    )
    payment_status = sa.Enum("pending", "success", "failed", name="paymentstatus")
    voucher_status = sa.Enum("unused", "used", "expired", name="voucherstatus")
    session_status = sa.Enum("pending", "active", "inactive", name="accesssessionstatus")

    if "subscribers" not in existing_tables:
        op.create_table(
            "subscribers",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("phone", sa.String(32), nullable=True, unique=True),
            sa.Column("username", sa.String(64), nullable=False, unique=True),
            sa.Column("secret", sa.String(64), nullable=False),
            sa.Column("mac_address", sa.String(17), nullable=True),
            sa.Column("mac_is_temporary", sa.Boolean, nullable=False, server_default=sa.true()),
            sa.Column("pairing_token", sa.String(32), nullable=True, unique=True),
            _ts("pairing_token_expires_at"),
            sa.Column("device_name", sa.String(120), nullable=True),
            sa.Column("last_ip", sa.String(64), nullable=True),
            _ts("last_seen_at"),
            sa.Column("status", subscriber_status, nullable=False, server_default="active"),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
        )
        op.create_index("ix_subscribers_mac_address", "subscribers", ["mac_address"])

    if "plans" not in existing_tables:
        op.create_table(
            "plans",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("name", sa.String(120), nullable=False),
            sa.Column("description", sa.Text, nullable=True),
            sa.Column("duration_unit", duration_unit, nullable=False),
            sa.Column("duration_value", sa.Integer, nullable=False),
            sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("rate_limit", sa.String(64), nullable=True),
            sa.Column("is_active", sa.Boolean, nullable=False, server_default=sa.true()),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
        )

    if "payments" not in existing_tables:
        op.create_table(
            "payments",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("reference", sa.String(120), nullable=False, unique=True),
            sa.Column("subscriber_id", sa.Integer, sa.ForeignKey("subscribers.id"), nullable=False),
            sa.Column("plan_id", sa.Integer, sa.ForeignKey("plans.id"), nullable=False),
            sa.Column("amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
            sa.Column("status", payment_status, nullable=False, server_default="pending"),
            sa.Column("receipt_code", sa.String(64), nullable=True),
            sa.Column("result_code", sa.Integer, nullable=True),
            sa.Column("result_description", sa.String(255), nullable=True),
            sa.Column("callback_payload", sa.JSON, nullable=True),
            _ts("confirmed_at"),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
        )

    if "vouchers" not in existing_tables:
        op.create_table(
            "vouchers",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("code", sa.String(32), nullable=False, unique=True),
            sa.Column("plan_id", sa.Integer, sa.ForeignKey("plans.id"), nullable=False),
            sa.Column("status", voucher_status, nullable=False, server_default="unused"),
            _ts("expires_at"),
            _ts("used_at"),
            sa.Column("used_by", sa.Integer, sa.ForeignKey("subscribers.id"), nullable=True),
            sa.Column("subscription_id", sa.Integer, nullable=True),
            _ts("created_at", nullable=False),
        )
        op.create_index("ix_vouchers_status", "vouchers", ["status"])

    if "subscriptions" not in existing_tables:
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("subscriber_id", sa.Integer, sa.ForeignKey("subscribers.id"), nullable=False),
            sa.Column("plan_id", sa.Integer, sa.ForeignKey("plans.id"), nullable=False),
            sa.Column("payment_id", sa.Integer, sa.ForeignKey("payments.id"), nullable=True, unique=True),
            sa.Column("voucher_id", sa.Integer, sa.ForeignKey("vouchers.id"), nullable=True, unique=True),
            sa.Column("status", subscription_status, nullable=False, server_default="active"),
            _ts("start_at", nullable=False),
            _ts("end_at", nullable=False),
            _ts("expired_at"),
            _ts("created_at", nullable=False),
            _ts("updated_at", nullable=False),
        )
        op.create_index("ix_subscriptions_subscriber_id", "subscriptions", ["subscriber_id"])
        op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
        op.create_index("ix_subscriptions_end_at", "subscriptions", ["end_at"])

    if "access_sessions" not in existing_tables:
        op.create_table(
            "access_sessions",
            sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
            sa.Column("subscriber_id", sa.Integer, sa.ForeignKey("subscribers.id"), nullable=False),
            sa.Column("subscription_id", sa.Integer, sa.ForeignKey("subscriptions.id"), nullable=True),
            sa.Column("mac_address", sa.String(17), nullable=True),
            sa.Column("ip_address", sa.String(64), nullable=True),
            sa.Column("status", session_status, nullable=False, server_default="pending"),
            _ts("started_at", nullable=False),
            _ts("connected_at"),
            _ts("ended_at"),
            sa.Column("duration_seconds", sa.Integer, nullable=True),
            sa.Column("terminate_cause", sa.String(64), nullable=True),
        )
        op.create_index("ix_access_sessions_subscriber_id", "access_sessions", ["subscriber_id"])
        op.create_index("ix_access_sessions_subscription_id", "access_sessions", ["subscription_id"])

    # FreeRADIUS rlm_sql schema
    for table, default_op in (("radcheck", "=="), ("radreply", "=")):
        if table not in existing_tables:
            op.create_table(
                table,
                sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
                sa.Column("username", sa.String(64), nullable=False, server_default=""),
                sa.Column("attribute", sa.String(64), nullable=False, server_default=""),
                sa.Column("op", sa.String(2), nullable=False, server_default=default_op),
                sa.Column("value", sa.String(253), nullable=False, server_default=""),
            )
            op.create_index(f"ix_{table}_username", table, ["username"])


def downgrade() -> None:
    for table in (
        "radreply",
        "radcheck",
        "access_sessions",
        "subscriptions",
        "vouchers",
        "payments",
        "plans",
        "subscribers",
    ):
        op.drop_table(table)
    bind = op.get_bind()
    for enum_name in (
        "accesssessionstatus",
        "voucherstatus",
        "paymentstatus",
        "subscriptionstatus",
        "durationunit",
        "subscriberstatus",
    ):
        sa.Enum(name=enum_name).drop(bind, checkfirst=True)
