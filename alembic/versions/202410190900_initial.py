"""initial schema

Revision ID: 202410190900
Revises:
Create Date: 2024-10-19 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202410190900"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=50), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("plan", sa.Enum("free", "premium", name="plan"), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(length=255)),
        sa.Column("theme", sa.Enum("light", "dark", name="theme"), nullable=False),
        sa.Column("language", sa.Enum("pt", "en", name="language"), nullable=False),
        sa.Column(
            "currency", sa.Enum("BRL", "USD", name="currencycode"), nullable=False
        ),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_users_subscription", "users", ["stripe_subscription_id"])

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "owner_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column(
            "type", sa.Enum("income", "expense", name="transactiontype"), nullable=False
        ),
        sa.Column(
            "category",
            sa.Enum(
                "food",
                "housing",
                "transport",
                "leisure",
                "health",
                "other",
                name="transactioncategory",
            ),
            nullable=False,
        ),
        sa.Column("custom_label", sa.String(length=100)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("occurred_on", sa.Date(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_transactions_amount_positive"),
    )
    op.create_index("ix_transactions_owner_id", "transactions", ["owner_id"])
    op.create_index(
        "ix_transactions_owner_date", "transactions", ["owner_id", "occurred_on"]
    )
    op.create_index(
        "ix_transactions_owner_type_date",
        "transactions",
        ["owner_id", "type", "occurred_on"],
    )

    op.create_table(
        "goals",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column(
            "owner_id", sa.String(length=64), sa.ForeignKey("users.id"), nullable=False
        ),
        sa.Column("title", sa.String(length=100), nullable=False),
        sa.Column("target_amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "current_amount_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("deadline", sa.Date(), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("target_amount_cents > 0", name="ck_goals_target_positive"),
        sa.CheckConstraint(
            "current_amount_cents >= 0", name="ck_goals_current_non_negative"
        ),
    )
    op.create_index("ix_goals_owner_id", "goals", ["owner_id"])
    op.create_index("ix_goals_owner_deadline", "goals", ["owner_id", "deadline"])

    op.create_table(
        "billing_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("event_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("event_type", sa.String(length=120), nullable=False),
        sa.Column("payload_json", sa.Text(), nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "processed", "failed", "dead", name="billingeventstatus"),
            nullable=False,
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_billing_events_status", "billing_events", ["status"])


def downgrade():
    op.drop_index("ix_billing_events_status", table_name="billing_events")
    op.drop_table("billing_events")
    op.drop_index("ix_goals_owner_deadline", table_name="goals")
    op.drop_index("ix_goals_owner_id", table_name="goals")
    op.drop_table("goals")
    op.drop_index("ix_transactions_owner_type_date", table_name="transactions")
    op.drop_index("ix_transactions_owner_date", table_name="transactions")
    op.drop_index("ix_transactions_owner_id", table_name="transactions")
    op.drop_table("transactions")
    op.drop_index("ix_users_subscription", table_name="users")
    op.drop_table("users")
