"""initial ledger schema

Revision ID: 202502100900
Revises:
Create Date: 2025-02-10 09:00:00.000000

"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa


revision = "202502100900"
down_revision = None
branch_labels = None
depends_on = None

FREQUENCIES = ("WEEKLY", "FORTNIGHTLY", "MONTHLY")


def upgrade() -> None:
    op.create_table(
        "accounts",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column(
            "account_type",
            sa.Enum("TRANSACTIONAL", "SAVER", name="accounttype"),
            nullable=False,
        ),
        sa.Column("balance_cents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("synced_at", sa.DateTime()),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("parent_id", sa.String(length=64)),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("account_id", sa.String(length=64), nullable=False),
        sa.Column(
            "status",
            sa.Enum("HELD", "SETTLED", name="transactionstatus"),
            nullable=False,
        ),
        sa.Column("raw_text", sa.Text()),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("message", sa.Text()),
        sa.Column(
            "is_categorizable", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column("category_id", sa.String(length=64)),
        sa.Column("parent_category_id", sa.String(length=64)),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "currency_code", sa.String(length=3), nullable=False, server_default="AUD"
        ),
        sa.Column("settled_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime()),
        sa.Column("display_date", sa.Date(), nullable=False),
        sa.Column("is_round_up", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("round_up_parent_id", sa.String(length=64)),
        sa.Column("transfer_account_id", sa.String(length=64)),
        sa.Column("transfer_type", sa.String(length=40)),
        sa.Column("synced_at", sa.DateTime()),
    )
    op.create_index("ix_transactions_display_date", "transactions", ["display_date"])
    op.create_index(
        "ix_transactions_category_date", "transactions", ["category_id", "display_date"]
    )
    op.create_index("ix_transactions_account", "transactions", ["account_id"])
    op.create_index(
        "ix_transactions_transfer_account", "transactions", ["transfer_account_id"]
    )

    op.create_table(
        "savers",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("icon", sa.String(length=40)),
        sa.Column(
            "current_balance_cents", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("goal_amount_cents", sa.Integer()),
        sa.Column("target_date", sa.Date()),
        sa.Column("monthly_transfer_cents", sa.Integer()),
        sa.Column("auto_transfer_day", sa.Integer()),
        sa.Column("is_goal_based", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "scheduled_charges",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column(
            "frequency",
            sa.Enum(*FREQUENCIES, "QUARTERLY", "YEARLY", "ONCE", name="chargefrequency"),
            nullable=False,
        ),
        sa.Column("next_charge_date", sa.Date(), nullable=False),
        sa.Column("category_id", sa.String(length=64)),
        sa.Column("is_reserved", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents >= 0", name="ck_charge_amount_positive"),
    )
    op.create_index(
        "ix_scheduled_charges_next_date", "scheduled_charges", ["next_charge_date"]
    )

    op.create_table(
        "trackers",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("budget_cents", sa.Integer(), nullable=False),
        sa.Column(
            "reset_frequency",
            sa.Enum(*FREQUENCIES, "PAYDAY", name="resetfrequency"),
            nullable=False,
        ),
        sa.Column("reset_day", sa.Integer()),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("last_reset_date", sa.Date(), nullable=False),
        sa.Column("next_reset_date", sa.Date(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("budget_cents >= 0", name="ck_tracker_budget_positive"),
    )
    op.create_index("ix_trackers_active", "trackers", ["is_active"])

    op.create_table(
        "tracker_categories",
        sa.Column(
            "tracker_id",
            sa.Integer(),
            sa.ForeignKey("trackers.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column("category_id", sa.String(length=64), primary_key=True),
    )

    op.create_table(
        "app_settings",
        sa.Column("key", sa.String(length=64), primary_key=True),
        sa.Column("value", sa.Text(), nullable=False),
    )


def downgrade() -> None:
    op.drop_table("app_settings")
    op.drop_table("tracker_categories")
    op.drop_index("ix_trackers_active", table_name="trackers")
    op.drop_table("trackers")
    op.drop_index("ix_scheduled_charges_next_date", table_name="scheduled_charges")
    op.drop_table("scheduled_charges")
    op.drop_table("savers")
    op.drop_index("ix_transactions_transfer_account", table_name="transactions")
    op.drop_index("ix_transactions_account", table_name="transactions")
    op.drop_index("ix_transactions_category_date", table_name="transactions")
    op.drop_index("ix_transactions_display_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("accounts")
