"""initial schema

Revision ID: 202610010900
Revises:
Create Date: 2026-10-01 09:00:00.000000

"""

from alembic import op
import sqlalchemy as sa


revision = "202610010900"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("username", sa.String(length=50), nullable=False, unique=True),
        sa.Column("password_hash", sa.String(length=100), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False, unique=True),
        sa.Column("full_name", sa.String(length=120), nullable=False),
        sa.Column("is_admin", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("last_login", sa.DateTime()),
        *_timestamps(),
    )

    op.create_table(
        "categories",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column(
            "type",
            sa.Enum(
                "fixed", "variable", "discretionary", "income", name="categorytype"
            ),
            nullable=False,
        ),
        sa.Column("color", sa.String(length=7), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("is_income", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_transactions_amount_positive"),
    )
    op.create_index(
        "ix_transactions_user_date", "transactions", ["user_id", "date"]
    )
    op.create_index(
        "ix_transactions_user_category_date",
        "transactions",
        ["user_id", "category_id", "date"],
    )

    op.create_table(
        "budgets",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("category_id", sa.Integer(), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "period",
            sa.Enum("monthly", "weekly", "yearly", name="budgetperiod"),
            nullable=False,
            server_default="monthly",
        ),
        *_timestamps(),
        sa.CheckConstraint("amount >= 0", name="ck_budgets_amount_positive"),
    )
    op.create_index(
        "ix_budgets_user_category", "budgets", ["user_id", "category_id"]
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "type",
            sa.Enum("warning", "error", "success", name="alerttype"),
            nullable=False,
        ),
        sa.Column("read", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_timestamps(),
    )
    op.create_index("ix_alerts_user_created", "alerts", ["user_id", "created_at"])

    op.create_table(
        "forum_topics",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("likes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("views", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
    )

    op.create_table(
        "forum_replies",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("topic_id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_forum_replies_topic_id", "forum_replies", ["topic_id"])

    op.create_table(
        "deals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("title", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("company", sa.String(length=120), nullable=False),
        sa.Column("valid_until", sa.Date()),
        sa.Column("added_by", sa.Integer(), nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "system_settings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "allow_registration", sa.Boolean(), nullable=False, server_default=sa.true()
        ),
        sa.Column(
            "maintenance_mode", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column(
            "app_name",
            sa.String(length=120),
            nullable=False,
            server_default="Smart Spend",
        ),
        sa.Column(
            "contact_email",
            sa.String(length=255),
            nullable=False,
            server_default="support@smartspend.com",
        ),
        sa.Column(
            "backup_frequency",
            sa.String(length=20),
            nullable=False,
            server_default="daily",
        ),
        sa.Column("last_backup", sa.DateTime()),
        *_timestamps(),
    )


def downgrade():
    op.drop_table("system_settings")
    op.drop_table("deals")
    op.drop_index("ix_forum_replies_topic_id", table_name="forum_replies")
    op.drop_table("forum_replies")
    op.drop_table("forum_topics")
    op.drop_index("ix_alerts_user_created", table_name="alerts")
    op.drop_table("alerts")
    op.drop_index("ix_budgets_user_category", table_name="budgets")
    op.drop_table("budgets")
    op.drop_index("ix_transactions_user_category_date", table_name="transactions")
    op.drop_index("ix_transactions_user_date", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("categories")
    op.drop_table("users")
