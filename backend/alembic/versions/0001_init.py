"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-02
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "profiles" not in existing_tables:
        op.create_table(
            "profiles",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("email", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("profiles")
    if "ix_profiles_id" not in idxs:
        op.create_index("ix_profiles_id", "profiles", ["id"])
    if "ix_profiles_email" not in idxs:
        op.create_index("ix_profiles_email", "profiles", ["email"])

    if "subscriptions" not in existing_tables:
        op.create_table(
            "subscriptions",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("plan", sa.String(), nullable=False, server_default="free"),
            sa.Column("status", sa.String(), nullable=False, server_default="active"),
            sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=False),
            sa.Column("current_period_end", sa.DateTime(timezone=True), nullable=False),
            sa.Column("provider", sa.String(), nullable=True),
            sa.Column("provider_customer_id", sa.String(), nullable=True),
            sa.Column("provider_subscription_id", sa.String(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
        )
    idxs = existing_indexes("subscriptions")
    if "ix_subscriptions_id" not in idxs:
        op.create_index("ix_subscriptions_id", "subscriptions", ["id"])
    if "ix_subscriptions_user_id" not in idxs:
        op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"], unique=True)
    if "ix_subscriptions_plan" not in idxs:
        op.create_index("ix_subscriptions_plan", "subscriptions", ["plan"])
    if "ix_subscriptions_status" not in idxs:
        op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    if "ix_subscriptions_provider" not in idxs:
        op.create_index("ix_subscriptions_provider", "subscriptions", ["provider"])
    if "ix_subscriptions_provider_customer_id" not in idxs:
        op.create_index("ix_subscriptions_provider_customer_id", "subscriptions", ["provider_customer_id"])
    if "ix_subscriptions_provider_subscription_id" not in idxs:
        op.create_index("ix_subscriptions_provider_subscription_id", "subscriptions", ["provider_subscription_id"])

    if "analysis_usage" not in existing_tables:
        op.create_table(
            "analysis_usage",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("period_start", sa.DateTime(timezone=True), nullable=False),
            sa.Column("period_end", sa.DateTime(timezone=True), nullable=False),
            sa.Column("analysis_count", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.UniqueConstraint("user_id", "period_start", name="uq_analysis_usage_user_period"),
            sa.CheckConstraint("analysis_count >= 0", name="ck_analysis_usage_count_non_negative"),
        )
    idxs = existing_indexes("analysis_usage")
    if "ix_analysis_usage_id" not in idxs:
        op.create_index("ix_analysis_usage_id", "analysis_usage", ["id"])
    if "ix_analysis_usage_user_id" not in idxs:
        op.create_index("ix_analysis_usage_user_id", "analysis_usage", ["user_id"])

    if "property_analyses" not in existing_tables:
        op.create_table(
            "property_analyses",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("user_id", sa.String(), nullable=False),
            sa.Column("property_address", sa.String(), nullable=True),
            sa.Column("plan_at_time", sa.String(), nullable=False, server_default="free"),
            sa.Column("inputs", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("property_analyses")
    if "ix_property_analyses_id" not in idxs:
        op.create_index("ix_property_analyses_id", "property_analyses", ["id"])
    if "ix_property_analyses_user_id" not in idxs:
        op.create_index("ix_property_analyses_user_id", "property_analyses", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix_property_analyses_user_id", table_name="property_analyses")
    op.drop_index("ix_property_analyses_id", table_name="property_analyses")
    op.drop_table("property_analyses")

    op.drop_index("ix_analysis_usage_user_id", table_name="analysis_usage")
    op.drop_index("ix_analysis_usage_id", table_name="analysis_usage")
    op.drop_table("analysis_usage")

    op.drop_index("ix_subscriptions_provider_subscription_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_provider_customer_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_provider", table_name="subscriptions")
    op.drop_index("ix_subscriptions_status", table_name="subscriptions")
    op.drop_index("ix_subscriptions_plan", table_name="subscriptions")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_index("ix_subscriptions_id", table_name="subscriptions")
    op.drop_table("subscriptions")

    op.drop_index("ix_profiles_email", table_name="profiles")
    op.drop_index("ix_profiles_id", table_name="profiles")
    op.drop_table("profiles")
