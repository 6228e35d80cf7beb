"""Initial lottery back-office schema

Revision ID: 20261016_lottery_initial
Revises:
Create Date: 2026-10-16

Tenancy (organizations, stores, users), shifts, the lottery pack
lifecycle tables, day-close staging and the audit log.
"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261016_lottery_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        "organizations",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_organizations_code", "organizations", ["code"], unique=True)
    op.create_index("ix_organizations_is_active", "organizations", ["is_active"])

    op.create_table(
        "stores",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=32), nullable=True),
        sa.Column("timezone", sa.String(length=64), nullable=False, server_default="UTC"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("org_id", "name", name="uq_stores_org_name"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_stores_org_id", "stores", ["org_id"])
    op.create_index("ix_stores_code", "stores", ["code"])

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("org_id", sa.Integer(), sa.ForeignKey("organizations.id"), nullable=False),
        sa.Column("username", sa.String(length=64), nullable=False),
        sa.Column("display_name", sa.String(length=128), nullable=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("org_id", "username", name="uq_users_org_username"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_users_org_id", "users", ["org_id"])
    op.create_index("ix_users_username", "users", ["username"])

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("cashier_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="OPEN"),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_shifts_store_status", "shifts", ["store_id", "status"])
    op.create_index("ix_shifts_cashier_id", "shifts", ["cashier_id"])
    op.create_index("ix_shifts_opened_at", "shifts", ["opened_at"])

    op.create_table(
        "lottery_games",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=True),
        sa.Column("game_code", sa.String(length=4), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("price_cents", sa.Integer(), nullable=False),
        sa.Column("tickets_per_pack", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("store_id", "game_code", name="uq_lottery_games_store_code"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_lottery_games_code", "lottery_games", ["game_code"])
    op.create_index("ix_lottery_games_store_id", "lottery_games", ["store_id"])

    op.create_table(
        "lottery_bins",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("name", sa.String(length=128), nullable=False),
        sa.Column("location", sa.String(length=128), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_lottery_bins_store_order", "lottery_bins", ["store_id", "display_order"])
    op.create_index("ix_lottery_bins_is_active", "lottery_bins", ["is_active"])

    op.create_table(
        "lottery_packs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("game_id", sa.Integer(), sa.ForeignKey("lottery_games.id"), nullable=False),
        sa.Column("pack_number", sa.String(length=7), nullable=False),
        sa.Column("serial_start", sa.String(length=3), nullable=False, server_default="000"),
        sa.Column("serial_end", sa.String(length=3), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="RECEIVED"),
        sa.Column("current_bin_id", sa.Integer(), sa.ForeignKey("lottery_bins.id"), nullable=True),
        sa.Column("received_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("received_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("activated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("activated_shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("depleted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("depleted_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("depleted_shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("depletion_reason", sa.String(length=32), nullable=True),
        sa.Column("returned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("returned_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("returned_shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("return_reason", sa.String(length=32), nullable=True),
        sa.Column("return_notes", sa.String(length=500), nullable=True),
        sa.Column("last_sold_serial", sa.String(length=3), nullable=True),
        sa.Column("tickets_sold_on_return", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("store_id", "game_id", "pack_number", name="uq_lottery_packs_store_game_number"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_lottery_packs_store_status", "lottery_packs", ["store_id", "status"])
    op.create_index("ix_lottery_packs_current_bin", "lottery_packs", ["current_bin_id"])
    op.create_index("ix_lottery_packs_game_id", "lottery_packs", ["game_id"])

    op.create_table(
        "lottery_pack_bin_history",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("pack_id", sa.Integer(), sa.ForeignKey("lottery_packs.id"), nullable=False),
        sa.Column("bin_id", sa.Integer(), sa.ForeignKey("lottery_bins.id"), nullable=False),
        sa.Column("previous_bin_id", sa.Integer(), sa.ForeignKey("lottery_bins.id"), nullable=True),
        sa.Column("action", sa.String(length=16), nullable=False),
        sa.Column("moved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_lottery_bin_history_pack_occurred", "lottery_pack_bin_history", ["pack_id", "occurred_at"])
    op.create_index("ix_lottery_pack_bin_history_bin_id", "lottery_pack_bin_history", ["bin_id"])

    op.create_table(
        "lottery_shift_openings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=False),
        sa.Column("pack_id", sa.Integer(), sa.ForeignKey("lottery_packs.id"), nullable=False),
        sa.Column("bin_id", sa.Integer(), sa.ForeignKey("lottery_bins.id"), nullable=True),
        sa.Column("opening_serial", sa.String(length=3), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("shift_id", "pack_id", name="uq_lottery_shift_openings_shift_pack"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "lottery_business_days",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("business_date", sa.Date(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="OPEN"),
        sa.Column("opened_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("closed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("store_id", "business_date", name="uq_lottery_business_days_store_date"),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_lottery_business_days_status", "lottery_business_days", ["status"])

    op.create_table(
        "lottery_day_close_stagings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("day_id", sa.Integer(), sa.ForeignKey("lottery_business_days.id"), nullable=False),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="PENDING"),
        sa.Column("closings", sa.JSON(), nullable=False),
        sa.Column("initiated_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("manual_entry_authorized_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("current_shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("prepared_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_lottery_day_close_stagings_day_status", "lottery_day_close_stagings", ["day_id", "status"])
    op.create_index("ix_lottery_day_close_stagings_expires_at", "lottery_day_close_stagings", ["expires_at"])

    op.create_table(
        "lottery_shift_closings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("day_id", sa.Integer(), sa.ForeignKey("lottery_business_days.id"), nullable=True),
        sa.Column("pack_id", sa.Integer(), sa.ForeignKey("lottery_packs.id"), nullable=False),
        sa.Column("bin_id", sa.Integer(), sa.ForeignKey("lottery_bins.id"), nullable=True),
        sa.Column("opening_serial", sa.String(length=3), nullable=False),
        sa.Column("closing_serial", sa.String(length=3), nullable=False),
        sa.Column("tickets_sold", sa.Integer(), nullable=False),
        sa.Column("sales_amount_cents", sa.Integer(), nullable=False),
        sa.Column("entry_method", sa.String(length=16), nullable=False),
        sa.Column("closed_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("manual_entry_authorized_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("manual_entry_authorized_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint("shift_id", "pack_id", name="uq_lottery_shift_closings_shift_pack"),
        sa.UniqueConstraint("day_id", "pack_id", name="uq_lottery_shift_closings_day_pack"),
        sqlite_autoincrement=True,
    )

    op.create_table(
        "lottery_variances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=False),
        sa.Column("shift_id", sa.Integer(), sa.ForeignKey("shifts.id"), nullable=True),
        sa.Column("day_id", sa.Integer(), sa.ForeignKey("lottery_business_days.id"), nullable=True),
        sa.Column("pack_id", sa.Integer(), sa.ForeignKey("lottery_packs.id"), nullable=False),
        sa.Column("expected_qty", sa.Integer(), nullable=False),
        sa.Column("actual_qty", sa.Integer(), nullable=False),
        sa.Column("difference", sa.Integer(), nullable=False),
        sa.Column("dollar_variance_cents", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="UNRESOLVED"),
        sa.Column("approved_by_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approval_notes", sa.String(length=500), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_lottery_variances_store_status", "lottery_variances", ["store_id", "status"])

    op.create_table(
        "audit_log_entries",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("store_id", sa.Integer(), sa.ForeignKey("stores.id"), nullable=True),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.Integer(), nullable=True),
        sa.Column("actor_user_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=True),
        sa.Column("old_values", sa.JSON(), nullable=True),
        sa.Column("new_values", sa.JSON(), nullable=True),
        sa.Column("reason", sa.String(length=500), nullable=True),
        sa.Column("occurred_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sqlite_autoincrement=True,
    )
    op.create_index("ix_audit_log_store_occurred", "audit_log_entries", ["store_id", "occurred_at"])
    op.create_index("ix_audit_log_entity", "audit_log_entries", ["entity_type", "entity_id"])
    op.create_index("ix_audit_log_entries_action", "audit_log_entries", ["action"])


def downgrade():
    op.drop_table("audit_log_entries")
    op.drop_table("lottery_variances")
    op.drop_table("lottery_shift_closings")
    op.drop_table("lottery_day_close_stagings")
    op.drop_table("lottery_business_days")
    op.drop_table("lottery_shift_openings")
    op.drop_table("lottery_pack_bin_history")
    op.drop_table("lottery_packs")
    op.drop_table("lottery_bins")
    op.drop_table("lottery_games")
    op.drop_table("shifts")
    op.drop_table("users")
    op.drop_table("stores")
    op.drop_table("organizations")
