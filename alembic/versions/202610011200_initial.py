"""entry series, occurrence overrides and starting balances

Revision ID: 202610011200
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op


revision = "202610011200"
down_revision = None
branch_labels = None
depends_on = None


entry_type = sa.Enum("income", "expense", name="entrytype")
frequency = sa.Enum("daily", "weekly", "monthly", "yearly", name="frequency")
override_kind = sa.Enum("modified", "deleted", name="overridekind")


def upgrade() -> None:
    op.create_table(
        "entry_series",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("entry_type", entry_type, nullable=False),
        sa.Column("title", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("frequency", frequency, nullable=True),
        sa.Column("interval_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("anchor_day", sa.Integer(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint("amount_cents > 0", name="ck_series_amount_positive"),
        sa.CheckConstraint("interval_count > 0", name="ck_series_interval_positive"),
        sa.CheckConstraint(
            "anchor_day BETWEEN 1 AND 31", name="ck_series_anchor_day_range"
        ),
        sa.CheckConstraint(
            "end_date IS NULL OR end_date >= start_date",
            name="ck_series_end_after_start",
        ),
    )
    op.create_index(
        "ix_entry_series_owner_start", "entry_series", ["owner_id", "start_date"]
    )

    op.create_table(
        "occurrence_overrides",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "series_id",
            sa.Integer(),
            sa.ForeignKey("entry_series.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("occurrence_date", sa.Date(), nullable=False),
        sa.Column("kind", override_kind, nullable=False),
        sa.Column("title", sa.String(length=120), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("amount_cents", sa.Integer(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint(
            "series_id", "occurrence_date", name="uq_override_series_date"
        ),
        sa.CheckConstraint(
            "amount_cents IS NULL OR amount_cents > 0",
            name="ck_override_amount_positive",
        ),
    )

    op.create_table(
        "starting_balances",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("owner_id", sa.Integer(), nullable=False, unique=True),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("amount_cents", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.CheckConstraint(
            "amount_cents >= 0", name="ck_starting_balance_non_negative"
        ),
    )


def downgrade() -> None:
    op.drop_table("starting_balances")
    op.drop_table("occurrence_overrides")
    op.drop_index("ix_entry_series_owner_start", table_name="entry_series")
    op.drop_table("entry_series")
    entry_type.drop(op.get_bind(), checkfirst=True)
    frequency.drop(op.get_bind(), checkfirst=True)
    override_kind.drop(op.get_bind(), checkfirst=True)
