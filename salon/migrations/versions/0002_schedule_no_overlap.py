"""Add exclusion constraint preventing overlapping blocks per master

Revision ID: 0002_schedule_no_overlap
Revises: 0001_initial_schema
Create Date: 2026-01-12 10:30:00

Guarded, PostgreSQL only: installs `btree_gist`, audits overlapping blocks
already in `schedule` (writing them to `schedule_overlap_audit`) and only adds
the constraint when none are found. Salon-wide blocks (`master_id IS NULL`)
and rows with `is_blocked = false` are outside the constraint.
"""
from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "0002_schedule_no_overlap"
down_revision = "0001_initial_schema"
branch_labels = None
depends_on = None

_OVERLAP_JOIN = """
    FROM schedule s1
    JOIN schedule s2 ON s1.master_id = s2.master_id AND s1.date = s2.date AND s1.id < s2.id
    WHERE s1.is_blocked AND s2.is_blocked
      AND s1.time_start < s2.time_end AND s2.time_start < s1.time_end
"""


def upgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name != "postgresql":
        return

    conn.execute(sa.text("CREATE EXTENSION IF NOT EXISTS btree_gist;"))
    conn.execute(
        sa.text(
            """
            CREATE TABLE IF NOT EXISTS schedule_overlap_audit (
                block_a integer,
                block_b integer,
                master_id integer,
                date date,
                inserted_at timestamptz DEFAULT now()
            );
            """
        )
    )

    conflict = conn.execute(sa.text("SELECT 1" + _OVERLAP_JOIN + " LIMIT 1;")).first()
    if conflict:
        conn.execute(
            sa.text(
                "INSERT INTO schedule_overlap_audit(block_a, block_b, master_id, date) "
                "SELECT s1.id, s2.id, s1.master_id, s1.date" + _OVERLAP_JOIN + ";"
            )
        )
        raise RuntimeError(
            "Found overlapping schedule blocks; audit written to schedule_overlap_audit. "
            "Resolve overlaps before re-running this migration."
        )

    exists = conn.execute(
        sa.text("SELECT 1 FROM pg_constraint WHERE conname = 'no_overlap_schedule_master_excl'")
    ).first()
    if not exists:
        conn.execute(
            sa.text(
                "ALTER TABLE schedule ADD CONSTRAINT no_overlap_schedule_master_excl "
                "EXCLUDE USING gist (master_id WITH =, tsrange(date + time_start, date + time_end) WITH &&) "
                "WHERE (master_id IS NOT NULL AND is_blocked);"
            )
        )


def downgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name != "postgresql":
        return
    conn.execute(sa.text("ALTER TABLE schedule DROP CONSTRAINT IF EXISTS no_overlap_schedule_master_excl;"))
