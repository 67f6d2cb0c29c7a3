"""CHECK constraints on sync status columns

Revision ID: 002_status_checks
Revises: 001_initial
Create Date: 2026-10-18
"""
from typing import Sequence, Union

from alembic import op

revision: str = "002_status_checks"
down_revision: Union[str, None] = "001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_CHECKS = [
    ("sync_tasks", "chk_task_status", "status IN ('idle','running','failed','completed')"),
    ("branch_sync_logs", "chk_bsl_status", "status IN ('initiated','in_progress','completed','failed')"),
    (
        "connection_health_logs",
        "chk_health_status",
        "connection_status IN ('success','failed','timeout','error')",
    ),
]


def upgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    # Startup may already have added these
    for table, name, check in _CHECKS:
        op.execute(f"""
            DO $$ BEGIN
                IF NOT EXISTS (SELECT 1 FROM pg_constraint WHERE conname = '{name}') THEN
                    ALTER TABLE {table} ADD CONSTRAINT {name} CHECK ({check}) NOT VALID;
                END IF;
            END $$;
        """)


def downgrade() -> None:
    if op.get_bind().dialect.name != "postgresql":
        return
    for table, name, _ in reversed(_CHECKS):
        op.drop_constraint(name, table, type_="check")
