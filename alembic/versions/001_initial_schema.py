"""initial schema - sync core tables

Revision ID: 001_initial
Revises: None
Create Date: 2026-10-18

Creates sync_tasks, sync_history, branch_sync_logs, branches, branch_servers,
connection_health_logs and the catalog tables the sync handlers read.
For databases that already carry the branch directory and catalog tables,
create_all(checkfirst=True) only adds what is missing.
"""
from typing import Sequence, Union

from alembic import op

revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create all tables from SQLAlchemy models (idempotent)."""
    from chaincore.models import Base

    Base.metadata.create_all(bind=op.get_bind(), checkfirst=True)


def downgrade() -> None:
    """Drop all tables. DESTRUCTIVE, only for dev/test environments."""
    from chaincore.models import Base

    Base.metadata.drop_all(bind=op.get_bind())
