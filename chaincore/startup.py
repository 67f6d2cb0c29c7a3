"""
startup.py — Database Startup Migrations (Idempotent)

Tables and indexes are defined in the ORM models (models/) and created via
Base.metadata.create_all(checkfirst=True). This file only adds what the ORM
can't express portably: PostgreSQL CHECK constraints on status columns.

Called by: main.py lifespan
Depends on: database.py (engine), models (Base)
"""

import logging
import os

from sqlalchemy import text as sqltext

from .database import engine

log = logging.getLogger(__name__)


def run_startup_migrations() -> None:
    """Execute all idempotent startup operations. Safe to call on every app boot."""
    if os.environ.get("TESTING"):
        log.info("TESTING mode, skipping startup migrations")
        return

    from .models import Base

    Base.metadata.create_all(bind=engine, checkfirst=True)
    log.info("ORM schema sync complete (create_all checkfirst=True)")

    if engine.dialect.name == "postgresql":
        with engine.connect() as conn:
            _add_check_constraints(conn)
    log.info("Startup migrations complete")


def _exec(conn, stmt: str) -> None:
    """Execute a single DDL statement with rollback on failure."""
    try:
        conn.execute(sqltext(stmt))
        conn.commit()
    except Exception as e:
        log.warning("DDL failed: %s", e)
        conn.rollback()


def _add_check_constraints(conn) -> None:
    """Add CHECK constraints (NOT VALID): only new inserts/updates are checked."""
    constraints = [
        # ── sync_tasks ──
        ("sync_tasks", "chk_task_status", "status IN ('idle','running','failed','completed')"),
        ("sync_tasks", "chk_task_schedule", "schedule_type IN ('interval','cron','manual')"),
        ("sync_tasks", "chk_task_interval", "interval_minutes IS NULL OR interval_minutes >= 1"),
        # ── branch_sync_logs ──
        ("branch_sync_logs", "chk_bsl_status", "status IN ('initiated','in_progress','completed','failed')"),
        ("branch_sync_logs", "chk_bsl_direction", "direction IN ('to_branch','from_branch')"),
        # ── branch_servers ──
        ("branch_servers", "chk_server_status", "status IN ('online','offline','maintenance','error')"),
        ("branch_servers", "chk_server_network", "network_type IN ('lan','vpn','public')"),
        # ── connection_health_logs ──
        (
            "connection_health_logs",
            "chk_health_status",
            "connection_status IN ('success','failed','timeout','error')",
        ),
    ]
    for table, name, check in constraints:
        _exec(conn, f"""
            DO $$ BEGIN
                IF NOT EXISTS (
                    SELECT 1 FROM pg_constraint WHERE conname = '{name}'
                ) THEN
                    ALTER TABLE {table} ADD CONSTRAINT {name} CHECK ({check}) NOT VALID;
                END IF;
            END $$;
        """)
