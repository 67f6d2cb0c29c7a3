"""
services/health_service.py — Branch health push, health read, and ping

Branches report their own health; chain-core stores the latest snapshot on
the branch_servers row. Reads flag snapshots that have gone quiet, but
nothing here flips a server offline on its own.

Called by: routers/branch_sync.py
Depends on: models.network, config
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from ..config import Settings
from ..models import BranchServer
from ..schemas.protocol import HealthReport, HealthSnapshot, PongOut

log = logging.getLogger(__name__)


def report_health(db: Session, server: BranchServer, report: HealthReport) -> BranchServer:
    info = dict(report.system_info or {})
    if report.network_info is not None:
        info["network_info"] = report.network_info
    server.status = report.status.value
    server.server_info = info
    server.last_ping = datetime.now(timezone.utc)
    db.commit()
    if report.status.value != "online":
        log.info(f"Branch {server.branch_id} ({server.server_name}) reports {report.status.value}")
    return server


def is_stale(server: BranchServer, settings: Settings, now: datetime | None = None) -> bool:
    if server.last_ping is None:
        return True
    now = now or datetime.now(timezone.utc)
    return (now - server.last_ping).total_seconds() > settings.health_stale_after_seconds


def latest_health(server: BranchServer, settings: Settings) -> HealthSnapshot:
    info = dict(server.server_info or {})
    network = info.pop("network_info", None) or {}
    network.setdefault("last_ping", server.last_ping.isoformat() if server.last_ping else None)
    network.setdefault("connection_status", server.status)
    return HealthSnapshot(
        branch_id=server.branch_id,
        server_name=server.server_name,
        status=server.status or "unknown",
        last_update=server.last_ping,
        stale=is_stale(server, settings),
        system_info=info,
        network_info=network,
    )


def ping(db: Session, server: BranchServer, sequence: int = 1, sent_at: datetime | None = None) -> PongOut:
    received = datetime.now(timezone.utc)
    server.last_ping = received
    server.status = "online"
    db.commit()
    now = datetime.now(timezone.utc)
    if sent_at is not None:
        if sent_at.tzinfo is None:
            sent_at = sent_at.replace(tzinfo=timezone.utc)
        round_trip = max(0, int((now - sent_at).total_seconds() * 1000))
    else:
        round_trip = int((now - received).total_seconds() * 1000)
    return PongOut(server_time=now, sequence=sequence, round_trip_ms=round_trip)
