"""
test_health_service.py — Tests for services/health_service.py

Called by: pytest
Depends on: conftest (online_server, test_settings)
"""

from datetime import datetime, timedelta, timezone

from chaincore.models import BranchServer
from chaincore.schemas.protocol import BranchHealthStatus, HealthReport
from chaincore.services.health_service import is_stale, latest_health, ping, report_health


def test_report_stores_snapshot(db_session, online_server, test_settings):
    report = HealthReport(
        status=BranchHealthStatus.MAINTENANCE,
        system_info={"cpu": 12, "disk_free_gb": 40},
        network_info={"latency_ms": 8},
    )
    report_health(db_session, online_server, report)

    db_session.expire_all()
    server = db_session.get(BranchServer, online_server.id)
    assert server.status == "maintenance"
    assert server.server_info == {"cpu": 12, "disk_free_gb": 40, "network_info": {"latency_ms": 8}}

    snap = latest_health(server, test_settings)
    assert snap.status == "maintenance"
    assert snap.system_info == {"cpu": 12, "disk_free_gb": 40}
    assert snap.network_info["latency_ms"] == 8
    assert snap.network_info["connection_status"] == "maintenance"
    assert snap.stale is False


def test_stale_after_threshold(online_server, test_settings):
    now = datetime.now(timezone.utc)
    online_server.last_ping = now - timedelta(seconds=test_settings.health_stale_after_seconds + 1)
    assert is_stale(online_server, test_settings, now=now) is True
    online_server.last_ping = now - timedelta(seconds=10)
    assert is_stale(online_server, test_settings, now=now) is False


def test_never_pinged_is_stale(test_settings):
    server = BranchServer(branch_id="b9", server_name="new", status="offline")
    snap = latest_health(server, test_settings)
    assert snap.stale is True
    assert snap.last_update is None
    assert snap.network_info["last_ping"] is None


def test_stale_does_not_change_status(online_server, test_settings):
    online_server.last_ping = datetime.now(timezone.utc) - timedelta(days=1)
    snap = latest_health(online_server, test_settings)
    assert snap.stale is True
    assert snap.status == "online"


def test_ping_marks_online(db_session, test_branch):
    server = BranchServer(branch_id="b1", server_name="pos", ip_address="10.0.0.7", status="offline")
    db_session.add(server)
    db_session.commit()

    pong = ping(db_session, server, sequence=7)

    assert pong.pong is True
    assert pong.sequence == 7
    assert pong.round_trip_ms >= 0
    db_session.expire_all()
    refreshed = db_session.get(BranchServer, server.id)
    assert refreshed.status == "online"
    assert refreshed.last_ping is not None


def test_ping_round_trip_from_client_timestamp(db_session, online_server):
    sent = datetime.now(timezone.utc) - timedelta(milliseconds=250)
    pong = ping(db_session, online_server, sent_at=sent)
    assert pong.round_trip_ms >= 250


def test_ping_naive_timestamp_treated_as_utc(db_session, online_server):
    sent = datetime.now(timezone.utc).replace(tzinfo=None) - timedelta(seconds=1)
    pong = ping(db_session, online_server, sent_at=sent)
    assert 1000 <= pong.round_trip_ms < 60000


def test_future_client_timestamp_clamps_to_zero(db_session, online_server):
    pong = ping(db_session, online_server, sent_at=datetime.now(timezone.utc) + timedelta(minutes=5))
    assert pong.round_trip_ms == 0
