"""Network models — branches, branch server directory, connection health log."""

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, Column, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship

from ..database import UTCDateTime
from .base import Base


class Branch(Base):
    __tablename__ = "branches"
    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    code = Column(String(50), nullable=False, unique=True)
    is_active = Column(Boolean, nullable=False, default=True)


class BranchServer(Base):
    """Where a branch node lives and how to reach it.

    Owned by the network admin screens; the sync core only reads it and
    writes back status, last_ping, response_time_ms and server_info.
    """

    __tablename__ = "branch_servers"
    id = Column(Integer, primary_key=True)
    branch_id = Column(String(64), ForeignKey("branches.id", ondelete="CASCADE"), nullable=False)
    server_name = Column(String(255), nullable=False)
    ip_address = Column(String(64), nullable=False)
    api_port = Column(Integer, nullable=False, default=3000)
    vpn_ip_address = Column(String(64))
    public_ip_address = Column(String(64))
    network_type = Column(String(20), nullable=False, default="lan")
    status = Column(String(20), nullable=False, default="offline")
    last_ping = Column(UTCDateTime)
    response_time_ms = Column(Integer)
    server_info = Column(JSON)
    outbound_api_key = Column(String(255))
    api_key = Column(String(255), unique=True)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(
        UTCDateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    branch = relationship("Branch")

    __table_args__ = (Index("ix_branch_servers_branch", "branch_id", "is_active"),)


class ConnectionHealthLog(Base):
    """Append-only record of one dispatch attempt."""

    __tablename__ = "connection_health_logs"
    id = Column(Integer, primary_key=True)
    source_type = Column(String(20), nullable=False)
    source_id = Column(String(100), nullable=False)
    target_type = Column(String(20), nullable=False)
    target_id = Column(String(100), nullable=False)
    connection_status = Column(String(20), nullable=False)
    response_time_ms = Column(Integer)
    error_message = Column(Text)
    checked_at = Column(UTCDateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (Index("ix_health_target_time", "target_id", "checked_at"),)
