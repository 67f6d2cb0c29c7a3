"""
services/branch_dispatcher.py — Authenticated HTTP calls from chain-core to branch nodes

Looks up the branch server directory, picks the reachable address, sends one
timeout-bounded request and records the attempt in connection_health_logs.

Business Rules:
- Every call returns a BranchResponse; nothing here raises to the caller
  (sync_to_branches is the one exception: no online branch at all is a 404)
- Server pick: active row for the branch, online first, then latest last_ping
- Non-online servers are refused with 503 unless the endpoint is "health",
  so an operator can still probe a server marked offline
- Address precedence: VPN, then public, then LAN ip
- One health-log row per attempted call (success|failed|timeout|error);
  pre-flight refusals (404/503) attempt nothing and log nothing
- Any HTTP response refreshes the server's response_time_ms and last_ping
- Bookkeeping writes are best-effort: logged and swallowed

Called by: scheduler.py (via sync_handlers), routers/network.py
Depends on: httpx, models.network, config
"""

import asyncio
import logging
import time
from datetime import datetime, timezone

import httpx
from sqlalchemy import case

from ..config import Settings, settings as default_settings
from ..exceptions import BranchServerNotFound, BranchUnavailable, SyncCoreError, UnknownSyncType
from ..models import BranchServer, ConnectionHealthLog
from ..schemas.network import BranchRequest, BranchResponse, BranchSyncType

log = logging.getLogger(__name__)

USER_AGENT = "chain-core/1.0"

SYNC_ENDPOINTS: dict[BranchSyncType, str] = {
    BranchSyncType.PRODUCTS: "chain-core/products/sync",
    BranchSyncType.EMPLOYEES: "chain-core/employees",
    BranchSyncType.INVENTORY: "chain-core/inventory",
    BranchSyncType.PRICES: "chain-core/products/prices",
}

_STATUS_MESSAGES = {
    "offline": "Branch server is currently offline",
    "error": "Branch server is in an error state",
    "maintenance": "Branch server is under maintenance",
    "unknown": "Branch server status is unknown",
}


def server_address(server: BranchServer) -> str:
    if server.network_type == "vpn" and server.vpn_ip_address:
        return server.vpn_ip_address
    if server.network_type == "public" and server.public_ip_address:
        return server.public_ip_address
    return server.ip_address


def build_url(server: BranchServer, endpoint: str) -> str:
    return f"http://{server_address(server)}:{server.api_port}/api/{endpoint.lstrip('/')}"


def build_headers(server: BranchServer) -> dict[str, str]:
    headers = {"Content-Type": "application/json", "User-Agent": USER_AGENT}
    if server.outbound_api_key:
        headers["Authorization"] = f"Bearer {server.outbound_api_key}"
        headers["X-API-Key"] = server.outbound_api_key
    return headers


def _failure(branch_id: str, err: SyncCoreError, server_id: int | None = None) -> BranchResponse:
    return BranchResponse(
        success=False,
        status=err.status_code,
        branch_id=branch_id,
        error=err.message,
        error_code=type(err).__name__,
        server_id=server_id,
    )


def _parse_body(resp: httpx.Response):
    if "application/json" in resp.headers.get("content-type", ""):
        try:
            return resp.json()
        except ValueError:
            return resp.text
    return resp.text


class BranchDispatcher:
    def __init__(self, client: httpx.AsyncClient, session_factory, settings: Settings | None = None):
        self._client = client
        self._session_factory = session_factory
        self._settings = settings or default_settings

    # ── Directory ───────────────────────────────────────────────────────

    def _lookup_server(self, branch_id: str) -> BranchServer | None:
        db = self._session_factory()
        try:
            return (
                db.query(BranchServer)
                .filter(BranchServer.branch_id == branch_id, BranchServer.is_active.is_(True))
                .order_by(
                    case((BranchServer.status == "online", 0), else_=1),
                    BranchServer.last_ping.desc().nulls_last(),
                )
                .first()
            )
        finally:
            db.close()

    def online_branch_ids(self, branch_ids: list[str] | None = None) -> list[str]:
        """Distinct branch ids with an active, online server, in id order."""
        db = self._session_factory()
        try:
            q = db.query(BranchServer.branch_id).filter(
                BranchServer.is_active.is_(True), BranchServer.status == "online"
            )
            if branch_ids:
                q = q.filter(BranchServer.branch_id.in_(branch_ids))
            return [row[0] for row in q.distinct().order_by(BranchServer.branch_id).all()]
        finally:
            db.close()

    # ── Bookkeeping ─────────────────────────────────────────────────────

    def _record_attempt(
        self,
        server: BranchServer,
        branch_id: str,
        outcome: str,
        response_time_ms: int | None = None,
        error: str | None = None,
        responded: bool = False,
    ) -> None:
        db = self._session_factory()
        try:
            if responded:
                db.query(BranchServer).filter(BranchServer.id == server.id).update(
                    {
                        BranchServer.response_time_ms: response_time_ms,
                        BranchServer.last_ping: datetime.now(timezone.utc),
                    },
                    synchronize_session=False,
                )
            db.add(
                ConnectionHealthLog(
                    source_type="chain_core",
                    source_id=self._settings.node_id,
                    target_type="branch_core",
                    target_id=branch_id,
                    connection_status=outcome,
                    response_time_ms=response_time_ms,
                    error_message=error,
                )
            )
            db.commit()
        except Exception as e:
            db.rollback()
            log.warning(f"Health log write failed for branch {branch_id}: {e}")
        finally:
            db.close()

    # ── Calls ───────────────────────────────────────────────────────────

    async def make_request(
        self,
        branch_id: str,
        endpoint: str,
        method: str = "GET",
        data=None,
        timeout_ms: int | None = None,
    ) -> BranchResponse:
        try:
            server = self._lookup_server(branch_id)
        except Exception as e:
            log.error(f"Branch server lookup failed for {branch_id}: {e}")
            return BranchResponse(
                success=False, status=0, branch_id=branch_id, error=str(e), error_code="LookupError"
            )

        if server is None:
            return _failure(branch_id, BranchServerNotFound("Branch server configuration not found"))

        if server.status != "online" and endpoint.strip("/") != "health":
            message = _STATUS_MESSAGES.get(server.status, f"Branch server status is '{server.status}'")
            return _failure(branch_id, BranchUnavailable(message), server.id)

        method = method.upper()
        url = build_url(server, endpoint)
        timeout_s = (timeout_ms or self._settings.branch_request_timeout_ms) / 1000
        kwargs = {"headers": build_headers(server), "timeout": timeout_s}
        if data is not None and method != "GET":
            kwargs["json"] = data

        started = time.monotonic()
        try:
            resp = await asyncio.wait_for(self._client.request(method, url, **kwargs), timeout=timeout_s)
        except (asyncio.TimeoutError, httpx.TimeoutException):
            elapsed = int((time.monotonic() - started) * 1000)
            error = f"Request timed out after {int(timeout_s * 1000)}ms"
            log.warning(f"Branch {branch_id} {method} {endpoint}: {error}")
            self._record_attempt(server, branch_id, "timeout", elapsed, error)
            return BranchResponse(
                success=False,
                status=0,
                branch_id=branch_id,
                error=error,
                error_code="Timeout",
                server_id=server.id,
                response_time_ms=elapsed,
            )
        except httpx.HTTPError as e:
            error = str(e) or type(e).__name__
            log.warning(f"Branch {branch_id} {method} {endpoint} failed: {error}")
            self._record_attempt(server, branch_id, "error", error=error)
            return BranchResponse(
                success=False,
                status=0,
                branch_id=branch_id,
                error=error,
                error_code="NetworkError",
                server_id=server.id,
            )

        elapsed = int((time.monotonic() - started) * 1000)
        body = _parse_body(resp)
        ok = resp.is_success
        error = None if ok else f"HTTP {resp.status_code}: {resp.reason_phrase}"
        self._record_attempt(
            server, branch_id, "success" if ok else "failed", elapsed, error, responded=True
        )
        if not ok:
            log.info(f"Branch {branch_id} {method} {endpoint} -> {error}")
        return BranchResponse(
            success=ok,
            status=resp.status_code,
            branch_id=branch_id,
            data=body,
            error=error,
            error_code=None if ok else "HttpError",
            server_id=server.id,
            response_time_ms=elapsed,
        )

    async def make_multi_request(self, requests: list[BranchRequest]) -> list[BranchResponse]:
        """Send every request concurrently; results come back in input order."""
        outcomes = await asyncio.gather(
            *(
                self.make_request(r.branch_id, r.endpoint, r.method, r.data, r.timeout_ms)
                for r in requests
            ),
            return_exceptions=True,
        )
        results = []
        for req, out in zip(requests, outcomes):
            if isinstance(out, BaseException):
                log.error(f"Unexpected dispatcher error for {req.branch_id}: {out}")
                out = BranchResponse(
                    success=False,
                    status=0,
                    branch_id=req.branch_id,
                    error=str(out),
                    error_code=type(out).__name__,
                )
            results.append(out)
        return results

    async def sync_to_branch(self, branch_id: str, sync_type, payload) -> BranchResponse:
        try:
            endpoint = SYNC_ENDPOINTS[BranchSyncType(sync_type)]
        except ValueError:
            label = getattr(sync_type, "value", sync_type)
            return _failure(branch_id, UnknownSyncType(f"Unknown sync type: {label}"))
        return await self.make_request(
            branch_id, endpoint, "POST", payload, self._settings.branch_sync_timeout_ms
        )

    async def sync_to_branches(self, sync_type, payload, branch_ids: list[str] | None = None) -> dict:
        """Push one payload to every online branch (or the listed ones).

        Raises BranchServerNotFound when no online branch matches.
        """
        targets = self.online_branch_ids(branch_ids)
        if not targets:
            raise BranchServerNotFound("No online branches found")
        results = await asyncio.gather(*(self.sync_to_branch(b, sync_type, payload) for b in targets))
        successful = sum(1 for r in results if r.success)
        return {
            "total": len(results),
            "successful": successful,
            "failed": len(results) - successful,
            "results": results,
        }

    async def test_connection(self, branch_id: str) -> BranchResponse:
        return await self.make_request(
            branch_id, "health", "GET", timeout_ms=self._settings.branch_probe_timeout_ms
        )

    async def get_branch_status(self, branch_id: str) -> BranchResponse:
        return await self.make_request(
            branch_id, "chain-core/status", "GET", timeout_ms=self._settings.branch_probe_timeout_ms
        )

    def recent_health_logs(self, limit: int = 50, target_id: str | None = None) -> list[ConnectionHealthLog]:
        db = self._session_factory()
        try:
            q = db.query(ConnectionHealthLog)
            if target_id:
                q = q.filter(ConnectionHealthLog.target_id == target_id)
            return (
                q.order_by(ConnectionHealthLog.checked_at.desc(), ConnectionHealthLog.id.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()
