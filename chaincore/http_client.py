"""http_client.py — Pooled httpx client for branch node calls

branch_http is the AsyncClient the app-wide BranchDispatcher sends through.
The dispatcher bounds each call itself with asyncio.wait_for, so the
client-level timeout is only a backstop.

Business Rules:
- Redirects are not followed; a redirecting branch counts as a failed call
- Pool sized for a sync fan-out across every branch at once

Called by: chaincore.main (lifespan builds the BranchDispatcher on it)
Depends on: httpx
"""

import httpx

_LIMITS = httpx.Limits(
    max_connections=100,
    max_keepalive_connections=20,
    keepalive_expiry=30,
)

branch_http = httpx.AsyncClient(
    timeout=30,
    limits=_LIMITS,
    follow_redirects=False,
)


async def close_clients():
    """Shut down the shared client. Call from app lifespan shutdown."""
    try:
        await branch_http.aclose()
    except RuntimeError:
        pass
