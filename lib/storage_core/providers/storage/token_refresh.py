"""
Proactive token refresh.

Refreshes active connections whose access token expires within a window,
so the next request does not have to pay for a refresh round trip. The lazy
refresh in OAuthStorageProvider stays the primary mechanism; this job only
narrows how often it is needed.
"""

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List

from .factory import StorageProviderFactory
from ...config.constants import DEFAULT_REFRESH_WINDOW_SECONDS
from ...db.credential_store import CredentialStore
from ...db.models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class RefreshStats:
    total: int = 0
    refreshed: int = 0
    failed: int = 0
    errors: List[Dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "refreshed": self.refreshed,
            "failed": self.failed,
            "errors": list(self.errors),
        }


async def refresh_expiring_tokens(
    factory: StorageProviderFactory,
    store: CredentialStore,
    within: timedelta = timedelta(seconds=DEFAULT_REFRESH_WINDOW_SECONDS),
) -> RefreshStats:
    """
    Refresh every active connection expiring before now + within.

    Connections are processed one at a time; a failure is recorded and the
    run continues. refresh_tokens() itself marks failed connections expired
    or error.
    """
    connections = await store.list_expiring(utcnow() + within)
    stats = RefreshStats(total=len(connections))
    logger.info("Found %d connection(s) expiring within %s", stats.total, within)

    for conn in connections:
        try:
            adapter = await factory.get(conn.provider, conn.user_id)
            refreshed = await adapter.refresh_tokens(conn.user_id)
        except Exception as e:
            refreshed = False
            reason = f"{type(e).__name__}: {e}"
        else:
            reason = "refresh rejected"

        if refreshed:
            stats.refreshed += 1
        else:
            stats.failed += 1
            stats.errors.append({"connection_id": conn.id, "error": reason})
            logger.warning("Proactive refresh failed for connection %s (%s): %s",
                           conn.id, conn.provider, reason)

    logger.info("Proactive refresh finished: %d refreshed, %d failed", stats.refreshed, stats.failed)
    return stats
