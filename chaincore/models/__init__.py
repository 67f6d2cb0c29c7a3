"""Database models — re-exports all models.

Import from here:  from chaincore.models import SyncTaskRecord, BranchServer, ...
Or from submodules: from chaincore.models.network import BranchServer
"""

from .base import Base  # noqa: F401

# Scheduler tasks, run history, branch sync sessions
from .sync import BranchSyncLog, SyncHistory, SyncTaskRecord  # noqa: F401

# Branch directory & connection health
from .network import Branch, BranchServer, ConnectionHealthLog  # noqa: F401

# Catalog rows read by the entity handlers
from .catalog import BranchInventory, Employee, Product, Transaction  # noqa: F401
