"""Sync-core error taxonomy.

Every error carries the HTTP status the routers answer with. The exception
handlers in main.py render them as ErrorResponse bodies, so routers raise
these directly instead of building HTTPExceptions.

BranchDispatcher never raises: it converts BranchServerNotFound,
BranchUnavailable and UnknownSyncType into a failed BranchResponse carrying
the error's status_code and class name.
"""


class SyncCoreError(Exception):
    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class TaskNotFound(SyncCoreError):
    status_code = 404

    def __init__(self, task_id: str):
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class InvalidTaskSpec(SyncCoreError):
    status_code = 400


class BranchServerNotFound(SyncCoreError):
    status_code = 404


class BranchUnavailable(SyncCoreError):
    status_code = 503


class UnknownSyncType(SyncCoreError):
    status_code = 400


class SyncNotFound(SyncCoreError):
    status_code = 404

    def __init__(self, sync_id: str):
        super().__init__("Sync record not found")
        self.sync_id = sync_id


class InvalidSyncTransition(SyncCoreError):
    status_code = 409


class BranchPushFailed(SyncCoreError):
    status_code = 502


class UnsupportedEntity(SyncCoreError):
    status_code = 400


class OutboundSyncDisabled(SyncCoreError):
    status_code = 405
