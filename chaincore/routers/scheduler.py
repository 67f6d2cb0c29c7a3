"""Scheduler API — task registry, manual runs, run history, start/stop."""

import logging

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_scheduler
from ..exceptions import TaskNotFound
from ..scheduler import SyncScheduler
from ..schemas.sync import SchedulerStatus, SyncHistoryEntry, SyncResult, SyncTask, TaskCreate

router = APIRouter(tags=["scheduler"])
log = logging.getLogger(__name__)


@router.get("/api/sync/scheduler/status", response_model=SchedulerStatus)
def api_scheduler_status(scheduler: SyncScheduler = Depends(get_scheduler)):
    return scheduler.get_status()


@router.get("/api/sync/scheduler/tasks", response_model=list[SyncTask])
def api_list_tasks(scheduler: SyncScheduler = Depends(get_scheduler)):
    return scheduler.get_tasks()


@router.post("/api/sync/scheduler/tasks", status_code=201)
async def api_add_task(body: TaskCreate, scheduler: SyncScheduler = Depends(get_scheduler)):
    task_id = scheduler.add_task(body)
    return {"task_id": task_id, "task": scheduler.get_task(task_id)}


@router.get("/api/sync/scheduler/tasks/{task_id}", response_model=SyncTask)
def api_get_task(task_id: str, scheduler: SyncScheduler = Depends(get_scheduler)):
    task = scheduler.get_task(task_id)
    if task is None:
        raise TaskNotFound(task_id)
    return task


@router.delete("/api/sync/scheduler/tasks/{task_id}")
async def api_remove_task(task_id: str, scheduler: SyncScheduler = Depends(get_scheduler)):
    if not scheduler.remove_task(task_id):
        raise TaskNotFound(task_id)
    return {"ok": True, "task_id": task_id}


@router.post("/api/sync/scheduler/tasks/{task_id}/run", response_model=SyncResult)
async def api_run_task(task_id: str, scheduler: SyncScheduler = Depends(get_scheduler)):
    return await scheduler.run_task_now(task_id)


@router.get("/api/sync/scheduler/tasks/{task_id}/history", response_model=list[SyncHistoryEntry])
def api_task_history(
    task_id: str,
    limit: int = Query(10, ge=1, le=100),
    scheduler: SyncScheduler = Depends(get_scheduler),
):
    if scheduler.get_task(task_id) is None:
        raise TaskNotFound(task_id)
    return scheduler.get_task_history(task_id, limit)


@router.get("/api/sync/scheduler/tasks/{task_id}/last-result")
async def api_last_result(task_id: str, scheduler: SyncScheduler = Depends(get_scheduler)):
    if scheduler.get_task(task_id) is None:
        raise TaskNotFound(task_id)
    return {"task_id": task_id, "result": await scheduler.get_last_result(task_id)}


@router.post("/api/sync/scheduler/start", response_model=SchedulerStatus)
async def api_start_scheduler(scheduler: SyncScheduler = Depends(get_scheduler)):
    await scheduler.start()
    return scheduler.get_status()


@router.post("/api/sync/scheduler/stop", response_model=SchedulerStatus)
async def api_stop_scheduler(scheduler: SyncScheduler = Depends(get_scheduler)):
    scheduler.stop()
    return scheduler.get_status()
