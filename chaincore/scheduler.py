"""Sync scheduler — recurring branch sync tasks on APScheduler.

Each SyncTask is one entity type (optionally scoped to a branch) on an
interval, a cron expression, or manual-only. Default set when nothing is
stored:
  - Products: every 30 min
  - Inventory: every 15 min
  - Transactions: every 5 min
  - Employees: every 60 min

Timers are jobs on an AsyncIOScheduler owned by the instance. Armed job
handles are tracked per task id so stop() removes exactly what start()
added. Stopping never cancels a run already in progress.

At most one run per task id at a time: a trigger that fires while the task
is running returns a failed result ("Task already running") and does nothing.
"""

import asyncio
import logging
import random
import secrets
import time
from datetime import datetime, timedelta, timezone

from apscheduler.job import Job
from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger

from .cache.state_cache import StateCache
from .config import Settings, settings as default_settings
from .exceptions import InvalidTaskSpec, TaskNotFound
from .models import SyncHistory, SyncTaskRecord
from .schemas.sync import (
    NextRun,
    ScheduleType,
    SchedulerStatus,
    SyncEntityType,
    SyncResult,
    SyncTask,
    TaskCreate,
    TaskStatus,
)
from .services.branch_dispatcher import BranchDispatcher
from .services.sync_handlers import SYNC_HANDLERS, SyncContext

log = logging.getLogger(__name__)

DEFAULT_TASKS = [
    TaskCreate(task_type=SyncEntityType.PRODUCTS, interval_minutes=30, priority=1),
    TaskCreate(task_type=SyncEntityType.INVENTORY, interval_minutes=15, priority=2),
    TaskCreate(task_type=SyncEntityType.TRANSACTIONS, interval_minutes=5, priority=3),
    TaskCreate(task_type=SyncEntityType.EMPLOYEES, interval_minutes=60, priority=4),
]


def make_task_id(task_type: SyncEntityType, branch_id: str | None) -> str:
    ms = int(time.time() * 1000)
    return f"{task_type.value}_{branch_id or 'all'}_{ms}_{secrets.token_hex(3)}"


def result_cache_key(task_id: str) -> str:
    return f"sync_result:{task_id}"


def _to_record(task: SyncTask) -> SyncTaskRecord:
    return SyncTaskRecord(
        id=task.id,
        task_type=task.task_type.value,
        branch_id=task.branch_id,
        schedule_type=task.schedule_type.value,
        interval_minutes=task.interval_minutes,
        cron_expression=task.cron_expression,
        is_active=task.is_active,
        last_run=task.last_run,
        next_run=task.next_run,
        status=task.status.value,
        priority=task.priority,
    )


def _from_record(row: SyncTaskRecord) -> SyncTask:
    status = TaskStatus(row.status)
    if status == TaskStatus.RUNNING:
        # Left over from a process that died mid-run
        log.warning(f"Task {row.id} was persisted as running; resetting to idle")
        status = TaskStatus.IDLE
    return SyncTask(
        id=row.id,
        task_type=SyncEntityType(row.task_type),
        branch_id=row.branch_id,
        schedule_type=ScheduleType(row.schedule_type),
        interval_minutes=row.interval_minutes,
        cron_expression=row.cron_expression,
        is_active=row.is_active,
        priority=row.priority,
        status=status,
        last_run=row.last_run,
        next_run=row.next_run,
    )


class SyncScheduler:
    def __init__(
        self,
        session_factory,
        cache: StateCache,
        dispatcher: BranchDispatcher,
        settings: Settings | None = None,
        scheduler: AsyncIOScheduler | None = None,
        handlers: dict | None = None,
    ):
        self._session_factory = session_factory
        self._cache = cache
        self._dispatcher = dispatcher
        self._settings = settings or default_settings
        self._handlers = handlers if handlers is not None else SYNC_HANDLERS
        self._aps = scheduler or AsyncIOScheduler(
            timezone=timezone.utc,
            job_defaults={"coalesce": True, "misfire_grace_time": 60, "max_instances": 1},
        )
        self._tasks: dict[str, SyncTask] = {}
        self._jobs: dict[str, list[Job]] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self) -> None:
        if self._running:
            log.info("Sync scheduler already running")
            return
        self._running = True

        try:
            stored = self._load_tasks()
        except Exception as e:
            log.error(f"Failed to load sync tasks, falling back to defaults: {e}")
            stored = []
        for task in stored:
            self._tasks.setdefault(task.id, task)

        if not self._tasks:
            for spec in DEFAULT_TASKS:
                task = self._new_task(spec)
                self._tasks[task.id] = task
                try:
                    self._persist(task)
                except Exception as e:
                    log.warning(f"Could not persist default task {task.id}: {e}")

        if not self._aps.running:
            self._aps.start()

        for task in self._ordered():
            if task.is_active:
                self._arm(task)
        log.info(f"Sync scheduler started with {len(self._tasks)} tasks")

    def stop(self) -> None:
        if not self._running:
            return
        for task_id in list(self._jobs):
            self._disarm(task_id)
        self._running = False
        log.info("Sync scheduler stopped")

    def close(self) -> None:
        self.stop()
        if self._aps.running:
            self._aps.shutdown(wait=False)

    # ── Arming ──────────────────────────────────────────────────────────

    def _arm(self, task: SyncTask) -> None:
        self._disarm(task.id)
        now = datetime.now(timezone.utc)

        if task.schedule_type == ScheduleType.INTERVAL:
            jobs = []
            if task.last_run is None or task.next_run is None or now > task.next_run:
                jitter = self._settings.scheduler_startup_jitter_seconds
                delay = jitter + random.uniform(0, jitter / 2)
                jobs.append(
                    self._aps.add_job(
                        self.execute_task,
                        DateTrigger(run_date=now + timedelta(seconds=delay), timezone=timezone.utc),
                        args=[task.id],
                        id=f"{task.id}:kickoff",
                        replace_existing=True,
                    )
                )
            jobs.append(
                self._aps.add_job(
                    self.execute_task,
                    IntervalTrigger(minutes=task.interval_minutes, timezone=timezone.utc),
                    args=[task.id],
                    id=f"{task.id}:interval",
                    replace_existing=True,
                )
            )
            self._jobs[task.id] = jobs
            task.next_run = now + timedelta(minutes=task.interval_minutes)

        elif task.schedule_type == ScheduleType.CRON:
            try:
                trigger = CronTrigger.from_crontab(task.cron_expression, timezone=timezone.utc)
            except (TypeError, ValueError) as e:
                log.error(f"Task {task.id} has invalid cron expression {task.cron_expression!r}: {e}")
                return
            job = self._aps.add_job(
                self.execute_task,
                trigger,
                args=[task.id],
                id=f"{task.id}:cron",
                replace_existing=True,
            )
            self._jobs[task.id] = [job]
            task.next_run = trigger.get_next_fire_time(None, now)

        else:
            return

        try:
            self._persist(task)
        except Exception as e:
            log.warning(f"Could not persist next_run for {task.id}: {e}")

    def _disarm(self, task_id: str) -> None:
        for job in self._jobs.pop(task_id, []):
            try:
                job.remove()
            except JobLookupError:
                pass  # one-shot kickoff already fired

    def _next_run_after(self, task: SyncTask, now: datetime) -> datetime | None:
        if task.schedule_type == ScheduleType.INTERVAL and task.interval_minutes:
            return now + timedelta(minutes=task.interval_minutes)
        if task.schedule_type == ScheduleType.CRON and task.cron_expression:
            try:
                trigger = CronTrigger.from_crontab(task.cron_expression, timezone=timezone.utc)
            except (TypeError, ValueError):
                return task.next_run
            return trigger.get_next_fire_time(None, now)
        return task.next_run

    # ── Execution ───────────────────────────────────────────────────────

    async def execute_task(self, task_id: str) -> SyncResult:
        task = self._tasks.get(task_id)
        if task is None:
            raise TaskNotFound(task_id)

        if task.status == TaskStatus.RUNNING:
            log.info(f"Task {task_id} is already running, skipping")
            return SyncResult(
                task_id=task_id,
                success=False,
                error_message="Task already running",
                completed_at=datetime.now(timezone.utc),
            )

        previous_run = task.last_run
        task.status = TaskStatus.RUNNING
        task.last_run = datetime.now(timezone.utc)
        try:
            self._persist(task)
        except Exception as e:
            log.warning(f"Could not persist running state for {task_id}: {e}")

        started = time.monotonic()
        success = False
        records = 0
        error = None
        try:
            handler = self._handlers[task.task_type]
            ctx = SyncContext(
                task=task.model_copy(),
                previous_run=previous_run,
                session_factory=self._session_factory,
                dispatcher=self._dispatcher,
                settings=self._settings,
            )
            records = await handler(ctx)
            success = True
            task.status = TaskStatus.COMPLETED
            log.info(f"Task {task_id} completed: {records} records")
        except Exception as e:
            error = str(e) or type(e).__name__
            task.status = TaskStatus.FAILED
            log.error(f"Task {task_id} failed: {error}")
        finally:
            if task.status == TaskStatus.RUNNING:
                task.status = TaskStatus.FAILED
                error = error or "Task cancelled"
            now = datetime.now(timezone.utc)
            result = SyncResult(
                task_id=task_id,
                success=success,
                records_processed=records,
                error_message=error,
                duration_ms=int((time.monotonic() - started) * 1000),
                completed_at=now,
            )
            await self._cache.set(
                result_cache_key(task_id),
                result.model_dump(mode="json"),
                ttl_seconds=self._settings.sync_result_cache_ttl,
            )
            self._write_history(task, result)
            if self._tasks.get(task_id) is not task:
                log.info(f"Task {task_id} was removed during its run, not persisting")
            else:
                task.next_run = self._next_run_after(task, now)
                try:
                    self._persist(task)
                except Exception as e:
                    log.warning(f"Could not persist task {task_id} after run: {e}")
        return result

    async def run_task_now(self, task_id: str) -> SyncResult:
        if task_id not in self._tasks:
            raise TaskNotFound(task_id)
        return await self.execute_task(task_id)

    # ── Registry ────────────────────────────────────────────────────────

    def _new_task(self, spec: TaskCreate) -> SyncTask:
        return SyncTask(id=make_task_id(spec.task_type, spec.branch_id), **spec.model_dump())

    def add_task(self, spec: TaskCreate) -> str:
        if spec.task_type not in self._handlers:
            raise InvalidTaskSpec(f"No handler for task type {spec.task_type.value}")
        task = self._new_task(spec)
        self._tasks[task.id] = task
        try:
            self._persist(task)
        except Exception:
            self._tasks.pop(task.id, None)
            raise
        if self._running and task.is_active:
            self._arm(task)
        log.info(f"Added sync task {task.id}")
        return task.id

    def remove_task(self, task_id: str) -> bool:
        self._disarm(task_id)
        existed = self._tasks.pop(task_id, None) is not None
        deleted = 0
        db = None
        try:
            db = self._session_factory()
            deleted = db.query(SyncTaskRecord).filter(SyncTaskRecord.id == task_id).delete()
            db.commit()
        except Exception as e:
            if db is not None:
                db.rollback()
            log.error(f"Could not delete stored task {task_id}: {e}")
        finally:
            if db is not None:
                db.close()
        if existed or deleted:
            log.info(f"Removed sync task {task_id}")
        return existed or bool(deleted)

    def _ordered(self) -> list[SyncTask]:
        return sorted(self._tasks.values(), key=lambda t: (t.priority, t.id))

    def get_tasks(self) -> list[SyncTask]:
        return [t.model_copy() for t in self._ordered()]

    def get_task(self, task_id: str) -> SyncTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy() if task else None

    def get_task_history(self, task_id: str, limit: int = 10) -> list[SyncHistory]:
        db = self._session_factory()
        try:
            return (
                db.query(SyncHistory)
                .filter(SyncHistory.task_id == task_id)
                .order_by(SyncHistory.completed_at.desc(), SyncHistory.id.desc())
                .limit(limit)
                .all()
            )
        finally:
            db.close()

    async def get_last_result(self, task_id: str) -> SyncResult | None:
        data = await self._cache.get(result_cache_key(task_id))
        if not data:
            return None
        try:
            return SyncResult.model_validate(data)
        except ValueError as e:
            log.warning(f"Discarding unreadable cached result for {task_id}: {e}")
            return None

    def get_status(self) -> SchedulerStatus:
        tasks = list(self._tasks.values())
        upcoming = sorted(
            (t for t in tasks if t.is_active and t.next_run), key=lambda t: (t.next_run, t.id)
        )
        return SchedulerStatus(
            is_running=self._running,
            total_tasks=len(tasks),
            active_tasks=sum(1 for t in tasks if t.is_active),
            running_tasks=sum(1 for t in tasks if t.status == TaskStatus.RUNNING),
            next_run_times=[NextRun(task_id=t.id, next_run=t.next_run) for t in upcoming],
        )

    # ── Persistence ─────────────────────────────────────────────────────

    def _load_tasks(self) -> list[SyncTask]:
        db = self._session_factory()
        try:
            rows = (
                db.query(SyncTaskRecord)
                .filter(SyncTaskRecord.is_active.is_(True))
                .order_by(SyncTaskRecord.priority, SyncTaskRecord.id)
                .all()
            )
            return [_from_record(r) for r in rows]
        finally:
            db.close()

    def _persist(self, task: SyncTask) -> None:
        db = self._session_factory()
        try:
            db.merge(_to_record(task))
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def _write_history(self, task: SyncTask, result: SyncResult) -> None:
        db = self._session_factory()
        try:
            db.add(
                SyncHistory(
                    task_id=task.id,
                    integration_type="scheduler",
                    entity_type=task.task_type.value,
                    sync_status="completed" if result.success else "failed",
                    records_synced=result.records_processed,
                    error_message=result.error_message,
                    started_at=result.started_at,
                    completed_at=result.completed_at,
                )
            )
            db.commit()
        except Exception as e:
            db.rollback()
            log.error(f"Failed to write sync history for {task.id}: {e}")
        finally:
            db.close()


async def wait_for_idle(scheduler: SyncScheduler, timeout: float = 5.0) -> None:
    """Block until no task is running. Used on shutdown to let runs write results."""
    deadline = time.monotonic() + timeout
    while scheduler.get_status().running_tasks and time.monotonic() < deadline:
        await asyncio.sleep(0.05)
