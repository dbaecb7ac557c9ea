"""Run scheduling: worker cap, per-configuration lock, cancellation, timeouts and cron triggers."""

import asyncio
import logging
from datetime import datetime
from typing import Any

from croniter import croniter
from sqlalchemy import select

from work_item_sync.db.connection import session_scope
from work_item_sync.db.models import SyncConfiguration, SyncExecution, TriggerType, utc_now
from work_item_sync.errors import InvalidScheduleError, SyncAlreadyRunningError
from work_item_sync.sync.engine import SyncEngine

logger = logging.getLogger(__name__)


def next_run_time(expression: str, base: datetime | None = None) -> datetime:
    """Next time a cron expression fires after base (default: now, naive UTC).

    Raises:
        InvalidScheduleError: If the expression is not a valid cron expression.
    """
    if not expression or not croniter.is_valid(expression):
        raise InvalidScheduleError(expression)
    return croniter(expression, base or utc_now()).get_next(datetime)


class SyncScheduler:
    """Coordinates sync runs for one process.

    Constructed explicitly and passed to whatever triggers runs. At most
    max_concurrent runs execute at once; a configuration never has two runs
    in flight (a second request is rejected with SyncAlreadyRunningError).

    Usage:
        scheduler = SyncScheduler(engine, max_concurrent=3, run_timeout=3600)
        execution = await scheduler.execute_sync(config_id)

        queue = scheduler.subscribe()
        execution = await scheduler.submit(config_id)
        event = await queue.get()
    """

    def __init__(
        self,
        engine: SyncEngine,
        max_concurrent: int = 3,
        run_timeout: float | None = None,
        poll_interval: float = 30.0,
    ) -> None:
        """Initialize scheduler.

        Args:
            engine: Sync engine executing the runs.
            max_concurrent: Maximum number of runs executing at once.
            run_timeout: Wall-clock limit per run in seconds; None disables it.
            poll_interval: Seconds between cron evaluations in run_scheduled.
        """
        self.engine = engine
        self.max_concurrent = max_concurrent
        self.run_timeout = run_timeout
        self.poll_interval = poll_interval
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._running: dict[int, int] = {}
        self._cancel_events: dict[int, asyncio.Event] = {}
        self._tasks: dict[int, asyncio.Task[SyncExecution | None]] = {}
        self._subscribers: list[asyncio.Queue[dict[str, Any]]] = []

    def subscribe(self) -> asyncio.Queue[dict[str, Any]]:
        """Queue receiving started, progress and finished events of every run."""
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
        self._subscribers.append(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue[dict[str, Any]]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def is_running(self, config_id: int) -> bool:
        return config_id in self._running

    @property
    def running_executions(self) -> dict[int, int]:
        """Configuration id -> execution id of runs in flight."""
        return dict(self._running)

    async def execute_sync(
        self,
        config_id: int,
        work_item_ids: list[str] | None = None,
        dry_run: bool = False,
        trigger: TriggerType | str = TriggerType.manual,
    ) -> SyncExecution | None:
        """Run a sync and wait for it to finish.

        Raises:
            ConfigNotFound: If the configuration does not exist.
            SyncAlreadyRunningError: If the configuration has a run in flight.
        """
        execution = self._reserve(config_id, trigger, dry_run)
        return await self._run(execution, work_item_ids)

    async def submit(
        self,
        config_id: int,
        work_item_ids: list[str] | None = None,
        dry_run: bool = False,
        trigger: TriggerType | str = TriggerType.manual,
    ) -> SyncExecution:
        """Start a sync in the background and return its running execution row.

        Raises:
            ConfigNotFound: If the configuration does not exist.
            SyncAlreadyRunningError: If the configuration has a run in flight.
        """
        execution = self._reserve(config_id, trigger, dry_run)
        self._tasks[execution.id] = asyncio.create_task(self._run(execution, work_item_ids))
        return execution

    def cancel(self, execution_id: int) -> bool:
        """Request cancellation; the run stops before its next item.

        Returns:
            True if the execution was in flight.
        """
        event = self._cancel_events.get(execution_id)
        if event is None:
            return False
        event.set()
        logger.info(f"Cancellation requested for execution {execution_id}")
        return True

    def get_execution_status(self, execution_id: int) -> SyncExecution | None:
        return self.engine.get_execution(execution_id)

    async def wait_idle(self) -> None:
        """Wait for every background run to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel in-flight runs and wait for them to stop."""
        for event in self._cancel_events.values():
            event.set()
        await self.wait_idle()

    async def run_scheduled(self, stop_event: asyncio.Event) -> None:
        """Trigger scheduled configurations until stop_event is set."""
        logger.info(f"Scheduler started (max {self.max_concurrent} concurrent runs)")
        while not stop_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass
        await self.shutdown()
        logger.info("Scheduler stopped")

    async def tick(self, now: datetime | None = None) -> list[SyncExecution]:
        """Evaluate cron schedules once and start the runs that are due.

        A configuration without next_sync_at is only scheduled, not run.
        Busy configurations are skipped and rescheduled.

        Returns:
            Executions started by this tick.
        """
        now = now or utc_now()
        due: list[int] = []

        with session_scope(self.engine.session_factory) as session:
            configs = session.scalars(
                select(SyncConfiguration).where(
                    SyncConfiguration.is_active.is_(True),
                    SyncConfiguration.trigger_type == TriggerType.scheduled.value,
                )
            ).all()
            for config in configs:
                try:
                    upcoming = next_run_time(config.schedule_cron, now)
                except InvalidScheduleError as e:
                    logger.error(f"Configuration {config.id}: {e}")
                    continue

                if config.next_sync_at is None:
                    config.next_sync_at = upcoming
                    logger.info(f"Scheduled configuration {config.id} ({config.name}) for {upcoming}")
                    continue
                if config.next_sync_at > now:
                    continue

                config.next_sync_at = upcoming
                if self.is_running(config.id):
                    logger.warning(
                        f"Skipping scheduled run of configuration {config.id}: a run is in progress"
                    )
                    continue
                due.append(config.id)

        started = []
        for config_id in due:
            try:
                started.append(await self.submit(config_id, trigger=TriggerType.scheduled))
            except SyncAlreadyRunningError as e:
                logger.warning(str(e))
        return started

    def _reserve(self, config_id: int, trigger: TriggerType | str, dry_run: bool) -> SyncExecution:
        # check and claim without awaiting in between
        if config_id in self._running:
            raise SyncAlreadyRunningError(config_id)
        execution = self.engine.start_execution(config_id, trigger=trigger, dry_run=dry_run)
        self._running[config_id] = execution.id
        self._cancel_events[execution.id] = asyncio.Event()
        return execution

    async def _run(
        self, execution: SyncExecution, work_item_ids: list[str] | None
    ) -> SyncExecution | None:
        config_id = execution.sync_config_id
        cancel_event = self._cancel_events[execution.id]
        try:
            async with self._semaphore:
                self._publish({"type": "started", "execution_id": execution.id, "sync_config_id": config_id})
                run = self.engine.run(
                    execution.id,
                    work_item_ids=work_item_ids,
                    cancel_event=cancel_event,
                    on_progress=lambda progress: self._publish({"type": "progress", **progress}),
                )
                if self.run_timeout:
                    result = await asyncio.wait_for(run, timeout=self.run_timeout)
                else:
                    result = await run
        except asyncio.TimeoutError:
            result = self.engine.fail_execution(
                execution.id, f"Execution timed out after {self.run_timeout} seconds"
            )
        except asyncio.CancelledError:
            self.engine.fail_execution(execution.id, "Execution task was cancelled")
            raise
        finally:
            self._running.pop(config_id, None)
            self._cancel_events.pop(execution.id, None)
            self._tasks.pop(execution.id, None)

        self._publish(
            {
                "type": "finished",
                "execution_id": execution.id,
                "sync_config_id": config_id,
                "status": result.status if result else None,
            }
        )
        return result

    def _publish(self, event: dict[str, Any]) -> None:
        for queue in self._subscribers:
            queue.put_nowait(event)
