"""
Cron scheduling for the monitor's recurring jobs.

Each job type (refresh, alert sweep, health check) owns at most one timer
task. The timer computes the next matching minute, sleeps until then and
fires the job body under its ceiling. The ceiling bounds how long the
scheduler waits for a sweep: on expiry the tick is recorded as timed out and
the sweep keeps running in the background unless `cancel_on_timeout` is set.

All handles live in a `SchedulerState` value owned by the entry point.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from .config import SchedulerConfig
from .enums import JobType, SweepOutcome, TriggerSource
from .event_logger import ComponentLogging, EventLogger
from .exceptions import InvalidScheduleError, RefreshInProgressError, SweepTimeoutError
from .interfaces import ScheduleConfigStore
from .models import SchedulerStatus, SweepResult, utc_now_iso


class CronParseError(Exception):
    """Raised when a cron expression cannot be parsed."""

    def __init__(self, message: str, expression: str) -> None:
        self.message = message
        self.expression = expression
        super().__init__(f"{message}: '{expression}'")


@dataclass
class CronField:
    """Represents a parsed cron field with allowed values."""

    values: set[int]
    min_value: int
    max_value: int
    wildcard: bool = False

    def matches(self, value: int) -> bool:
        """Check if a value matches this field."""
        return value in self.values


@dataclass
class CronSchedule:
    """Represents a parsed cron schedule."""

    minute: CronField
    hour: CronField
    day_of_month: CronField
    month: CronField
    day_of_week: CronField  # 0 = Sunday
    original_expression: str

    # Nothing can be more than this far away, except impossible dates like Feb 30
    SEARCH_HORIZON = timedelta(days=366 * 5)

    def _day_matches(self, dt: datetime) -> bool:
        cron_weekday = (dt.weekday() + 1) % 7

        if self.day_of_month.wildcard and self.day_of_week.wildcard:
            return True
        if self.day_of_month.wildcard:
            return self.day_of_week.matches(cron_weekday)
        if self.day_of_week.wildcard:
            return self.day_of_month.matches(dt.day)
        # Both restricted: either may match
        return self.day_of_month.matches(dt.day) or self.day_of_week.matches(cron_weekday)

    def matches(self, dt: datetime) -> bool:
        """Check if a datetime matches this schedule (minute precision)."""
        return (
            self.minute.matches(dt.minute)
            and self.hour.matches(dt.hour)
            and self.month.matches(dt.month)
            and self._day_matches(dt)
        )

    def next_after(self, dt: datetime) -> datetime:
        """
        First matching minute strictly after `dt`.

        Raises:
            CronParseError: If nothing matches within five years
        """
        candidate = dt.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit = candidate + self.SEARCH_HORIZON

        while candidate <= limit:
            if not self.month.matches(candidate.month):
                first_of_month = candidate.replace(day=1, hour=0, minute=0)
                candidate = (first_of_month + timedelta(days=32)).replace(day=1)
                continue
            if not self._day_matches(candidate):
                candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
                continue
            if not self.hour.matches(candidate.hour):
                candidate = candidate.replace(minute=0) + timedelta(hours=1)
                continue
            if not self.minute.matches(candidate.minute):
                candidate += timedelta(minutes=1)
                continue
            return candidate

        raise CronParseError("Expression never matches", self.original_expression)

    def next_times(self, start: datetime, count: int) -> list[datetime]:
        times: list[datetime] = []
        current = start
        for _ in range(count):
            current = self.next_after(current)
            times.append(current)
        return times


class CronParser:
    """Parser for cron expressions."""

    # Field definitions: (min, max, name)
    FIELD_DEFS = [
        (0, 59, "minute"),
        (0, 23, "hour"),
        (1, 31, "day_of_month"),
        (1, 12, "month"),
        (0, 7, "day_of_week"),  # 0 and 7 = Sunday
    ]

    MONTH_NAMES = {
        "jan": 1, "feb": 2, "mar": 3, "apr": 4,
        "may": 5, "jun": 6, "jul": 7, "aug": 8,
        "sep": 9, "oct": 10, "nov": 11, "dec": 12,
    }

    DOW_NAMES = {
        "sun": 0, "mon": 1, "tue": 2, "wed": 3,
        "thu": 4, "fri": 5, "sat": 6,
    }

    def parse(self, expression: str) -> CronSchedule:
        """
        Parse a cron expression into a CronSchedule.

        Supports standard 5-field cron expressions:
        - minute (0-59)
        - hour (0-23)
        - day of month (1-31)
        - month (1-12 or jan-dec)
        - day of week (0-7 or sun-sat, where 0 and 7 are Sunday)

        A 6-field expression's leading seconds field is ignored.
        `*`, lists (`,`), ranges (`-`) and steps (`/`) are supported.

        Raises:
            CronParseError: If the expression is invalid
        """
        expression = (expression or "").strip()
        if not expression:
            raise CronParseError("Empty cron expression", expression)

        fields = expression.split()

        if len(fields) == 6:
            fields = fields[1:]
        elif len(fields) != 5:
            raise CronParseError(
                f"Invalid number of fields (expected 5 or 6, got {len(fields)})",
                expression,
            )

        parsed_fields = []
        for field_str, (min_val, max_val, name) in zip(fields, self.FIELD_DEFS):
            try:
                parsed_fields.append(self._parse_field(field_str, min_val, max_val, name))
            except ValueError as e:
                raise CronParseError(f"Invalid {name} field: {e}", expression) from e

        return CronSchedule(
            minute=parsed_fields[0],
            hour=parsed_fields[1],
            day_of_month=parsed_fields[2],
            month=parsed_fields[3],
            day_of_week=parsed_fields[4],
            original_expression=expression,
        )

    def _parse_field(
        self, field_str: str, min_val: int, max_val: int, field_name: str
    ) -> CronField:
        """Parse a single cron field."""
        values: set[int] = set()
        wildcard = field_str.startswith("*")

        field_str = field_str.lower()
        if field_name == "month":
            for name, num in self.MONTH_NAMES.items():
                field_str = field_str.replace(name, str(num))
        elif field_name == "day_of_week":
            for name, num in self.DOW_NAMES.items():
                field_str = field_str.replace(name, str(num))

        for part in field_str.split(","):
            part = part.strip()
            if not part:
                raise ValueError("Empty list element")

            step = 1
            if "/" in part:
                part, step_str = part.split("/", 1)
                try:
                    step = int(step_str)
                except ValueError as e:
                    raise ValueError(f"Invalid step value: {step_str}") from e
                if step < 1:
                    raise ValueError(f"Step must be >= 1, got {step}")

            if part == "*":
                values.update(range(min_val, max_val + 1, step))
                continue

            if "-" in part:
                start_str, end_str = part.split("-", 1)
                try:
                    start = int(start_str)
                    end = int(end_str)
                except ValueError as e:
                    raise ValueError(f"Invalid range: {part}") from e

                if start < min_val or start > max_val:
                    raise ValueError(f"Range start {start} out of bounds [{min_val}-{max_val}]")
                if end < min_val or end > max_val:
                    raise ValueError(f"Range end {end} out of bounds [{min_val}-{max_val}]")
                if start > end:
                    raise ValueError(f"Range start {start} > end {end}")

                values.update(range(start, end + 1, step))
                continue

            try:
                val = int(part)
            except ValueError as e:
                raise ValueError(f"Invalid value: {part}") from e

            if val < min_val or val > max_val:
                raise ValueError(f"Value {val} out of bounds [{min_val}-{max_val}]")

            if step > 1:
                values.update(range(val, max_val + 1, step))
            else:
                values.add(val)

        if field_name == "day_of_week" and 7 in values:
            values.discard(7)
            values.add(0)
            max_val = 6

        if not values:
            raise ValueError("No values parsed from field")

        return CronField(values=values, min_value=min_val, max_value=max_val, wildcard=wildcard)


JobBody = Callable[[], Awaitable[Any]]


@dataclass
class JobDefinition:
    """What a job type runs and how long the scheduler waits for it."""

    job_type: JobType
    body: JobBody
    default_expression: str
    ceiling_seconds: Optional[float] = None


@dataclass
class JobHandle:
    """The live timer of one configured job."""

    job_type: JobType
    expression: str
    schedule: CronSchedule
    task: Optional[asyncio.Task] = None
    next_fire: Optional[datetime] = None

    def active(self) -> bool:
        return self.task is not None and not self.task.done()


@dataclass
class SchedulerState:
    """Mutable scheduler state, owned by the process entry point."""

    handles: dict[JobType, JobHandle] = field(default_factory=dict)
    last_results: dict[JobType, SweepResult] = field(default_factory=dict)
    sweeps: set[asyncio.Task] = field(default_factory=set)


class Scheduler(ComponentLogging):
    """
    Drives the refresh, alert sweep, health check, uptime and cleanup jobs on
    cron schedules.

    Jobs are registered with `register_job`; `start` configures every
    registered job from the schedule store, falling back to its default
    expression.
    """

    COMPONENT = "scheduler"

    def __init__(
        self,
        config: Optional[SchedulerConfig] = None,
        state: Optional[SchedulerState] = None,
        schedule_store: Optional[ScheduleConfigStore] = None,
        logger: Optional[EventLogger] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ) -> None:
        """
        Args:
            config: Default schedules, ceiling and cancel policy
            state: Handle state; a fresh one is created if omitted
            schedule_store: Persisted cron expressions
            logger: Optional event logger
            clock: Returns the current wall-clock time (local, naive by default)
            sleep: Awaitable sleep used by timer loops
        """
        self._config = config or SchedulerConfig()
        self.state = state if state is not None else SchedulerState()
        self._store = schedule_store
        self._logger = logger
        self._clock = clock or datetime.now
        self._sleep = sleep or asyncio.sleep
        self._parser = CronParser()
        self._jobs: dict[JobType, JobDefinition] = {}

    def parse_cron(self, expression: str) -> CronSchedule:
        """Parse a cron expression without scheduling anything."""
        return self._parser.parse(expression)

    def register_job(
        self,
        job_type: JobType,
        body: JobBody,
        default_expression: Optional[str] = None,
        ceiling_seconds: Optional[float] = None,
    ) -> None:
        if default_expression is None:
            default_expression = self.default_expression(job_type)
        self._jobs[job_type] = JobDefinition(
            job_type=job_type,
            body=body,
            default_expression=default_expression,
            ceiling_seconds=ceiling_seconds,
        )

    def default_expression(self, job_type: JobType) -> str:
        if job_type == JobType.REFRESH:
            return self._config.refresh_schedule
        if job_type == JobType.ALERT_SWEEP:
            return self._config.alert_schedule
        if job_type == JobType.UPTIME:
            return self._config.uptime_schedule()
        if job_type == JobType.CLEANUP:
            return self._config.cleanup_schedule
        return self._config.health_check_schedule()

    @property
    def registered_jobs(self) -> list[JobType]:
        return list(self._jobs)

    def _job(self, job_type: JobType) -> JobDefinition:
        try:
            return self._jobs[job_type]
        except KeyError:
            raise InvalidScheduleError(
                code="job_not_registered",
                message=f"No job registered for {job_type.value}",
                details={"job_type": job_type.value},
            ) from None

    def configure(self, job_type: JobType, cron_expression: str) -> JobHandle:
        """
        Replace the schedule of a job.

        Raises:
            InvalidScheduleError: If the expression is rejected; the old handle keeps running
        """
        self._job(job_type)
        try:
            schedule = self._parser.parse(cron_expression)
            schedule.next_after(self._clock())
        except CronParseError as e:
            self._log_error(
                "Invalid cron expression",
                error=e,
                data={"job_type": job_type.value, "cron_expression": cron_expression},
            )
            raise InvalidScheduleError(
                code="invalid_cron",
                message=e.message,
                details={"job_type": job_type.value, "cron_expression": cron_expression},
            ) from e

        handle = JobHandle(job_type=job_type, expression=schedule.original_expression, schedule=schedule)

        old = self.state.handles.get(job_type)
        if old is not None and old.task is not None:
            old.task.cancel()
        handle.task = asyncio.create_task(self._timer_loop(handle))
        self.state.handles[job_type] = handle

        self._log_info("Schedule updated", {"job_type": job_type.value, "schedule": handle.expression})
        return handle

    def start(self) -> None:
        """Configure every registered job from the schedule store or its default."""
        for job_type, job in self._jobs.items():
            expression = None
            if self._store is not None:
                expression = self._store.get_schedule(job_type)
            try:
                self.configure(job_type, expression or job.default_expression)
            except InvalidScheduleError:
                if not expression:
                    raise
                self._log_warn(
                    "Stored schedule rejected, using default",
                    {"job_type": job_type.value, "stored": expression, "default": job.default_expression},
                )
                self.configure(job_type, job.default_expression)

        self._log_info(
            "Scheduler initialized",
            {jt.value: h.expression for jt, h in self.state.handles.items()},
        )

    async def _timer_loop(self, handle: JobHandle) -> None:
        while True:
            now = self._clock()
            # never earlier than the minute that just fired, even if the wall clock lags
            after = now if handle.next_fire is None else max(now, handle.next_fire)
            handle.next_fire = handle.schedule.next_after(after)
            await self._sleep(max(0.0, (handle.next_fire - now).total_seconds()))
            try:
                await self._fire(handle.job_type, TriggerSource.SCHEDULE)
            except Exception as e:
                self._log_error("Scheduled tick failed", error=e, data={"job_type": handle.job_type.value})

    async def manual_trigger(self, job_type: JobType = JobType.REFRESH) -> SweepResult:
        """Run a job now, outside its schedule, under the same ceiling."""
        self._log_info("Manual sweep triggered", {"job_type": job_type.value})
        return await self._fire(job_type, TriggerSource.MANUAL)

    async def _fire(self, job_type: JobType, trigger: TriggerSource) -> SweepResult:
        job = self._job(job_type)
        started_at = utc_now_iso()
        self._log_info("Sweep started", {"job_type": job_type.value, "trigger": trigger.value})

        task = asyncio.create_task(job.body())
        self.state.sweeps.add(task)
        task.add_done_callback(self.state.sweeps.discard)

        done, _ = await asyncio.wait({task}, timeout=job.ceiling_seconds)

        error: Optional[str] = None
        if task in done:
            outcome, error = self._settled_outcome(task)
        else:
            timeout_error = SweepTimeoutError(
                code="sweep_timeout",
                message=f"{job_type.value} sweep exceeded its {job.ceiling_seconds}s ceiling",
                details={"job_type": job_type.value, "ceiling_seconds": job.ceiling_seconds},
            )
            self._log_error("Sweep timed out", error=timeout_error)
            if self._config.cancel_on_timeout:
                task.cancel()
            else:
                task.add_done_callback(self._late_outcome_logger(job_type))
            outcome, error = SweepOutcome.TIMED_OUT, timeout_error.message

        result = SweepResult(
            job_type=job_type,
            outcome=outcome,
            trigger=trigger,
            started_at=started_at,
            finished_at=utc_now_iso(),
            error=error,
        )
        self.state.last_results[job_type] = result
        self._log_info("Sweep finished", {"job_type": job_type.value, "outcome": outcome.value})
        return result

    def _settled_outcome(self, task: asyncio.Task) -> tuple[SweepOutcome, Optional[str]]:
        if task.cancelled():
            return SweepOutcome.FAILED, "cancelled"
        error = task.exception()
        if error is None:
            return SweepOutcome.COMPLETED, None
        if isinstance(error, RefreshInProgressError):
            self._log_warn("Sweep skipped", {"reason": error.message})
            return SweepOutcome.SKIPPED, error.message
        self._log_error("Sweep failed", error=error)
        return SweepOutcome.FAILED, str(error) or type(error).__name__

    def _late_outcome_logger(self, job_type: JobType) -> Callable[[asyncio.Task], None]:
        def log_outcome(task: asyncio.Task) -> None:
            if task.cancelled():
                self._log_warn("Overrunning sweep cancelled", {"job_type": job_type.value})
                return
            error = task.exception()
            if error is not None:
                self._log_error("Overrunning sweep failed", error=error, data={"job_type": job_type.value})
            else:
                self._log_info("Overrunning sweep finished", {"job_type": job_type.value})

        return log_outcome

    def status(self) -> SchedulerStatus:
        handle = self.state.handles.get(JobType.REFRESH)
        if handle is not None and handle.active():
            refresh_schedule = handle.expression
        else:
            stored = self._store.get_schedule(JobType.REFRESH) if self._store is not None else None
            refresh_schedule = stored or self.default_expression(JobType.REFRESH)

        return SchedulerStatus(
            refresh_schedule=refresh_schedule,
            is_running=handle is not None and handle.active(),
            schedules={jt.value: h.expression for jt, h in self.state.handles.items() if h.active()},
            last_results={jt.value: r for jt, r in self.state.last_results.items()},
        )

    def stop(self, job_type: Optional[JobType] = None) -> None:
        """Stop one job's timer, or all of them."""
        targets = [job_type] if job_type is not None else list(self.state.handles)
        for jt in targets:
            handle = self.state.handles.pop(jt, None)
            if handle is not None and handle.task is not None:
                handle.task.cancel()
        self._log_info("Scheduler stopped", {"jobs": [jt.value for jt in targets]})

    async def shutdown(self) -> None:
        """Stop all timers and cancel sweeps still running past their ceiling."""
        timers = [h.task for h in self.state.handles.values() if h.task is not None]
        self.stop()
        sweeps = list(self.state.sweeps)
        for task in sweeps:
            task.cancel()
        await asyncio.gather(*timers, *sweeps, return_exceptions=True)
