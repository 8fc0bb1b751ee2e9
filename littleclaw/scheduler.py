"""Persistent cron-style job scheduler."""

from __future__ import annotations

import asyncio
import logging
import re
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

from croniter import croniter
from pydantic import BaseModel, TypeAdapter

from littleclaw.bus import MessageBus
from littleclaw.memory import MemoryStore
from littleclaw.models import OutboundMessage
from littleclaw.tools.shell_tool import run_shell, truncate_output

LOGGER = logging.getLogger(__name__)

_JOB_ID_MAX_LENGTH = 20
_NON_ALNUM = re.compile(r"[^A-Za-z0-9]")
_DURATION = re.compile(r"(?:\d+(?:\.\d+)?(?:ms|h|m|s))+")
_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")
_DURATION_UNITS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600}
_MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}
_MIN_INTERVAL = timedelta(seconds=1)


class CronJob(BaseModel):
    """A scheduled shell command, mirrored to the scheduler's JSON file."""

    id: str
    schedule: str
    command: str
    chat_id: str = ""
    channel: str = ""
    label: str


_JOB_LIST = TypeAdapter(list[CronJob])


def job_id_from_label(label: str) -> str:
    """Derive a stable job id: keep ASCII letters and digits, max 20 characters.

    Identical labels map to the same id, so re-adding a label replaces the job.
    """

    job_id = _NON_ALNUM.sub("", label)[:_JOB_ID_MAX_LENGTH]
    if not job_id:
        raise ValueError(f"Label {label!r} must contain at least one letter or digit")
    return job_id


@dataclass(frozen=True, slots=True)
class Schedule:
    """Parsed schedule: either a fixed interval or a cron expression."""

    expression: str
    interval: timedelta | None = None
    cron: str | None = None

    def next_after(self, now: datetime) -> datetime:
        if self.interval is not None:
            return now + self.interval
        return croniter(self.cron, now).get_next(datetime)


def parse_duration(text: str) -> timedelta:
    """Parse Go-style durations such as ``10s``, ``5m`` or ``1h30m``."""

    text = text.strip()
    if not _DURATION.fullmatch(text):
        raise ValueError(f"Invalid duration {text!r}")
    seconds = sum(float(value) * _DURATION_UNITS[unit] for value, unit in _DURATION_PART.findall(text))
    return timedelta(seconds=seconds)


def parse_schedule(expression: str) -> Schedule:
    """Parse a schedule expression.

    Supported forms: ``@every <duration>``, the ``@hourly``-style macros,
    standard five-field cron, and six-field cron with a leading seconds field.
    """

    expr = " ".join(expression.split())
    if expr.startswith("@every "):
        interval = parse_duration(expr[len("@every ") :])
        if interval < _MIN_INTERVAL:
            raise ValueError(f"Interval in {expression!r} must be at least one second")
        return Schedule(expression=expression, interval=interval)

    cron = _MACROS.get(expr, expr)
    fields = cron.split()
    if len(fields) == 6:
        # croniter expects the seconds field last.
        cron = " ".join(fields[1:] + fields[:1])
    elif len(fields) != 5:
        raise ValueError(f"Invalid schedule {expression!r}: expected 5 or 6 fields, '@every <duration>' or a macro")
    if not croniter.is_valid(cron):
        raise ValueError(f"Invalid schedule {expression!r}")
    return Schedule(expression=expression, cron=cron)


class JobScheduler:
    """Runs persisted cron jobs and delivers their output to the job's conversation.

    The job map and the timer map are guarded by one lock. Every change to the
    job map is written through to the JSON data file.
    """

    def __init__(
        self,
        data_file: Path,
        workspace: Path,
        bus: MessageBus,
        memory: MemoryStore,
        exec_timeout_seconds: float = 120.0,
    ) -> None:
        self._data_file = data_file
        self._workspace = workspace
        self._bus = bus
        self._memory = memory
        self._exec_timeout_seconds = exec_timeout_seconds
        self._lock = threading.Lock()
        self._jobs: dict[str, CronJob] = {}
        self._timers: dict[str, asyncio.Task[None]] = {}
        self._running = False
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Load persisted jobs and start a timer for each."""

        try:
            jobs = self._load()
        except FileNotFoundError:
            LOGGER.info("No scheduled jobs at %s, starting fresh", self._data_file)
            jobs = []
        except (OSError, ValueError) as exc:
            LOGGER.warning("Could not load scheduled jobs (%s), starting fresh", exc)
            jobs = []

        with self._lock:
            self._running = True
            for job in jobs:
                self._jobs[job.id] = job
                try:
                    self._timers[job.id] = self._start_timer(job, parse_schedule(job.schedule))
                except ValueError as exc:
                    LOGGER.error("Failed to schedule job %s: %s", job.id, exc)
        LOGGER.info("Scheduler started with %d job(s)", len(self._jobs))

    async def run_forever(self) -> None:
        """Start, then keep timers alive until stop() is called or the task is cancelled."""

        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            self._shutdown()

    def stop(self) -> None:
        self._stop_event.set()

    def _shutdown(self) -> None:
        with self._lock:
            self._running = False
            for timer in self._timers.values():
                timer.cancel()
            self._timers.clear()
        LOGGER.info("Scheduler stopped")

    def add(self, job: CronJob) -> None:
        """Add a job, replacing any job with the same id, and persist the set.

        The file is written first; on OSError nothing is scheduled or replaced.
        """

        schedule = parse_schedule(job.schedule)
        with self._lock:
            self._save({**self._jobs, job.id: job})
            old_timer = self._timers.pop(job.id, None)
            if old_timer is not None:
                LOGGER.info("Replacing existing job %s", job.id)
                old_timer.cancel()
            self._jobs[job.id] = job
            if self._running:
                self._timers[job.id] = self._start_timer(job, schedule)

    def remove(self, job_id: str) -> CronJob:
        """Unschedule and forget a job. Raises KeyError if it does not exist.

        The file is written first; on OSError the job stays scheduled.
        """

        with self._lock:
            if job_id not in self._jobs:
                raise KeyError(job_id)
            self._save({k: v for k, v in self._jobs.items() if k != job_id})
            timer = self._timers.pop(job_id, None)
            if timer is not None:
                timer.cancel()
            job = self._jobs.pop(job_id)
        return job

    def list(self) -> list[CronJob]:
        with self._lock:
            return [job.model_copy() for job in sorted(self._jobs.values(), key=lambda j: j.id)]

    def _start_timer(self, job: CronJob, schedule: Schedule) -> asyncio.Task[None]:
        return asyncio.create_task(self._run_timer(job, schedule), name=f"cron-{job.id}")

    async def _run_timer(self, job: CronJob, schedule: Schedule) -> None:
        while True:
            now = datetime.now()
            delay = (schedule.next_after(now) - now).total_seconds()
            await asyncio.sleep(max(delay, 0.0))
            try:
                await self.run_job(job)
            except Exception:  # noqa: BLE001
                LOGGER.exception("Job %s crashed", job.id)

    async def run_job(self, job: CronJob) -> str:
        """Execute one tick of ``job`` and return the message it produced."""

        LOGGER.info("Firing job %s (%s)", job.id, job.label)
        try:
            returncode, output = await run_shell(job.command, self._workspace, self._exec_timeout_seconds)
        except OSError as exc:
            returncode, output = -1, str(exc)
        output = truncate_output(output)

        if returncode != 0:
            message = f"Cron job '{job.label}' failed (exit code {returncode}):\n```\n{output}\n```"
        else:
            message = output or "(no output)"

        if job.chat_id and job.channel:
            await self._bus.send_outbound(OutboundMessage(channel=job.channel, chat_id=job.chat_id, content=message))

        try:
            self._memory.append_internal(
                "CRON", f"[Cron Job Runtime] Job '{job.label}' ({job.id}) fired. Result: {message}"
            )
        except OSError as exc:
            LOGGER.warning("Could not log job %s to internal memory: %s", job.id, exc)
        return message

    def _load(self) -> list[CronJob]:
        return _JOB_LIST.validate_json(self._data_file.read_bytes())

    def _save(self, jobs_by_id: dict[str, CronJob]) -> None:
        jobs = sorted(jobs_by_id.values(), key=lambda j: j.id)
        self._data_file.parent.mkdir(parents=True, exist_ok=True)
        self._data_file.write_bytes(_JOB_LIST.dump_json(jobs, indent=2))
