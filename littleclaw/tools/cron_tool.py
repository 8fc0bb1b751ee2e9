"""Scheduler control tools exposed to the model."""

from __future__ import annotations

from typing import Any

from littleclaw.models import NoConversationError, ToolContext, ToolResult
from littleclaw.scheduler import CronJob, JobScheduler, job_id_from_label
from littleclaw.tools.base import Tool


class _CronTool(Tool):
    def __init__(self, scheduler: JobScheduler) -> None:
        self._scheduler = scheduler


class CronAddTool(_CronTool):
    name = "cron_add"
    description = (
        "Schedules a recurring shell command. Its output is sent to the current conversation "
        "on every run. Adding a job with an existing label replaces that job. Schedules accept "
        "'@every 10m', '@daily', five-field cron ('0 9 * * 1-5') or six-field cron with seconds first."
    )
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "label": {"type": "string", "description": "Short human-readable name for the job."},
            "schedule": {"type": "string", "description": "Schedule expression."},
            "command": {"type": "string", "description": "Shell command to run in the workspace."},
        },
        "required": ["label", "schedule", "command"],
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        label: str = kwargs["label"]
        try:
            target = context.reply_target()
        except NoConversationError as exc:
            return ToolResult(for_llm=f"Error: cannot schedule '{label}': {exc}")

        try:
            job = CronJob(
                id=job_id_from_label(label),
                schedule=kwargs["schedule"],
                command=kwargs["command"],
                chat_id=target.chat_id,
                channel=target.channel,
                label=label,
            )
            self._scheduler.add(job)
        except ValueError as exc:
            return ToolResult(for_llm=f"Error adding job: {exc}")
        except OSError as exc:
            return ToolResult(for_llm=f"Error saving job: {exc}")
        return ToolResult(
            for_llm=f"Scheduled job '{label}' (id {job.id}) with schedule {job.schedule!r}."
        )


class CronRemoveTool(_CronTool):
    name = "cron_remove"
    description = "Removes a scheduled job by its id or by its label."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {
            "job_id": {"type": "string", "description": "The job id shown by cron_list."},
            "label": {"type": "string", "description": "The label the job was created with."},
        },
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        job_id: str | None = kwargs.get("job_id")
        if not job_id and kwargs.get("label"):
            try:
                job_id = job_id_from_label(kwargs["label"])
            except ValueError as exc:
                return ToolResult(for_llm=f"Error: {exc}")
        if not job_id:
            return ToolResult(for_llm="Error: specify job_id or label.")

        try:
            job = self._scheduler.remove(job_id)
        except KeyError:
            return ToolResult(for_llm=f"Error: job {job_id!r} not found.")
        except OSError as exc:
            return ToolResult(for_llm=f"Error saving jobs after removal: {exc}")
        return ToolResult(for_llm=f"Removed job '{job.label}' (id {job.id}).")


class CronListTool(_CronTool):
    name = "cron_list"
    description = "Lists all scheduled jobs."
    parameters_schema: dict[str, Any] = {
        "type": "object",
        "properties": {},
        "additionalProperties": False,
    }

    async def run(self, context: ToolContext, **kwargs: Any) -> ToolResult:
        jobs = self._scheduler.list()
        if not jobs:
            return ToolResult(for_llm="No scheduled jobs.")
        lines = [f"- {job.id}: '{job.label}' [{job.schedule}] -> {job.command}" for job in jobs]
        return ToolResult(for_llm="Scheduled jobs:\n" + "\n".join(lines))
