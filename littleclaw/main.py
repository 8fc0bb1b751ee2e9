"""Application entrypoint."""

from __future__ import annotations

import argparse
import asyncio
import logging
import shutil
import signal
from pathlib import Path

from littleclaw.agent_runtime import AgentRuntime
from littleclaw.bus import MessageBus
from littleclaw.config import Settings, allowed_user_ids, load_settings
from littleclaw.heartbeat import Heartbeat
from littleclaw.llm.openai_compat import OpenAICompatibleProvider
from littleclaw.memory import MemoryStore
from littleclaw.scheduler import JobScheduler
from littleclaw.telegram_adapter import CHANNEL as TELEGRAM_CHANNEL
from littleclaw.telegram_adapter import TelegramAdapter
from littleclaw.tools.file_tools import AppendFileTool, ReadFileTool, SendFileTool, WriteFileTool
from littleclaw.tools.registry import ToolRegistry
from littleclaw.tools.shell_tool import ExecTool
from littleclaw.tools.skills import ReloadSkillsTool, SkillLoader, SkillManager

LOGGER = logging.getLogger(__name__)


def build_tool_registry(workspace: Path, exec_timeout_seconds: float) -> ToolRegistry:
    """Register the workspace tools and load skills from ``<workspace>/skills``."""

    tools = ToolRegistry()
    tools.register(ReadFileTool(workspace))
    tools.register(WriteFileTool(workspace))
    tools.register(AppendFileTool(workspace))
    tools.register(SendFileTool(workspace))
    tools.register(ExecTool(workspace, timeout_seconds=exec_timeout_seconds))

    skills = SkillManager(SkillLoader(workspace / "skills", workspace, exec_timeout_seconds), tools)
    tools.register(ReloadSkillsTool(skills))
    skills.reload()
    return tools


async def run(settings: Settings) -> None:
    """Initialize app layers and run until SIGINT/SIGTERM."""

    workspace = settings.workspace.expanduser().resolve()
    workspace.mkdir(parents=True, exist_ok=True)

    bus = MessageBus()
    memory = MemoryStore(workspace, rotate_bytes=settings.history_rotate_bytes)
    scheduler = JobScheduler(
        data_file=workspace / "CRON.json",
        workspace=workspace,
        bus=bus,
        memory=memory,
        exec_timeout_seconds=settings.exec_timeout_seconds,
    )
    runtime = AgentRuntime(
        llm=OpenAICompatibleProvider(settings),
        tool_registry=build_tool_registry(workspace, settings.exec_timeout_seconds),
        memory=memory,
        bus=bus,
        scheduler=scheduler,
        max_iterations=settings.max_iterations,
    )
    heartbeat = Heartbeat(runtime, settings.heartbeat_interval_seconds)
    telegram = TelegramAdapter(
        token=settings.telegram_bot_token,
        bus=bus,
        allowed_user_ids=allowed_user_ids(settings),
        download_dir=workspace / "downloads",
    )
    bus.register_channel(TELEGRAM_CHANNEL, telegram)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    tasks = [
        asyncio.create_task(bus.dispatch(runtime.handle_message), name="bus-dispatch"),
        asyncio.create_task(scheduler.run_forever(), name="job-scheduler"),
        asyncio.create_task(heartbeat.run_forever(), name="heartbeat"),
        asyncio.create_task(telegram.poll_forever(), name="telegram-poll"),
    ]
    LOGGER.info("Littleclaw started with workspace %s", workspace)

    try:
        await stop.wait()
    finally:
        LOGGER.info("Shutting down Littleclaw...")
        heartbeat.stop()
        scheduler.stop()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await runtime.shutdown()
        await telegram.close()
        LOGGER.info("Littleclaw shutdown complete")


def reset_workspace(workspace: Path, assume_yes: bool = False) -> bool:
    """Delete all memory, jobs, skills and downloads in ``workspace``."""

    if not assume_yes:
        answer = input(
            f"Delete all memory, history, entities, jobs and files in {workspace}? (y/N): "
        )
        if answer.strip().lower() != "y":
            print("Reset cancelled.")
            return False
    shutil.rmtree(workspace, ignore_errors=True)
    print(f"Workspace {workspace} has been reset.")
    return True


def main() -> None:
    """Synchronous wrapper for asyncio entrypoint."""

    parser = argparse.ArgumentParser(prog="littleclaw", description="Personal always-on chat agent.")
    subcommands = parser.add_subparsers(dest="command")
    subcommands.add_parser("run", help="start the agent (default)")
    reset_parser = subcommands.add_parser("reset", help="wipe the agent workspace")
    reset_parser.add_argument("-y", "--yes", action="store_true", help="do not ask for confirmation")
    args = parser.parse_args()

    settings = load_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "reset":
        reset_workspace(settings.workspace.expanduser(), assume_yes=args.yes)
        return
    asyncio.run(run(settings))


if __name__ == "__main__":
    main()
