"""The executor boundary the scheduler dispatches tasks to, and the shipped executors."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Protocol

from mob_build.config.resolver import ResolvedConfig
from mob_build.errors import AbortError, ExecutionError
from mob_build.http.downloader import DownloadCancelled, Downloader
from mob_build.tasks.commands import (
    CommandStep,
    CopyStep,
    DownloadStep,
    Phase,
    RemoveStep,
    Step,
    clean_requested,
    steps_for,
)
from mob_build.tasks.registry import TaskDescriptor
from mob_build.tasks.scheduler import CancellationToken

logger = logging.getLogger(__name__)

STDERR_TAIL_LINES = 20
TIMEOUT_EXIT_CODE = 124


class TaskExecutor(Protocol):
    """Runs one task; raises ExecutionError on failure, AbortError when cancelled."""

    async def execute(
        self,
        task: TaskDescriptor,
        config: ResolvedConfig,
        cancel: CancellationToken,
    ) -> None:
        """Execute every enabled phase of `task`."""


class PhaseExecutor:
    """Runs the clean, fetch and build/install phases of a task as external steps.

    With `global.dry` set, steps are logged instead of executed.
    """

    def __init__(self, *, downloader: Downloader | None = None) -> None:
        self._downloader = downloader or Downloader()

    async def execute(
        self,
        task: TaskDescriptor,
        config: ResolvedConfig,
        cancel: CancellationToken,
    ) -> None:
        name = task.canonical_name
        for phase in enabled_phases(config):
            if cancel.is_cancelled:
                raise AbortError(name, cancel.reason or "aborted")
            logger.debug("%s: %s phase", name, phase.value)
            for step in steps_for(phase, task, config):
                if cancel.is_cancelled:
                    raise AbortError(name, cancel.reason or "aborted")
                await self._run_step(name, step, config, cancel)

    async def _run_step(
        self,
        name: str,
        step: Step,
        config: ResolvedConfig,
        cancel: CancellationToken,
    ) -> None:
        if config["global.dry"]:
            logger.info("[dry-run] %s: %s", name, step.describe())
            return
        if isinstance(step, CommandStep):
            await self._run_command(name, step, config, cancel)
        elif isinstance(step, DownloadStep):
            await self._download(name, step, cancel)
        elif isinstance(step, (RemoveStep, CopyStep)):
            logger.info("%s: %s", name, step.describe())
            try:
                if isinstance(step, RemoveStep):
                    await asyncio.to_thread(_remove, name, step.path)
                else:
                    await asyncio.to_thread(_copy, name, step)
            except OSError as error:
                raise ExecutionError(name, f"{step.describe()} failed: {error}") from error
        else:
            raise TypeError(f"unexpected step {step!r}")

    async def _run_command(
        self,
        name: str,
        step: CommandStep,
        config: ResolvedConfig,
        cancel: CancellationToken,
    ) -> None:
        if step.when is not None and not step.when.exists():
            logger.debug("%s: skipping %s (%s missing)", name, step.describe(), step.when)
            return
        if step.creates is not None and step.creates.exists():
            logger.debug("%s: skipping %s (%s exists)", name, step.describe(), step.creates)
            return

        runner = CommandRunner(
            timeout_seconds=config["global.command_timeout"] or None,
            grace_seconds=config["global.shutdown_grace"],
        )
        try:
            await runner.run(name, step, cancel)
        except ExecutionError:
            if not step.fallback or cancel.is_cancelled:
                raise
            logger.warning("%s: %s failed, trying fallback", name, step.describe())
            fallback = CommandStep(
                argv=step.fallback,
                cwd=step.cwd,
                env=step.env,
                secrets=step.secrets,
            )
            await runner.run(name, fallback, cancel)

    async def _download(self, name: str, step: DownloadStep, cancel: CancellationToken) -> None:
        try:
            result = await self._downloader.download(
                step.url,
                step.destination,
                cancelled=lambda: cancel.is_cancelled,
            )
        except DownloadCancelled as error:
            raise AbortError(name, cancel.reason or "aborted") from error
        if not result.is_success:
            raise ExecutionError(name, f"download of {step.url} failed: {result.error}")


class CommandRunner:
    """Runs one external command, stopping it when the run is cancelled.

    Cancellation terminates the process, waits `grace_seconds`, then kills it.
    """

    def __init__(self, *, timeout_seconds: float | None = None, grace_seconds: float = 5.0) -> None:
        self.timeout_seconds = timeout_seconds
        self.grace_seconds = grace_seconds

    async def run(self, task: str, step: CommandStep, cancel: CancellationToken) -> None:
        logger.info("%s: %s", task, step.describe())
        if step.cwd is not None:
            step.cwd.mkdir(parents=True, exist_ok=True)
        env = {**os.environ, **step.env} if step.env else None
        try:
            process = await asyncio.create_subprocess_exec(
                *step.argv,
                cwd=step.cwd,
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as error:
            raise ExecutionError(task, f"command not found: {step.argv[0]}") from error
        except OSError as error:
            raise ExecutionError(task, f"failed to start {step.argv[0]}: {error}") from error

        communicate = asyncio.ensure_future(process.communicate())
        cancelled = asyncio.ensure_future(cancel.wait())
        try:
            done, _ = await asyncio.wait(
                {communicate, cancelled},
                timeout=self.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._terminate(process, communicate)
            raise
        finally:
            cancelled.cancel()

        if communicate not in done:
            await self._terminate(process, communicate)
            if cancel.is_cancelled:
                raise AbortError(task, cancel.reason or "aborted")
            raise ExecutionError(
                task,
                f"{step.describe()} timed out after {self.timeout_seconds}s",
                exit_code=TIMEOUT_EXIT_CODE,
            )

        stdout, stderr = communicate.result()
        _log_output(task, stdout)
        if process.returncode != 0:
            tail = _tail(stderr) or _tail(stdout)
            reason = f"{step.describe()} exited with code {process.returncode}"
            if tail:
                reason = f"{reason}: {tail}"
            raise ExecutionError(task, reason, exit_code=process.returncode)

    async def _terminate(
        self,
        process: asyncio.subprocess.Process,
        communicate: asyncio.Future,
    ) -> None:
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass
            try:
                await asyncio.wait_for(process.wait(), timeout=self.grace_seconds)
            except TimeoutError:
                try:
                    process.kill()
                except ProcessLookupError:
                    pass
                await process.wait()
        try:
            await communicate
        except (OSError, ValueError):
            logger.debug("Output of terminated process was not collected", exc_info=True)


def enabled_phases(config: ResolvedConfig) -> list[Phase]:
    """Phases switched on for this run, in execution order."""

    phases: list[Phase] = []
    if clean_requested(config):
        phases.append(Phase.CLEAN)
    if config["global.fetch_task"]:
        phases.append(Phase.FETCH)
    if config["global.build_task"]:
        phases.append(Phase.BUILD_AND_INSTALL)
    return phases


def _remove(task: str, path: Path) -> None:
    if path == Path(path.anchor):
        raise ExecutionError(task, f"refusing to remove filesystem root {path}")
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    else:
        path.unlink(missing_ok=True)


def _copy(task: str, step: CopyStep) -> None:
    if not step.source.exists():
        raise ExecutionError(task, f"{step.source} does not exist")
    if step.source.is_dir():
        shutil.copytree(step.source, step.destination, dirs_exist_ok=True)
    else:
        step.destination.mkdir(parents=True, exist_ok=True)
        shutil.copy2(step.source, step.destination)


def _tail(output: bytes | None) -> str:
    if not output:
        return ""
    lines = output.decode("utf-8", errors="replace").strip().splitlines()
    return "\n".join(lines[-STDERR_TAIL_LINES:])


def _log_output(task: str, output: bytes | None) -> None:
    if not output or not logger.isEnabledFor(logging.DEBUG):
        return
    for line in output.decode("utf-8", errors="replace").splitlines():
        logger.debug("%s | %s", task, line)
