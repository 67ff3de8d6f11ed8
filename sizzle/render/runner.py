"""Async FFmpeg/FFprobe subprocess runner with hard timeouts."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path

from sizzle.config import Settings, get_settings
from sizzle.exceptions import RenderStageError, StageTimeoutError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of a finished subprocess."""

    returncode: int
    stdout: str
    stderr: str
    elapsed_s: float


class FFmpegRunner:
    """
    Runs media tool commands as asyncio subprocesses.

    A command that overruns its timeout, or whose awaiting task is cancelled,
    is killed and reaped before the error propagates.
    """

    def __init__(self, settings: Settings | None = None):
        self.settings = settings or get_settings()

    def _tail(self, text: str) -> str:
        limit = self.settings.stderr_tail_chars
        return text[-limit:] if len(text) > limit else text

    async def run(self, cmd: list[str], stage: str, timeout_s: float | None = None) -> CommandResult:
        """
        Execute ``cmd`` and wait for it to exit.

        Raises:
            StageTimeoutError: If the process is still running after ``timeout_s``
            RenderStageError: If the executable is missing or exits non-zero
        """
        tool = os.path.basename(cmd[0])
        logger.debug(f"[{stage.upper()}] Command: {' '.join(cmd)}")
        started = time.monotonic()

        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise RenderStageError(f"{tool} executable not found: {cmd[0]}", stage=stage) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout_s)
        except asyncio.TimeoutError:
            await self._kill(proc)
            logger.error(f"[{stage.upper()}] {tool} timed out after {timeout_s}s, process killed")
            raise StageTimeoutError(stage, timeout_s) from None
        except asyncio.CancelledError:
            await self._kill(proc)
            raise

        elapsed = time.monotonic() - started
        result = CommandResult(
            returncode=proc.returncode,
            stdout=stdout.decode("utf-8", errors="replace"),
            stderr=stderr.decode("utf-8", errors="replace"),
            elapsed_s=elapsed,
        )

        if result.returncode != 0:
            stderr_tail = self._tail(result.stderr)
            logger.error(f"[{stage.upper()}] {tool} failed (exit {result.returncode}): {stderr_tail}")
            raise RenderStageError(
                f"{tool} exited with code {result.returncode}",
                stage=stage,
                returncode=result.returncode,
                stderr=stderr_tail,
            )

        logger.debug(f"[{stage.upper()}] {tool} finished in {elapsed:.2f}s")
        return result

    @staticmethod
    async def _kill(proc: asyncio.subprocess.Process) -> None:
        if proc.returncode is not None:
            return
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()

    async def probe_duration(self, path: str | Path, stage: str) -> float:
        """
        Read a media file's container duration in seconds.

        Raises:
            RenderStageError: If ffprobe fails or its output is not a duration
        """
        cmd = [
            self.settings.ffprobe_path,
            "-v", "error",
            "-show_entries", "format=duration",
            "-of", "default=noprint_wrappers=1:nokey=1",
            str(path),
        ]
        result = await self.run(cmd, stage, timeout_s=self.settings.probe_timeout_s)
        raw = result.stdout.strip()
        try:
            return float(raw)
        except ValueError:
            raise RenderStageError(
                f"Unreadable output: could not read duration of {Path(path).name} ({raw!r})",
                stage=stage,
                stderr=self._tail(result.stderr) or None,
            ) from None
