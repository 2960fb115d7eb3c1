"""Invocation of the external renderer command line."""

import logging
import os
import shlex
import signal
import subprocess
from dataclasses import dataclass
from typing import Sequence


logger = logging.getLogger(__name__)

# How long to wait for output after killing a timed out process
POST_KILL_DRAIN_SECS = 5


@dataclass
class ToolResult:
    """Outcome of one renderer invocation."""

    exited_normally: bool
    exit_code: int
    stdout: str
    stderr: str

    @property
    def succeeded(self) -> bool:
        return self.exited_normally and self.exit_code == 0


def kill_process_tree(process: subprocess.Popen) -> None:
    """Kill process and everything in its process group. Failures are logged."""
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except OSError as e:
        logger.warning(f"Failed to kill process {process.pid}: {e}")


class RendererCli:
    """Runs the renderer as a subprocess with a wall-clock timeout."""

    def __init__(self, command: str = "book-renderer"):
        self.command = shlex.split(command)

    def run_tool(self, args: Sequence[str], timeout_seconds: float) -> ToolResult:
        """Run the renderer with args and wait up to timeout_seconds.

        stdout and stderr are drained concurrently by communicate(), so a
        process filling one pipe cannot block on the other. A process still
        running at the timeout is killed along with any children it started,
        and reported with exited_normally=False. A command that cannot be
        started is reported the same way, with the error in stderr.
        """
        argv = self.command + list(args)
        logger.debug(f"Running: {shlex.join(argv)}")

        try:
            process = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                errors="replace",
                start_new_session=True,
            )
        except OSError as e:
            logger.error(f"Failed to start {argv[0]}: {e}")
            return ToolResult(exited_normally=False, exit_code=-1, stdout="", stderr=str(e))

        exited_normally = True
        try:
            stdout, stderr = process.communicate(timeout=timeout_seconds)
        except subprocess.TimeoutExpired:
            exited_normally = False
            kill_process_tree(process)
            try:
                stdout, stderr = process.communicate(timeout=POST_KILL_DRAIN_SECS)
            except subprocess.TimeoutExpired:
                logger.warning(f"Output of killed process {process.pid} was not closed, discarding it")
                stdout, stderr = "", ""
        except BaseException:
            kill_process_tree(process)
            raise

        if stdout and stdout.strip():
            logger.debug(f"Standard out: {stdout}")
        if stderr and stderr.strip():
            logger.debug(f"Standard error: {stderr}")

        return ToolResult(
            exited_normally=exited_normally,
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout or "",
            stderr=stderr or "",
        )
