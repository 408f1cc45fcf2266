"""Blocking external command execution shared by the gh, git, and claude collaborators."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

DEFAULT_COMMAND_TIMEOUT_S = 120.0


class CommandError(RuntimeError):
    """Raised when an external command exits non-zero or times out."""

    def __init__(self, args: list[str], returncode: int, stderr: str) -> None:
        self.command = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = stderr.strip() or f"command exited with status {returncode}"
        super().__init__(f"{args[0] if args else 'command'}: {message}")


class CommandRunner(Protocol):
    def __call__(
        self,
        args: list[str],
        *,
        cwd: Path | str | None = None,
        input_text: str | None = None,
        timeout_s: float | None = None,
    ) -> str: ...


def run_command(
    args: list[str],
    *,
    cwd: Path | str | None = None,
    input_text: str | None = None,
    timeout_s: float | None = DEFAULT_COMMAND_TIMEOUT_S,
) -> str:
    """Run ``args`` and return stdout; raise ``CommandError`` on failure."""

    logger.debug("Running command: %s (cwd=%s)", " ".join(args[:3]), cwd)
    try:
        proc = subprocess.run(
            args,
            cwd=str(cwd) if cwd is not None else None,
            text=True,
            capture_output=True,
            input=input_text,
            timeout=timeout_s,
        )
    except subprocess.TimeoutExpired as exc:
        raise CommandError(args, -1, f"timed out after {exc.timeout}s") from exc
    except FileNotFoundError as exc:
        raise CommandError(args, 127, f"executable not found: {args[0]}") from exc
    if proc.returncode != 0:
        raise CommandError(args, proc.returncode, proc.stderr or proc.stdout)
    return proc.stdout


def run_git(
    repo_path: Path | str,
    args: list[str],
    runner: CommandRunner = run_command,
    timeout_s: float | None = DEFAULT_COMMAND_TIMEOUT_S,
) -> str:
    return runner(["git", *args], cwd=repo_path, timeout_s=timeout_s)
