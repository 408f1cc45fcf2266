"""Code-generation collaborator: ``claude --print`` run against a working copy."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Protocol

from pm_agent.integrations.commands import CommandError, CommandRunner, run_command
from pm_agent.models.project_contracts import PlannedFeature

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 600.0
RETRYABLE_PATTERNS = (
    "network error",
    "connection refused",
    "timeout",
    "timed out",
    "econnrefused",
    "enotfound",
    "etimedout",
    "socket hang up",
    "rate limit",
    "503",
    "502",
    "500",
)


@dataclass(frozen=True)
class CodeGenerationResult:
    success: bool
    output: str
    error: str = ""
    attempts: int = 1


class CodeGenerator(Protocol):
    def run(
        self,
        work_dir: Path | str,
        prompt: str,
        timeout_s: float | None = None,
        allow_edits: bool | None = None,
    ) -> CodeGenerationResult: ...


def is_retryable_error(exc: Exception) -> bool:
    if isinstance(exc, CommandError) and exc.returncode == -1:
        return True
    message = str(exc).lower()
    return any(pattern in message for pattern in RETRYABLE_PATTERNS)


class ClaudeCliGenerator:
    """Runs the CLI non-interactively with the prompt on stdin; retries transient failures."""

    def __init__(
        self,
        runner: CommandRunner = run_command,
        executable: str = "claude",
        allow_edits: bool = True,
        max_attempts: int = 3,
        initial_delay_s: float = 1.0,
        max_delay_s: float = 10.0,
        backoff_multiplier: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.runner = runner
        self.executable = executable
        self.allow_edits = allow_edits
        self.max_attempts = max(1, max_attempts)
        self.initial_delay_s = initial_delay_s
        self.max_delay_s = max_delay_s
        self.backoff_multiplier = backoff_multiplier
        self._sleep = sleep

    def _args(self, allow_edits: bool) -> list[str]:
        args = [self.executable, "--print"]
        if allow_edits:
            args.append("--dangerously-skip-permissions")
        return args

    def run(
        self,
        work_dir: Path | str,
        prompt: str,
        timeout_s: float | None = None,
        allow_edits: bool | None = None,
    ) -> CodeGenerationResult:
        timeout = timeout_s or DEFAULT_TIMEOUT_S
        args = self._args(self.allow_edits if allow_edits is None else allow_edits)
        delay = self.initial_delay_s
        for attempt in range(1, self.max_attempts + 1):
            try:
                logger.info("Running code generation in %s (timeout %.0fs)", work_dir, timeout)
                output = self.runner(
                    args, cwd=work_dir, input_text=prompt, timeout_s=timeout
                )
                return CodeGenerationResult(success=True, output=output, attempts=attempt)
            except CommandError as exc:
                if attempt == self.max_attempts or not is_retryable_error(exc):
                    logger.error("Code generation failed after %d attempt(s): %s", attempt, exc)
                    return CodeGenerationResult(
                        success=False,
                        output=exc.stderr,
                        error=str(exc),
                        attempts=attempt,
                    )
                logger.warning(
                    "Code generation attempt %d/%d failed, retrying in %.1fs: %s",
                    attempt,
                    self.max_attempts,
                    delay,
                    exc,
                )
                self._sleep(delay)
                delay = min(delay * self.backoff_multiplier, self.max_delay_s)
        return CodeGenerationResult(success=False, output="", error="no attempts made", attempts=0)


def build_project_prompt(
    name: str,
    description: str,
    tech_stack: list[str],
    features: list[PlannedFeature],
) -> str:
    core = "\n".join(
        f"- {feature.name}: {feature.description}"
        for feature in features
        if feature.priority == "core"
    )
    important = "\n".join(
        f"- {feature.name}: {feature.description}"
        for feature in features
        if feature.priority == "important"
    )
    return (
        "Create a complete project with the following specifications:\n\n"
        f"Project: {name}\n"
        f"Description: {description}\n\n"
        f"Tech Stack: {', '.join(tech_stack)}\n\n"
        "Core Features (must implement):\n"
        f"{core or '- Basic project structure'}\n\n"
        "Important Features (implement if possible):\n"
        f"{important or '- None specified'}\n\n"
        "Requirements:\n"
        "1. Create all necessary files and directories\n"
        "2. Set up proper project configuration\n"
        "3. Include a README.md with setup instructions\n"
        "4. Add basic .gitignore\n"
        "5. Make the project immediately runnable after installing dependencies\n\n"
        "Please create this project structure and implement the core features."
    )
