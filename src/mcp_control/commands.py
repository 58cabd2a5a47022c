"""External process boundary.

Everything that shells out (git, the generator, docker compose, nginx) goes
through a ``CommandRunner`` so the orchestrator can be exercised against a
fake in tests.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
import shlex
import time

import structlog

from mcp_control.errors import CommandError

logger = structlog.get_logger(__name__)

# Output preview length for logging
OUTPUT_PREVIEW_LENGTH = 2000


@dataclass
class CommandResult:
    """Completed process."""

    argv: list[str]
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner:
    """Runs argv lists with asyncio subprocesses."""

    def __init__(self, default_timeout: float = 900.0):
        self.default_timeout = default_timeout

    async def run(
        self,
        argv: Sequence[str],
        cwd: Path | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        """Run a command to completion.

        Raises:
            CommandError: non-zero exit (when ``check``) or timeout. A timed
                out process is killed before raising.
        """
        argv = [str(a) for a in argv]
        timeout = timeout or self.default_timeout
        start = time.monotonic()
        logger.info("command_start", command=argv[0], argv=argv, cwd=str(cwd) if cwd else None)

        try:
            process = await asyncio.create_subprocess_exec(
                *argv,
                cwd=str(cwd) if cwd else None,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise CommandError(argv, None, message=f"command not found: {argv[0]}") from e

        try:
            stdout_b, stderr_b = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except TimeoutError as e:
            process.kill()
            await process.wait()
            logger.error("command_timeout", command=argv[0], timeout=timeout)
            raise CommandError(
                argv, None, message=f"command timed out after {timeout}s: {' '.join(argv)}"
            ) from e

        result = CommandResult(
            argv=argv,
            exit_code=process.returncode if process.returncode is not None else -1,
            stdout=stdout_b.decode("utf-8", errors="replace"),
            stderr=stderr_b.decode("utf-8", errors="replace"),
        )
        duration_ms = round((time.monotonic() - start) * 1000, 2)

        if not result.ok:
            logger.error(
                "command_failed",
                command=argv[0],
                exit_code=result.exit_code,
                duration_ms=duration_ms,
                stdout=result.stdout[:OUTPUT_PREVIEW_LENGTH],
                stderr=result.stderr[:OUTPUT_PREVIEW_LENGTH],
            )
            if check:
                raise CommandError(argv, result.exit_code, result.stdout, result.stderr)
        else:
            logger.info("command_success", command=argv[0], duration_ms=duration_ms)

        return result


class HostShell:
    """Runs shell scripts against the generator checkout.

    With ``in_container`` the script runs in an ephemeral container that
    mounts the checkout at the same path, so the host only needs docker:

        docker run --rm -v REPO:REPO -w REPO IMAGE sh -lc '<prelude><script>'
    """

    def __init__(
        self,
        runner: CommandRunner,
        repo_dir: Path,
        image: str = "node:22-alpine",
        in_container: bool = True,
    ):
        self.runner = runner
        self.repo_dir = Path(repo_dir)
        self.image = image
        self.in_container = in_container

    def _prelude(self) -> str:
        # git is not in the node image; both lines are best-effort
        repo = shlex.quote(str(self.repo_dir))
        return (
            "apk add --no-cache git >/dev/null 2>&1 || true; "
            f"git config --global --add safe.directory {repo} >/dev/null 2>&1 || true; "
        )

    def build_argv(self, script: str) -> list[str]:
        if not self.in_container:
            return ["sh", "-lc", script]
        repo = str(self.repo_dir)
        return [
            "docker",
            "run",
            "--rm",
            "-v",
            f"{repo}:{repo}",
            "-w",
            repo,
            self.image,
            "sh",
            "-lc",
            self._prelude() + script,
        ]

    async def run(self, script: str, timeout: float | None = None) -> CommandResult:
        return await self.runner.run(self.build_argv(script), cwd=self.repo_dir, timeout=timeout)

    async def sync_checkout(self) -> CommandResult:
        """Fast-forward the checkout to the latest upstream revision."""
        return await self.run("git pull --ff-only")
