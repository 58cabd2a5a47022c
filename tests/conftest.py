"""Shared fixtures: settings rooted in tmp_path and a fake process runner."""

from collections.abc import Callable, Sequence
from pathlib import Path

import pytest
import structlog

from mcp_control.commands import CommandResult, CommandRunner
from mcp_control.config import Settings
from mcp_control.errors import CommandError
from mcp_control.generator import GeneratorInvoker
from mcp_control.orchestrator import DeployOrchestrator

HOST_PORT = 19001

NGINX_SITE = """\
server {
    listen 443 ssl;
    server_name justgpt.ru;

    location / {
        return 404;
    }
}

server {
    listen 443 ssl;
    server_name mcp.justgpt.ru;

    location = /health {
        return 200;
    }

    location / {
        return 404;
    }
}
"""

COMPOSE_TEMPLATE = """\
services:
  mcp-{id}:
    build: ..
    env_file: .env
    ports:
      - "127.0.0.1:{port}:8080"
"""


class FakeCommandRunner(CommandRunner):
    """Records argv lists instead of spawning processes.

    ``handlers`` are consulted in order; the first one returning a
    CommandResult wins. A handler may also raise.
    """

    def __init__(self):
        super().__init__()
        self.calls: list[list[str]] = []
        self.handlers: list[Callable[[list[str]], CommandResult | None]] = []

    async def run(
        self,
        argv: Sequence[str],
        cwd: Path | None = None,
        timeout: float | None = None,
        check: bool = True,
    ) -> CommandResult:
        argv = [str(a) for a in argv]
        self.calls.append(argv)
        for handler in self.handlers:
            result = handler(argv)
            if result is not None:
                if check and not result.ok:
                    raise CommandError(argv, result.exit_code, result.stdout, result.stderr)
                return result
        return CommandResult(argv=argv, exit_code=0, stdout="", stderr="")

    def commands_containing(self, needle: str) -> list[list[str]]:
        return [c for c in self.calls if any(needle in part for part in c)]


def fake_generator(generator: GeneratorInvoker, port: int = HOST_PORT):
    """Handler that writes both descriptors when the generator init runs."""

    def handler(argv: list[str]) -> CommandResult | None:
        script = argv[-1]
        if "dist/cli.js init" not in script:
            return None
        project_id = script.split("--id ", 1)[1].split(" ", 1)[0]
        artifacts = generator.artifacts_for(project_id)
        descriptor = artifacts.project_descriptor
        descriptor.parent.mkdir(parents=True, exist_ok=True)
        descriptor.write_text('{"id": "%s"}\n' % project_id)
        compose = artifacts.compose_descriptor
        compose.parent.mkdir(parents=True, exist_ok=True)
        compose.write_text(COMPOSE_TEMPLATE.format(id=project_id, port=port))
        return CommandResult(argv=argv, exit_code=0, stdout="generated", stderr="")

    return handler


@pytest.fixture(autouse=True)
def reset_structlog():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    repo = tmp_path / "mcp-service"
    repo.mkdir()
    site = tmp_path / "nginx" / "justgpt.ru.https"
    site.parent.mkdir()
    site.write_text(NGINX_SITE)
    return Settings(
        registry_file=tmp_path / "data" / "projects.json",
        mcp_repo_dir=repo,
        mcp_env_file=repo / "deploy" / ".env",
        nginx_site=site,
        proxy_server_name="mcp.justgpt.ru",
        mcp_base_url="https://mcp.justgpt.ru",
        agent_token="agent-secret",
        generator_in_container=False,
    )


@pytest.fixture
def runner() -> FakeCommandRunner:
    return FakeCommandRunner()


@pytest.fixture
def orchestrator(settings: Settings, runner: FakeCommandRunner) -> DeployOrchestrator:
    orchestrator = DeployOrchestrator.from_settings(settings, runner=runner)
    runner.handlers.append(fake_generator(orchestrator.generator))
    return orchestrator
