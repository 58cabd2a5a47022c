"""Container bring-up via docker compose."""

from pathlib import Path
import re

import structlog

from mcp_control.commands import CommandRunner
from mcp_control.errors import ConfigurationError

logger = structlog.get_logger(__name__)


def host_port_pattern(internal_port: int) -> re.Pattern[str]:
    # - "127.0.0.1:19001:8080"  /  - 127.0.0.1:19001:8080/tcp
    return re.compile(rf"127\.0\.0\.1:(\d{{1,5}}):{internal_port}(?![0-9])")


def parse_host_port(
    compose_text: str, internal_port: int = 8080, source: str = "compose file"
) -> int:
    """Loopback host port mapped to ``internal_port``.

    Raises:
        ConfigurationError: zero or several such mappings.
    """
    pattern = host_port_pattern(internal_port)
    ports = [int(m.group(1)) for m in pattern.finditer(compose_text)]
    if len(ports) != 1:
        found = "no" if not ports else f"{len(ports)}"
        raise ConfigurationError(
            f"expected exactly one host port mapping in {source}, found {found} "
            f"(searched for 127.0.0.1:<port>:{internal_port})"
        )
    return ports[0]


class ContainerRuntime:
    """``docker compose`` against one generated compose file per project."""

    def __init__(self, runner: CommandRunner, repo_dir: Path, internal_port: int = 8080):
        self.runner = runner
        self.repo_dir = Path(repo_dir)
        self.internal_port = internal_port

    async def up(self, compose_file: Path) -> None:
        """Create or update the project's containers, building if needed."""
        if not compose_file.exists():
            raise ConfigurationError(f"compose file not found: {compose_file}")
        await self.runner.run(
            ["docker", "compose", "-f", str(compose_file), "up", "-d", "--build"],
            cwd=self.repo_dir,
        )
        logger.info("containers_up", compose_file=str(compose_file))

    def read_host_port(self, compose_file: Path) -> int:
        port = parse_host_port(
            compose_file.read_text(encoding="utf-8"),
            internal_port=self.internal_port,
            source=str(compose_file),
        )
        logger.info("host_port_resolved", compose_file=str(compose_file), host_port=port)
        return port
