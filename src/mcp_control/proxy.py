"""Reverse-proxy routes in the shared nginx site file.

The site file holds a dedicated server block for MCP projects::

    server {
        ...
        server_name mcp.justgpt.ru;
        ...
        location = /p/demo/mcp { ... }   <- inserted here, one per project
        location / {
            return 404;
        }
    }

Insertion is a pure text transform. Validation and reload are separate
process calls made only when the text actually changed.
"""

from pathlib import Path

import structlog

from mcp_control.commands import CommandRunner
from mcp_control.errors import ConfigurationError
from mcp_control.files import atomic_write_text

logger = structlog.get_logger(__name__)

FALLBACK_ANCHOR = "\n    location / {\n        return 404;\n    }\n"
NEXT_SERVER_BLOCK = "\nserver {"


def location_line(mount_path: str) -> str:
    return f"    location = {mount_path} {{"


def render_location_block(mount_path: str, host_port: int) -> str:
    return (
        f"\n{location_line(mount_path)}\n"
        f"        proxy_pass http://127.0.0.1:{host_port};\n"
        "        proxy_set_header Host $host;\n"
        "        proxy_set_header X-Forwarded-Proto $scheme;\n"
        "        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;\n"
        '        proxy_set_header Connection "";\n'
        "    }\n"
    )


def ensure_location(
    text: str,
    mount_path: str,
    host_port: int,
    server_name: str,
    source: str = "proxy config",
) -> tuple[str, bool]:
    """Insert a location block for ``mount_path`` unless one exists.

    Returns:
        (new_text, changed)

    Raises:
        ConfigurationError: server block or fallback location not found.
    """
    if f"\n{location_line(mount_path)}\n" in f"\n{text}":
        return text, False

    marker = f"\n    server_name {server_name};\n"
    marker_pos = text.find(marker)
    if marker_pos < 0:
        raise ConfigurationError(
            f"proxy block not found in {source}: searched for {marker.strip()!r}"
        )

    block_end = text.find(NEXT_SERVER_BLOCK, marker_pos + len(marker))
    if block_end < 0:
        block_end = len(text)
    anchor_pos = text.find(FALLBACK_ANCHOR, marker_pos, block_end)
    if anchor_pos < 0:
        raise ConfigurationError(
            f"proxy insertion point not found in {source}: no 'location / {{ return 404; }}' "
            f"in the server block for {server_name}"
        )

    block = render_location_block(mount_path, host_port)
    return text[:anchor_pos] + block + text[anchor_pos:], True


class NginxRoutePatcher:
    """Edits the shared site file and drives the nginx process."""

    def __init__(self, runner: CommandRunner, site_file: Path, server_name: str):
        self.runner = runner
        self.site_file = Path(site_file)
        self.server_name = server_name

    def ensure_route(self, mount_path: str, host_port: int) -> bool:
        """Returns True when the site file was modified."""
        try:
            text = self.site_file.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ConfigurationError(f"proxy config not found: {self.site_file}") from e

        new_text, changed = ensure_location(
            text, mount_path, host_port, self.server_name, source=str(self.site_file)
        )
        if not changed:
            logger.info("proxy_route_present", mount_path=mount_path)
            return False

        atomic_write_text(self.site_file, new_text)
        logger.info("proxy_route_inserted", mount_path=mount_path, host_port=host_port)
        return True

    async def validate(self) -> None:
        await self.runner.run(["nginx", "-t"])

    async def reload(self) -> None:
        await self.runner.run(["nginx", "-s", "reload"])
        logger.info("proxy_reloaded")
