"""Per-project bearer tokens in the shared env file.

The file is plain ``KEY=VALUE`` lines read by docker compose. Merging is a
pure text function so it can be tested without touching disk.
"""

from dataclasses import dataclass
from pathlib import Path
import secrets

import structlog

from mcp_control.files import atomic_write_text, read_text_or_empty
from mcp_control.models import token_env_name

logger = structlog.get_logger(__name__)

TOKEN_BYTES = 32


def generate_token() -> str:
    """URL-safe rendering of 32 random bytes."""
    return secrets.token_urlsafe(TOKEN_BYTES)


def read_env_value(text: str, key: str) -> str | None:
    """Value of the last ``key=`` line, or None."""
    value = None
    prefix = f"{key}="
    for line in text.splitlines():
        if line.startswith(prefix):
            value = line[len(prefix) :]
    return value


def set_env_line(text: str, key: str, value: str) -> str:
    """Replace or append ``key=value``; other lines are kept as they are.

    The result always ends with exactly one newline.
    """
    prefix = f"{key}="
    lines = text.splitlines()
    found = False
    out: list[str] = []
    for line in lines:
        if line.startswith(prefix):
            if not found:
                out.append(f"{key}={value}")
                found = True
            continue
        out.append(line)
    while out and out[-1] == "":
        out.pop()
    if not found:
        out.append(f"{key}={value}")
    return "\n".join(out) + "\n"


@dataclass
class TokenGrant:
    env_name: str
    token: str
    created: bool


class CredentialProvisioner:
    """Ensures each project has a token without ever rotating one."""

    def __init__(self, env_file: Path):
        self.env_file = Path(env_file)

    def ensure_token(self, project_id: str) -> TokenGrant:
        env_name = token_env_name(project_id)
        text = read_text_or_empty(self.env_file)
        existing = read_env_value(text, env_name)
        if existing:
            logger.info("token_reused", project_id=project_id, env_name=env_name)
            return TokenGrant(env_name=env_name, token=existing, created=False)

        token = generate_token()
        atomic_write_text(self.env_file, set_env_line(text, env_name, token))
        logger.info("token_created", project_id=project_id, env_name=env_name)
        return TokenGrant(env_name=env_name, token=token, created=True)
