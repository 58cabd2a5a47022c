"""Data models for the project registry and provisioning runs."""

from datetime import UTC, datetime
from enum import Enum
import re

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from mcp_control.errors import InvalidIdError, ValidationError

PROJECT_ID_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]*$")
MOUNT_PATH_PATTERN = re.compile(r"^/[A-Za-z0-9/_.-]*$")

_NON_ALNUM_RUN = re.compile(r"[^A-Z0-9]+")


def utcnow() -> datetime:
    return datetime.now(UTC)


def validate_project_id(project_id: str) -> str:
    """Return the trimmed id or raise InvalidIdError."""
    value = (project_id or "").strip()
    if not value:
        raise InvalidIdError("project id is empty")
    if not PROJECT_ID_PATTERN.match(value):
        raise InvalidIdError(
            f"bad project id {value!r}: must match [a-z0-9][a-z0-9_-]*"
        )
    return value


def token_env_name(project_id: str) -> str:
    """Environment variable holding the project's bearer token.

    >>> token_env_name("demo-1")
    'MCP_DEMO_1_BEARER_TOKEN'
    """
    return f"MCP_{_NON_ALNUM_RUN.sub('_', project_id.upper())}_BEARER_TOKEN"


def default_mount_path(project_id: str) -> str:
    return f"/p/{project_id}/mcp"


def validate_mount_path(mount_path: str) -> str:
    """Return the trimmed path; it is spliced into the proxy config verbatim."""
    value = mount_path.strip()
    if not MOUNT_PATH_PATTERN.fullmatch(value):
        raise ValidationError(
            f"bad mount path {value!r}: must match /[A-Za-z0-9/_.-]*"
        )
    return value


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )

    def to_json_dict(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


class ProjectType(str, Enum):
    """Backend kinds the generator knows how to scaffold."""

    JSON = "json"
    OPENAPI = "openapi"
    POSTGRES = "postgres"
    MYSQL = "mysql"


class ProjectStatus(str, Enum):
    DRAFT = "draft"
    DEPLOYED = "deployed"


class SourceKind(str, Enum):
    """Where the payload of a json project came from."""

    URL = "url"
    INLINE = "inline"
    EMPTY = "empty"
    EXISTING = "existing"


class Project(CamelModel):
    """Registry record."""

    id: str
    type: ProjectType
    mount_path: str
    token_env_name: str = ""
    status: ProjectStatus = ProjectStatus.DRAFT
    created_at: datetime = Field(default_factory=utcnow)
    last_deploy_at: datetime | None = None
    host_port: int | None = None
    proxy_changed: bool | None = None
    source_url: str | None = None
    source_kind: SourceKind | None = None

    @model_validator(mode="after")
    def _derive_token_env_name(self) -> "Project":
        # Always derived from id, whatever the stored value was.
        self.token_env_name = token_env_name(self.id)
        return self


class SourceMeta(CamelModel):
    """Provenance of the payload persisted for a json project."""

    provenance: SourceKind
    source_url: str | None = None
    fetched_at: datetime = Field(default_factory=utcnow)
    http_status: int | None = None
    byte_size: int
    content_hash: str
    etag: str | None = None
    last_modified: str | None = None


class ProvisionResult(CamelModel):
    """Outcome of one successful provisioning run."""

    ok: bool = True
    id: str
    mount_path: str
    endpoint: str
    host_port: int
    token_env_name: str
    token: str | None = Field(
        default=None,
        description="Only set when the token was generated by this run",
    )
    proxy_changed: bool
    source: SourceMeta | None = None

    def to_json_dict(self) -> dict:
        data = super().to_json_dict()
        if self.token is None:
            data.pop("token")
        return data
