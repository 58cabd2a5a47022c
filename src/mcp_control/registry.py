"""Project registry backed by a single JSON file.

File layout::

    {"projects": [{"id": "demo", "type": "json", "mountPath": "/p/demo/mcp", ...}]}

Each mutation is a full load, transform and atomic save. The in-process lock
serializes read-modify-write cycles; nothing coordinates separate processes.
"""

import json
from pathlib import Path
import threading

import structlog

from mcp_control.files import atomic_write_text, read_text_or_empty
from mcp_control.models import (
    Project,
    ProjectStatus,
    ProjectType,
    SourceKind,
    default_mount_path,
    utcnow,
    validate_mount_path,
    validate_project_id,
)

logger = structlog.get_logger(__name__)


class ProjectRegistry:
    """Durable id -> Project mapping."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def load(self) -> list[Project]:
        """All projects; an absent or empty file is an empty registry."""
        raw = read_text_or_empty(self.path).strip()
        if not raw:
            return []
        parsed = json.loads(raw)
        if not isinstance(parsed, dict):
            return []
        records = parsed.get("projects")
        if not isinstance(records, list):
            return []
        return [Project.model_validate(record) for record in records]

    def get(self, project_id: str) -> Project | None:
        return next((p for p in self.load() if p.id == project_id), None)

    def save(self, projects: list[Project]) -> None:
        payload = {"projects": [p.to_json_dict() for p in projects]}
        atomic_write_text(self.path, json.dumps(payload, indent=2, ensure_ascii=False) + "\n")

    def upsert(
        self,
        project_id: str,
        project_type: ProjectType | str,
        mount_path: str | None = None,
        source_url: str | None = None,
        source_kind: SourceKind | None = None,
    ) -> Project:
        """Insert a draft project or update the mutable fields of an existing one.

        ``id``, ``createdAt``, ``status`` and deploy results are never touched
        on update. Source references are only overwritten when supplied; a
        supplied ``source_kind`` always rewrites ``source_url`` along with it.
        """
        project_id = validate_project_id(project_id)
        project_type = ProjectType(project_type)
        mount_path = (mount_path or "").strip() or default_mount_path(project_id)
        mount_path = validate_mount_path(mount_path)

        with self._lock:
            projects = self.load()
            existing = next((p for p in projects if p.id == project_id), None)

            if existing is not None:
                existing.type = project_type
                existing.mount_path = mount_path
                if source_kind is not None:
                    # url and kind describe one payload; an inline run clears the url
                    existing.source_kind = source_kind
                    existing.source_url = source_url
                elif source_url is not None:
                    existing.source_url = source_url
                project = existing
                logger.info("project_updated", project_id=project_id, type=project_type.value)
            else:
                project = Project(
                    id=project_id,
                    type=project_type,
                    mount_path=mount_path,
                    source_url=source_url,
                    source_kind=source_kind,
                )
                projects.append(project)
                logger.info("project_created", project_id=project_id, type=project_type.value)

            self.save(projects)
            return project

    def mark_deployed(
        self,
        project_id: str,
        host_port: int | None = None,
        proxy_changed: bool | None = None,
    ) -> Project | None:
        """Flip status to deployed and stamp lastDeployAt.

        Returns None for an unknown id; nothing is created in that case.
        """
        with self._lock:
            projects = self.load()
            project = next((p for p in projects if p.id == project_id), None)
            if project is None:
                logger.warning("mark_deployed_unknown_project", project_id=project_id)
                return None

            project.status = ProjectStatus.DEPLOYED
            project.last_deploy_at = utcnow()
            if host_port is not None:
                project.host_port = host_port
            if proxy_changed is not None:
                project.proxy_changed = proxy_changed

            self.save(projects)
            logger.info(
                "project_marked_deployed",
                project_id=project_id,
                host_port=project.host_port,
                proxy_changed=project.proxy_changed,
            )
            return project
