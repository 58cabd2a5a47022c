"""Generator invocation.

The external generator (``mcp-service init``) writes two files per project:
a project descriptor and a docker compose file. Both are treated as owned by
the operator once they exist, so a re-run never regenerates them.
"""

from dataclasses import dataclass
from pathlib import Path
import shlex

import structlog

from mcp_control.commands import HostShell
from mcp_control.errors import ConfigurationError
from mcp_control.models import ProjectType

logger = structlog.get_logger(__name__)


@dataclass
class GeneratorArtifacts:
    project_descriptor: Path
    compose_descriptor: Path

    def missing(self) -> list[Path]:
        return [p for p in (self.project_descriptor, self.compose_descriptor) if not p.exists()]


def build_init_script(
    project_id: str,
    project_type: ProjectType,
    mount_path: str,
    data_file: Path | None = None,
) -> str:
    """Shell script that builds the generator and runs ``init`` once."""
    init_args = [
        "node",
        "dist/cli.js",
        "init",
        "--id",
        project_id,
        "--type",
        project_type.value,
        "--path",
        mount_path,
    ]
    if data_file is not None:
        init_args += ["--data-file", str(data_file)]
    init_args += ["--no-update-env-example", "--no-update-nginx"]

    return (
        # dependency install is best-effort; a stale node_modules still builds
        "npm install --silent >/dev/null 2>&1 || true; "
        "npm run build >/dev/null && "
        + " ".join(shlex.quote(a) for a in init_args)
    )


class GeneratorInvoker:
    """Produces missing descriptors, at most one generator run per call."""

    def __init__(
        self,
        shell: HostShell,
        project_descriptor_template: str = "projects/{id}/project.json",
        compose_descriptor_template: str = "deploy/docker-compose.nginx.{id}.yml",
    ):
        self.shell = shell
        self.project_descriptor_template = project_descriptor_template
        self.compose_descriptor_template = compose_descriptor_template

    def artifacts_for(self, project_id: str) -> GeneratorArtifacts:
        repo = self.shell.repo_dir
        return GeneratorArtifacts(
            project_descriptor=repo / self.project_descriptor_template.format(id=project_id),
            compose_descriptor=repo / self.compose_descriptor_template.format(id=project_id),
        )

    async def ensure_descriptors(
        self,
        project_id: str,
        project_type: ProjectType,
        mount_path: str,
        data_file: Path | None = None,
    ) -> bool:
        """Generate descriptors unless both already exist.

        Returns:
            True if the generator ran, False if it was skipped.

        Raises:
            CommandError: checkout sync or generator run failed.
            ConfigurationError: generator ran but files are still missing.
        """
        artifacts = self.artifacts_for(project_id)
        if not artifacts.missing():
            logger.info("descriptors_present", project_id=project_id)
            return False

        logger.info(
            "descriptors_generating",
            project_id=project_id,
            missing=[str(p) for p in artifacts.missing()],
        )
        await self.shell.sync_checkout()
        await self.shell.run(build_init_script(project_id, project_type, mount_path, data_file))

        still_missing = artifacts.missing()
        if still_missing:
            raise ConfigurationError(
                "generator did not produce expected files: "
                + ", ".join(str(p) for p in still_missing)
            )
        logger.info("descriptors_generated", project_id=project_id)
        return True
