"""Deploy orchestrator.

One provisioning run walks a fixed sequence of stages::

    start -> source-resolved -> descriptors-ready -> credentialed
          -> container-up -> route-ensured -> done

Any stage error aborts the run (stage ``failed``) and propagates unchanged.
Already applied side effects are kept; every stage is idempotent, so calling
``provision`` again converges instead of rolling back.
"""

import asyncio
from collections import defaultdict
from enum import Enum

from mcp_control.commands import CommandRunner, HostShell
from mcp_control.config import Settings
from mcp_control.containers import ContainerRuntime
from mcp_control.credentials import CredentialProvisioner
from mcp_control.errors import NotFoundError
from mcp_control.generator import GeneratorInvoker
from mcp_control.logging_config import bind_run_context, clear_run_context, get_logger
from mcp_control.models import (
    Project,
    ProjectType,
    ProvisionResult,
    SourceMeta,
    validate_project_id,
)
from mcp_control.proxy import NginxRoutePatcher
from mcp_control.registry import ProjectRegistry
from mcp_control.sources import SourceResolver

logger = get_logger(__name__)


class DeployStage(str, Enum):
    START = "start"
    SOURCE_RESOLVED = "source-resolved"
    DESCRIPTORS_READY = "descriptors-ready"
    CREDENTIALED = "credentialed"
    CONTAINER_UP = "container-up"
    ROUTE_ENSURED = "route-ensured"
    DONE = "done"
    FAILED = "failed"


class DeployOrchestrator:
    """Sequences source, generator, credentials, containers and proxy."""

    def __init__(
        self,
        registry: ProjectRegistry,
        sources: SourceResolver,
        generator: GeneratorInvoker,
        credentials: CredentialProvisioner,
        containers: ContainerRuntime,
        proxy: NginxRoutePatcher,
        base_url: str = "",
    ):
        self.registry = registry
        self.sources = sources
        self.generator = generator
        self.credentials = credentials
        self.containers = containers
        self.proxy = proxy
        self.base_url = base_url.rstrip("/")
        # Same-id runs in this process are serialized; different ids run freely
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    @classmethod
    def from_settings(
        cls, settings: Settings, runner: CommandRunner | None = None
    ) -> "DeployOrchestrator":
        runner = runner or CommandRunner(default_timeout=settings.command_timeout_sec)
        shell = HostShell(
            runner,
            settings.mcp_repo_dir,
            image=settings.generator_image,
            in_container=settings.generator_in_container,
        )
        return cls(
            registry=ProjectRegistry(settings.registry_file),
            sources=SourceResolver(
                settings.resolved_sources_dir,
                timeout=settings.fetch_timeout_sec,
                max_bytes=settings.max_source_bytes,
            ),
            generator=GeneratorInvoker(
                shell,
                project_descriptor_template=settings.project_descriptor_template,
                compose_descriptor_template=settings.compose_descriptor_template,
            ),
            credentials=CredentialProvisioner(settings.mcp_env_file),
            containers=ContainerRuntime(
                runner, settings.mcp_repo_dir, internal_port=settings.internal_service_port
            ),
            proxy=NginxRoutePatcher(runner, settings.nginx_site, settings.proxy_server_name),
            base_url=settings.mcp_base_url,
        )

    # Registry operations

    def list_projects(self) -> list[Project]:
        return self.registry.load()

    def upsert_project(
        self,
        project_id: str,
        project_type: ProjectType | str,
        mount_path: str | None = None,
    ) -> Project:
        return self.registry.upsert(project_id, project_type, mount_path)

    def endpoint_for(self, project: Project) -> str:
        return f"{self.base_url}{project.mount_path}"

    # Provisioning

    async def provision(
        self,
        project_id: str,
        project_type: ProjectType | str | None = None,
        mount_path: str | None = None,
        source_url: str | None = None,
        source_inline: str | None = None,
    ) -> ProvisionResult:
        """Run the full pipeline for a registered project.

        ``project_type`` and ``mount_path`` default to the registered values;
        supplied values are written back to the registry first.

        Raises:
            NotFoundError: project is not registered.
            ValidationError, UpstreamError, ConfigurationError: from the
                failing stage.
        """
        project_id = validate_project_id(project_id)
        async with self._locks[project_id]:
            run_id = bind_run_context(project_id)
            try:
                return await self._run(
                    project_id, project_type, mount_path, source_url, source_inline
                )
            finally:
                logger.debug("provision_finished", run_id=run_id)
                clear_run_context()

    async def _run(
        self,
        project_id: str,
        project_type: ProjectType | str | None,
        mount_path: str | None,
        source_url: str | None,
        source_inline: str | None,
    ) -> ProvisionResult:
        stage = DeployStage.START
        logger.info("provision_start", stage=stage.value)
        try:
            project = self.registry.get(project_id)
            if project is None:
                raise NotFoundError(f"project not found: {project_id}")
            if project_type is not None or mount_path:
                project = self.registry.upsert(
                    project_id,
                    project_type if project_type is not None else project.type,
                    mount_path or project.mount_path,
                )

            source_meta: SourceMeta | None = None
            data_file = None
            if project.type == ProjectType.JSON:
                resolved = await self.sources.resolve(project_id, source_url, source_inline)
                source_meta = resolved.meta
                data_file = resolved.data_path
                logger.info(
                    "source_resolved", kind=resolved.kind.value, changed=resolved.changed
                )
                self.registry.upsert(
                    project_id,
                    project.type,
                    project.mount_path,
                    source_url=resolved.meta.source_url,
                    source_kind=resolved.kind,
                )
            stage = self._advance(DeployStage.SOURCE_RESOLVED)

            await self.generator.ensure_descriptors(
                project_id, project.type, project.mount_path, data_file
            )
            stage = self._advance(DeployStage.DESCRIPTORS_READY)

            grant = self.credentials.ensure_token(project_id)
            stage = self._advance(DeployStage.CREDENTIALED)

            compose_file = self.generator.artifacts_for(project_id).compose_descriptor
            await self.containers.up(compose_file)
            host_port = self.containers.read_host_port(compose_file)
            stage = self._advance(DeployStage.CONTAINER_UP)

            proxy_changed = self.proxy.ensure_route(project.mount_path, host_port)
            if proxy_changed:
                await self.proxy.validate()
                await self.proxy.reload()
            stage = self._advance(DeployStage.ROUTE_ENSURED)

            deployed = self.registry.mark_deployed(
                project_id, host_port=host_port, proxy_changed=proxy_changed
            )
            if deployed is None:
                raise NotFoundError(f"project not found: {project_id}")
            stage = self._advance(DeployStage.DONE)
        except Exception as e:
            logger.error(
                "provision_failed",
                stage=DeployStage.FAILED.value,
                failed_after=stage.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        return ProvisionResult(
            id=project_id,
            mount_path=deployed.mount_path,
            endpoint=self.endpoint_for(deployed),
            host_port=host_port,
            token_env_name=grant.env_name,
            token=grant.token if grant.created else None,
            proxy_changed=proxy_changed,
            source=source_meta,
        )

    def _advance(self, stage: DeployStage) -> DeployStage:
        logger.info("provision_stage", stage=stage.value)
        return stage
