"""HTTP facade over the registry and the deploy orchestrator."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import secrets
import time
import uuid

from fastapi import Depends, FastAPI, Header, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel
import structlog

from mcp_control.config import Settings, get_settings
from mcp_control.errors import AgentUnconfiguredError, AuthError, ControlPlaneError
from mcp_control.logging_config import get_logger, setup_logging
from mcp_control.models import ProjectType
from mcp_control.orchestrator import DeployOrchestrator

logger = get_logger(__name__)


class ProjectIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    type: ProjectType
    mount_path: str | None = None


class DeployIn(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    type: ProjectType | None = None
    mount_path: str | None = None
    source_url: str | None = None
    source_inline: str | None = None


def create_app(
    settings: Settings | None = None,
    orchestrator: DeployOrchestrator | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    orchestrator = orchestrator or DeployOrchestrator.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        setup_logging(settings.service_name, settings.log_format, settings.log_level)
        if not settings.agent_token:
            logger.warning("agent_token_missing", hint="deploy endpoint will answer 503")
        yield

    app = FastAPI(
        title="MCP Control Plane",
        description="Registers MCP projects and provisions them on this host",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.middleware("http")
    async def correlation_middleware(request: Request, call_next):
        correlation_id = request.headers.get("X-Correlation-ID", f"req_{uuid.uuid4().hex[:8]}")
        structlog.contextvars.bind_contextvars(
            correlation_id=correlation_id, method=request.method, path=request.url.path
        )
        start = time.time()
        try:
            response = await call_next(request)
            duration_ms = round((time.time() - start) * 1000, 2)
            if response.status_code >= 500:  # noqa: PLR2004
                logger.error(
                    "http_request_failed", status_code=response.status_code, duration_ms=duration_ms
                )
            else:
                logger.info(
                    "http_request", status_code=response.status_code, duration_ms=duration_ms
                )
            return response
        finally:
            structlog.contextvars.unbind_contextvars("correlation_id", "method", "path")

    @app.exception_handler(ControlPlaneError)
    async def control_plane_error_handler(request: Request, exc: ControlPlaneError):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.message})

    @app.exception_handler(RequestValidationError)
    async def request_validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "invalid request body", "details": jsonable_encoder(exc.errors())},
        )

    def require_agent_token(
        x_agent_token: str | None = Header(default=None, alias="X-Agent-Token"),
    ) -> None:
        if not settings.agent_token:
            raise AgentUnconfiguredError("agent token is not configured on this host")
        if not x_agent_token or not secrets.compare_digest(x_agent_token, settings.agent_token):
            raise AuthError("unauthorized")

    @app.get("/health")
    async def health():
        return {"ok": True}

    @app.get("/api/projects")
    def list_projects():
        return {"projects": [p.to_json_dict() for p in orchestrator.list_projects()]}

    @app.post("/api/projects", status_code=status.HTTP_201_CREATED)
    def upsert_project(body: ProjectIn):
        project = orchestrator.upsert_project(body.id, body.type, body.mount_path)
        return {
            "project": project.to_json_dict(),
            "next": {
                "endpoint": orchestrator.endpoint_for(project),
                "tokenEnvName": project.token_env_name,
            },
        }

    @app.post("/api/projects/{project_id}/deploy", dependencies=[Depends(require_agent_token)])
    async def deploy_project(project_id: str, body: DeployIn | None = None):
        body = body or DeployIn()
        result = await orchestrator.provision(
            project_id,
            project_type=body.type,
            mount_path=body.mount_path,
            source_url=body.source_url,
            source_inline=body.source_inline,
        )
        return result.to_json_dict()

    return app
