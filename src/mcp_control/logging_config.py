"""Structured logging for the control plane.

Console output for operators at a terminal, JSON for the agent container:

    from mcp_control.logging_config import setup_logging, get_logger

    setup_logging(service_name="mcp-agent", log_format="json")
    logger = get_logger(__name__)
    logger.info("route_inserted", mount_path="/p/demo/mcp", host_port=19001)
"""

import logging
import sys
from typing import Literal
import uuid

import structlog
from structlog.types import Processor


def setup_logging(
    service_name: str = "mcp-control",
    log_format: Literal["json", "console"] = "console",
    log_level: str = "INFO",
) -> None:
    """Configure structlog on top of stdlib logging.

    Args:
        service_name: Bound to every event as ``service``.
        log_format: "json" for machine consumption, "console" for humans.
        log_level: DEBUG, INFO, WARNING or ERROR.
    """
    numeric_level = getattr(logging, log_level.upper(), logging.INFO)

    # stderr keeps stdout clean for `--json` CLI output
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=numeric_level,
        force=True,
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(sort_keys=False))
    else:
        processors.append(
            structlog.dev.ConsoleRenderer(
                colors=sys.stderr.isatty(),
                exception_formatter=structlog.dev.plain_traceback,
            )
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    structlog.contextvars.bind_contextvars(service=service_name)
    structlog.get_logger(__name__).debug(
        "logging_initialized", log_format=log_format, log_level=log_level
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def bind_run_context(project_id: str, run_id: str | None = None) -> str:
    """Bind project and run ids to every event of the current provisioning run."""
    run_id = run_id or f"run_{uuid.uuid4().hex[:8]}"
    structlog.contextvars.bind_contextvars(project_id=project_id, run_id=run_id)
    return run_id


def clear_run_context() -> None:
    structlog.contextvars.unbind_contextvars("project_id", "run_id")
