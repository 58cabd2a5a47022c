"""MCP control plane - registers MCP projects and provisions them on one host."""

from mcp_control.models import Project, ProjectType, ProvisionResult
from mcp_control.orchestrator import DeployOrchestrator

__all__ = ["DeployOrchestrator", "Project", "ProjectType", "ProvisionResult"]
