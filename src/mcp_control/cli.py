"""Operator CLI: register, list and deploy projects on this host."""

import asyncio
import json
from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.table import Table
import typer

from mcp_control.config import get_settings
from mcp_control.errors import ControlPlaneError
from mcp_control.logging_config import setup_logging
from mcp_control.models import ProjectType
from mcp_control.orchestrator import DeployOrchestrator

console = Console()

app = typer.Typer(no_args_is_help=True)
projects_app = typer.Typer(no_args_is_help=True)
app.add_typer(projects_app, name="projects", help="Manage registered MCP projects")


def get_orchestrator() -> DeployOrchestrator:
    settings = get_settings()
    setup_logging(settings.service_name, settings.log_format, settings.log_level)
    return DeployOrchestrator.from_settings(settings)


@app.callback()
def callback():
    """
    MCP control plane
    """


@projects_app.command("list")
def list_projects(json_output: bool = typer.Option(False, "--json", help="Output as JSON")):
    """List registered projects"""
    projects = get_orchestrator().list_projects()

    if json_output:
        typer.echo(json.dumps({"projects": [p.to_json_dict() for p in projects]}, indent=2))
        return

    if not projects:
        console.print("[yellow]No projects registered[/yellow]")
        return

    table = Table("ID", "Type", "Mount path", "Status", "Host port", "Last deploy")
    for p in projects:
        table.add_row(
            p.id,
            p.type.value,
            p.mount_path,
            p.status.value,
            str(p.host_port) if p.host_port is not None else "-",
            p.last_deploy_at.isoformat() if p.last_deploy_at else "-",
        )
    console.print(table)


@projects_app.command("register")
def register(
    project_id: str = typer.Argument(..., help="Lowercase letters, digits, dash and underscore"),
    project_type: ProjectType = typer.Option(..., "--type", "-t"),
    mount_path: str | None = typer.Option(None, "--mount-path", "-p"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Register a project or update its type and mount path"""
    try:
        project = get_orchestrator().upsert_project(project_id, project_type, mount_path)
    except ControlPlaneError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(e.message)}")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps(project.to_json_dict(), indent=2))
        return

    console.print(f"[bold green]✓ Project {project.id} registered[/bold green]")
    console.print(f"Mount path: [cyan]{project.mount_path}[/cyan]")
    console.print(f"Token env:  [magenta]{project.token_env_name}[/magenta]")


@projects_app.command("deploy")
def deploy(
    project_id: str = typer.Argument(...),
    project_type: ProjectType | None = typer.Option(None, "--type", "-t"),
    mount_path: str | None = typer.Option(None, "--mount-path", "-p"),
    source_url: str | None = typer.Option(None, "--source-url", help="http(s) JSON source"),
    source_file: Path | None = typer.Option(
        None, "--source-file", exists=True, dir_okay=False, help="Local JSON used as inline source"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
):
    """Provision a registered project on this host"""
    source_inline = source_file.read_text(encoding="utf-8") if source_file else None
    orchestrator = get_orchestrator()

    try:
        result = asyncio.run(
            orchestrator.provision(
                project_id,
                project_type=project_type,
                mount_path=mount_path,
                source_url=source_url,
                source_inline=source_inline,
            )
        )
    except ControlPlaneError as e:
        console.print(f"[bold red]Error:[/bold red] {escape(e.message)}")
        raise typer.Exit(code=1) from None

    if json_output:
        typer.echo(json.dumps(result.to_json_dict(), indent=2))
        return

    console.print(f"[bold green]✓ Project {result.id} deployed[/bold green]")
    console.print(f"Endpoint:  [cyan]{result.endpoint}[/cyan]")
    console.print(f"Host port: {result.host_port}")
    console.print(f"Proxy changed: {result.proxy_changed}")
    console.print(f"Token env: [magenta]{result.token_env_name}[/magenta]")
    if result.token:
        console.print(f"Token (shown once): [bold]{result.token}[/bold]")


@app.command()
def serve(
    host: str | None = typer.Option(None, "--host"),
    port: int | None = typer.Option(None, "--port"),
):
    """Run the HTTP facade"""
    import uvicorn

    from mcp_control.api import create_app

    settings = get_settings()
    uvicorn.run(create_app(settings), host=host or settings.host, port=port or settings.port)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
