"""
Command Line Interface for Permit Workflow.
"""

import asyncio
from typing import Optional

import typer
import uvicorn
from rich import print as rprint
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from ..config import get_settings
from ..db.base import drop_database, get_session_local, init_database
from ..db.store import PermitStore
from ..errors import PermitError
from ..log_config import configure_logging
from ..schemas.enums import Role
from ..services import coerce_enum

app = typer.Typer(help="Permit Workflow - work permit approval, renewal and closure")
console = Console()

STATUS_STYLES = {
    "Pending Review": "yellow",
    "Pending Approval": "yellow",
    "Active": "green",
    "Renewal Pending Review": "cyan",
    "Renewal Pending Approval": "cyan",
    "Closure Pending Review": "magenta",
    "Closure Pending Approval": "magenta",
    "Closed": "blue",
    "Rejected": "red",
}


@app.callback()
def main():
    """Permit Workflow command line."""
    configure_logging()


def _store() -> PermitStore:
    settings = get_settings()
    return PermitStore(
        get_session_local()(),
        id_prefix=settings.permit_id_prefix,
        id_start=settings.permit_id_start,
    )


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, help="Port to run the API server on"),
    host: Optional[str] = typer.Option(None, help="Host to bind the server to"),
    dev: bool = typer.Option(False, help="Reload on code changes"),
):
    """Run the HTTP API."""
    settings = get_settings()
    host = host or settings.api_host
    port = port or settings.api_port
    rprint(Panel.fit(f"Starting Permit Workflow on http://{host}:{port}", style="bold blue"))
    uvicorn.run(
        "permit_workflow.main:app",
        host=host,
        port=port,
        reload=dev,
        workers=1 if dev else settings.api_workers,
    )


@app.command("init-db")
def init_db(
    drop: bool = typer.Option(False, "--drop", help="Drop every table first"),
):
    """Create the database tables."""
    if drop:
        typer.confirm("Drop all permit tables?", abort=True)
        asyncio.run(drop_database())
        console.print("Dropped all tables")
    asyncio.run(init_database())
    console.print("[green]Database ready[/green]")


@app.command("add-user")
def add_user(
    email: str = typer.Argument(..., help="Identity the user signs in with"),
    name: str = typer.Argument(..., help="Display name"),
    role: str = typer.Option(..., help="Requester, Reviewer or Approver"),
):
    """Register a user, or change an existing user's name and role."""
    store = _store()
    try:
        user = store.add_user(email, name, coerce_enum(Role, role, "role"))
    except PermitError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.db.close()
    console.print(f"Registered {user.email} as {user.role}")


@app.command()
def users():
    """List the user directory."""
    store = _store()
    try:
        rows = store.list_users()
        table = Table(title="Users", show_header=True, header_style="bold magenta")
        table.add_column("Email", style="cyan")
        table.add_column("Name")
        table.add_column("Role", style="green")
        for user in rows:
            table.add_row(user.email, user.name, user.role)
    finally:
        store.db.close()
    console.print(table)


@app.command()
def show(permit_id: str = typer.Argument(..., help="Permit identifier, e.g. WP-1001")):
    """Show one permit with its renewals."""
    store = _store()
    try:
        snapshot = store.load_permit(permit_id)
    except PermitError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(code=1)
    finally:
        store.db.close()

    style = STATUS_STYLES.get(snapshot.status.value, "white")
    table = Table(title=snapshot.permit_id, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Status", f"[{style}]{snapshot.status.value}[/{style}]")
    table.add_row("Work type", snapshot.document.work_type or "-")
    table.add_row("Location", snapshot.document.location or "-")
    table.add_row("Requester", snapshot.requester_email)
    table.add_row("Reviewer", snapshot.reviewer_email)
    table.add_row("Approver", snapshot.approver_email)
    table.add_row("Valid", f"{snapshot.valid_from:%Y-%m-%d %H:%M} - {snapshot.valid_to:%Y-%m-%d %H:%M} UTC")
    table.add_row("Revision", str(snapshot.revision))
    console.print(table)

    if snapshot.renewals:
        renewals = Table(title="Renewals", show_header=True, header_style="bold magenta")
        renewals.add_column("#")
        renewals.add_column("Window")
        renewals.add_column("Status")
        renewals.add_column("Requested by")
        for record in snapshot.renewals:
            renewals.add_row(
                str(record.sequence),
                f"{record.valid_from:%Y-%m-%d %H:%M} - {record.valid_to:%H:%M}",
                record.status.value,
                record.requested_by,
            )
        console.print(renewals)


if __name__ == "__main__":
    app()
