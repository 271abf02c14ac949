"""CLI tools for ticket operators."""

import json
from uuid import UUID

import click

from ticketflow.db.base import Base
from ticketflow.db.session import SessionLocal, engine
from ticketflow.services import activity_service, queue_service, stats_service


def _ticket_line(ticket) -> str:
    priority = ticket.priority.value if ticket.priority else "unset"
    return f"T-{ticket.ticket_number:<5} [{ticket.status.value:<11}] ({priority}) {ticket.title}"


@click.group()
def cli():
    """Ticketflow CLI tools."""
    pass


@cli.command("init-db")
def init_db():
    """
    Create all tables on the configured database.

    Intended for local SQLite runs; production schemas are managed outside
    this tool.
    """
    Base.metadata.create_all(bind=engine)
    click.echo(f"✓ Tables created on {engine.url.render_as_string(hide_password=True)}")


@cli.command()
@click.option("--host", default="127.0.0.1", show_default=True)
@click.option("--port", type=int, default=8000, show_default=True)
def serve(host: str, port: int):
    """Run the HTTP API."""
    import uvicorn

    uvicorn.run("ticketflow.main:app", host=host, port=port)


@cli.command()
@click.option("--project", "project_id", default=None, help="Limit to one project")
def stats(project_id: str | None):
    """Print aggregate ticket statistics as JSON."""
    db = SessionLocal()
    try:
        result = stats_service.get_ticket_stats(db, project_id)
        click.echo(json.dumps(result.__dict__, indent=2, sort_keys=True))
    finally:
        db.close()


@cli.command()
@click.option("--project", "project_id", default=None, help="Limit to one project")
def pipeline(project_id: str | None):
    """Print dashboard pipeline stage counts."""
    db = SessionLocal()
    try:
        counts = stats_service.get_pipeline_counts(db, project_id)
        for stage, count in counts.__dict__.items():
            click.echo(f"{stage:<15} {count}")
    finally:
        db.close()


@cli.command("work-queue")
@click.option("--project", "project_id", default=None, help="Limit to one project")
def work_queue(project_id: str | None):
    """List approved tickets in work-priority order."""
    db = SessionLocal()
    try:
        queue = queue_service.get_work_queue(db, project_id)
        if not queue:
            click.echo("Work queue is empty")
            return
        for position, ticket in enumerate(queue, start=1):
            click.echo(f"{position:>3}. {_ticket_line(ticket)}")
    finally:
        db.close()


@cli.command("triage-batch")
@click.option("--project", "project_id", default=None, help="Limit to one project")
@click.option("--size", type=int, default=None, help="Batch size (default from settings)")
def triage_batch(project_id: str | None, size: int | None):
    """List the oldest untriaged tickets."""
    db = SessionLocal()
    try:
        for ticket in queue_service.get_triage_batch(db, project_id, size):
            click.echo(_ticket_line(ticket))
    finally:
        db.close()


@cli.command()
@click.argument("ticket_id", type=click.UUID)
def timeline(ticket_id: UUID):
    """Print the agent narrative for a ticket."""
    db = SessionLocal()
    try:
        click.echo(activity_service.get_timeline_for_agent(db, ticket_id))
    finally:
        db.close()


if __name__ == "__main__":
    cli()
