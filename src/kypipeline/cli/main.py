"""AsyncClick CLI for operating the KY pipeline.

Provides operator commands:
- init-db: Create tables in the configured database
- serve: Run the HTTP service
- log: Show an entry's approval trail and verify its hash chain
- analyze: Compute the risk factor of one photo
"""

import asyncclick as click
import structlog

from kypipeline.core.config import load_config
from kypipeline.core.errors import KyPipelineError

logger = structlog.get_logger()


async def init_db(db_url: str):
    """Initialize database engine and session factory. Returns engine for cleanup."""
    from kypipeline.core.persistence.database import create_session_factory, init_database
    engine = await init_database(db_url)
    create_session_factory(engine)
    return engine


@click.group()
@click.pass_context
async def cli(ctx):
    """KY pipeline - approval, photo risk factor and LINE broadcast service"""
    ctx.ensure_object(dict)
    ctx.obj["config"] = load_config()


@cli.command("init-db")
@click.pass_context
async def init_db_command(ctx):
    """Create database tables."""
    config = ctx.obj["config"]
    engine = await init_db(config.database_url)
    await engine.dispose()
    click.echo(f"[+] Database ready: {config.database_url}")


@cli.command()
@click.option("--host", default=None, help="Bind address (default: HOST env or 0.0.0.0)")
@click.option("--port", "-p", type=int, default=None, help="Bind port (default: PORT env or 8080)")
@click.pass_context
async def serve(ctx, host: str | None, port: int | None):
    """Run the HTTP service.

    Examples:
        kypipeline serve
        kypipeline serve --port 9000
    """
    from kypipeline.api import create_app, run_app

    config = ctx.obj["config"]
    engine = await init_db(config.database_url)

    try:
        app = create_app(config)
        click.echo(f"[*] Serving on {host or config.host}:{port or config.port}")
        await run_app(app, host or config.host, port or config.port)
    finally:
        await engine.dispose()


@cli.command()
@click.argument("ky_entry_id")
@click.pass_context
async def log(ctx, ky_entry_id: str):
    """Show the approval trail of a KY entry and verify its integrity.

    Examples:
        kypipeline log 6f1c0a4e-...
    """
    from kypipeline.core.persistence.audit import list_approval_log, verify_approval_chain
    from kypipeline.core.persistence.database import get_session

    config = ctx.obj["config"]
    engine = await init_db(config.database_url)

    try:
        async with get_session() as session:
            records = await list_approval_log(session, ky_entry_id)
            valid = await verify_approval_chain(session, ky_entry_id)

        if not records:
            click.echo(f"[!] No approval records for {ky_entry_id}")
            return

        for record in records:
            actor = record.actor_id or "-"
            note = f"  {record.note}" if record.note else ""
            click.echo(f"{record.id:>6}  {record.created_at.isoformat()}  {record.action:<9}  {actor}{note}")

        if valid:
            click.echo(f"[+] Chain intact ({len(records)} records)")
        else:
            click.echo("[-] Chain verification FAILED: approval trail has been altered")
            ctx.exit(1)
    finally:
        await engine.dispose()


@cli.command()
@click.argument("image_url")
@click.pass_context
async def analyze(ctx, image_url: str):
    """Compute the photo risk factor for IMAGE_URL."""
    from kypipeline.coordinator import PipelineCoordinator

    config = ctx.obj["config"]
    coordinator = PipelineCoordinator(config)

    try:
        analysis = await coordinator.analyze_photo(image_url)
    except KyPipelineError as e:
        click.echo(f"[-] Analysis failed: {e.message}")
        ctx.exit(1)

    click.echo(f"[+] Image factor: {analysis.image_factor:.2f}")
    for name, value in analysis.details.model_dump().items():
        click.echo(f"    {name}: {'yes' if value else 'no'}")


if __name__ == "__main__":
    cli()
