# Simple CLI for SmartDesk
import asyncio
import click

from app.containers import AppContainer
from core.config.validator import validate_startup_configuration
from core.logging import configure_logging


@click.group()
def cli():
    """SmartDesk CLI"""
    pass


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True)
@click.option("--port", default=8000, show_default=True, type=int)
@click.option("--reload", is_flag=True, help="Reload on code changes (development only)")
def api(host, port, reload):
    """Run the API server"""
    click.echo("🚀 Starting SmartDesk API server...")
    from api.main import run as run_api
    run_api(host=host, port=port, reload=reload)


async def _init_db(container: AppContainer):
    db_manager = container.db_manager()
    try:
        await db_manager.init()
    finally:
        await db_manager.shutdown()


@cli.command("init-db")
def init_db():
    """Create database tables"""
    container = AppContainer()
    configure_logging(container.settings())
    click.echo("🗄️  Creating database tables...")
    asyncio.run(_init_db(container))
    click.echo("✅ Database ready")


@cli.command("check-config")
@click.option("--connections/--no-connections", default=True, help="Also probe database and Redis")
def check_config(connections):
    """Validate configuration before starting"""
    container = AppContainer()
    settings = container.settings()
    configure_logging(settings)
    ok = asyncio.run(validate_startup_configuration(settings, check_connections=connections))
    if not ok:
        raise click.ClickException("Configuration validation failed")
    click.echo("✅ Configuration valid")


if __name__ == "__main__":
    cli()
