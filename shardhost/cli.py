import click


@click.group()
def main() -> None:
    """Shardhost - game-server workload control plane."""


@main.command()
@click.option("--host", default=None, help="Bind host (default: from SHARDHOST_HOST or 0.0.0.0).")
@click.option("--port", default=None, type=int, help="Bind port (default: from SHARDHOST_PORT or 8000).")
@click.option("--reload", is_flag=True, default=False, help="Enable auto-reload for development.")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Start the control plane API server."""
    import uvicorn

    from shardhost.control_plane.settings import ShardSettings

    settings = ShardSettings()

    uvicorn.run(
        "shardhost.control_plane.app:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level="warning",  # uvicorn's own logging is intercepted by loguru
        # Console sessions get the drain timeout; the extra 30s covers
        # Docker client close and DB dispose.
        timeout_graceful_shutdown=settings.graceful_shutdown_timeout + 30,
    )


# ---------------------------------------------------------------------------
# Container runtime
# ---------------------------------------------------------------------------


@main.group()
def runtime() -> None:
    """Container runtime checks and maintenance."""


@runtime.command()
def check() -> None:
    """Verify the Docker Engine is reachable."""
    import asyncio

    from shardhost.control_plane.errors import RuntimeAPIError, RuntimeUnreachableError
    from shardhost.control_plane.runtime.docker import DockerRuntime
    from shardhost.control_plane.settings import ShardSettings

    settings = ShardSettings()

    async def _ping() -> dict:
        client = DockerRuntime(settings.docker_url)
        try:
            return await client.ping()
        finally:
            await client.close()

    try:
        info = asyncio.run(_ping())
    except (RuntimeAPIError, RuntimeUnreachableError) as exc:
        raise click.ClickException(f"Docker unavailable: {exc}") from exc
    click.echo(f"Docker OK: {info['containers']} containers, {info['images']} images.")


@runtime.command()
@click.option("--image", default=None, help="Image to pull (default: SHARDHOST_IMAGE).")
def pull(image: str | None) -> None:
    """Pre-pull the workload image so the first launch is fast."""
    import asyncio

    from shardhost.control_plane.errors import RuntimeAPIError, RuntimeUnreachableError
    from shardhost.control_plane.log import setup_logging
    from shardhost.control_plane.runtime.docker import DockerRuntime
    from shardhost.control_plane.settings import ShardSettings

    settings = ShardSettings()
    setup_logging(settings.log_level, serialize=settings.log_json)
    target = image or settings.image

    async def _pull() -> None:
        client = DockerRuntime(settings.docker_url)
        try:
            await client.pull_image(target)
        finally:
            await client.close()

    try:
        asyncio.run(_pull())
    except (RuntimeAPIError, RuntimeUnreachableError) as exc:
        raise click.ClickException(f"Pull of {target} failed: {exc}") from exc
    click.echo(f"Pulled {target}.")


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


def _alembic_config():
    """Build an Alembic Config from the package's alembic.ini.

    Both alembic.ini and the alembic/ directory live inside the package,
    so this works whether running from source or from an installed package.
    """
    from pathlib import Path

    from alembic.config import Config

    ini_path = Path(__file__).parent / "control_plane" / "alembic.ini"
    return Config(str(ini_path))


@main.group()
def db() -> None:
    """Database migration and management commands."""


@db.command()
@click.option("--revision", default="head", help="Target revision (default: head).")
def upgrade(revision: str) -> None:
    """Run database migrations forward."""
    from alembic import command

    command.upgrade(_alembic_config(), revision)
    click.echo(f"Database upgraded to {revision}.")


@db.command()
@click.option("--revision", default="-1", help="Target revision (default: -1, one step back).")
def downgrade(revision: str) -> None:
    """Roll back database migrations."""
    from alembic import command

    command.downgrade(_alembic_config(), revision)
    click.echo(f"Database downgraded to {revision}.")


@db.command()
@click.argument("message")
def migrate(message: str) -> None:
    """Autogenerate a new migration from model changes."""
    from alembic import command

    command.revision(_alembic_config(), message=message, autogenerate=True)
    click.echo(f"Migration generated: {message}")


@db.command()
def current() -> None:
    """Show current database revision."""
    from alembic import command

    command.current(_alembic_config(), verbose=True)


@db.command()
def history() -> None:
    """Show migration history."""
    from alembic import command

    command.history(_alembic_config(), verbose=True)


if __name__ == "__main__":
    main()
