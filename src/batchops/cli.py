"""batchops CLI entry point."""

import click
import uvicorn

from batchops.config import settings


@click.group()  # type: ignore[untyped-decorator]
@click.version_option(version=settings.app_version)  # type: ignore[untyped-decorator]
def main() -> None:
    """batchops - chunked batch operations over user records."""


@main.command()  # type: ignore[untyped-decorator]
@click.option("--host", default=settings.api_host, help="API host")  # type: ignore[untyped-decorator]
@click.option("--port", default=settings.api_port, type=int, help="API port")  # type: ignore[untyped-decorator]
@click.option("--reload", is_flag=True, help="Enable auto-reload for development")  # type: ignore[untyped-decorator]
def serve(host: str, port: int, reload: bool) -> None:
    """Start the batchops API server."""
    uvicorn.run(
        "batchops.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_config=None,
    )


@main.command()  # type: ignore[untyped-decorator]
@click.option("--show-secrets", is_flag=True, help="Print connection strings unmasked")  # type: ignore[untyped-decorator]
def config(show_secrets: bool) -> None:
    """Show the effective configuration."""
    click.echo(f"batchops v{settings.app_version}")
    for name, value in settings.model_dump().items():
        if name in {"database_url", "redis_url"} and not show_secrets:
            value = _mask_url(str(value))
        click.echo(f"{name}: {value}")


def _mask_url(url: str) -> str:
    scheme, sep, rest = url.partition("://")
    creds, at, host = rest.rpartition("@")
    if not sep or not at:
        return url
    user = creds.split(":", 1)[0]
    return f"{scheme}://{user}:***@{host}"


if __name__ == "__main__":
    main()
