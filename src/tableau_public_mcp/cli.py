"""
CLI for the Tableau Public MCP server.

Commands:
- serve: Start the MCP server
- info: Show configuration
- get: Fetch a JSON resource through the cache
- image: Fetch and optimize an image, reporting size metrics
"""

import asyncio
import json
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.table import Table

from .config import Settings, load_settings
from .errors import ConfigError, GatewayError, describe_error
from .logging import setup_logging

app = typer.Typer(
    name="tableau-public-mcp",
    help="MCP server for the Tableau Public API",
)
console = Console(stderr=True)


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj


def _parse_params(values: list[str]) -> dict[str, str]:
    params = {}
    for item in values:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"expected key=value, got '{item}'", param_hint="--param")
        params[key] = value
    return params


def _report_error(error: GatewayError, context: str) -> None:
    message, details = describe_error(error, context)
    logger.error("{}: {}", message, error)
    console.print(f"[red]Error: {message}[/]")
    for key, value in details.items():
        if value is not None:
            console.print(f"  {key}: {value}")


@app.callback()
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Tableau Public MCP - cached API access and image optimization."""
    try:
        settings = load_settings()
    except ConfigError as e:
        console.print(f"[red]{e}[/]")
        raise typer.Exit(2)

    log_level = "DEBUG" if verbose else settings.log_level
    setup_logging(level=log_level, json_output=settings.log_json)
    logger.debug("CLI initialized with log level: {}", log_level)
    ctx.obj = settings


@app.command()
def serve(
    ctx: typer.Context,
    transport: str = typer.Option(
        "stdio", "--transport", "-t", help="Transport: stdio or http"
    ),
    host: str | None = typer.Option(None, "--host", "-h", help="Host to bind to (http)"),
    port: int | None = typer.Option(None, "--port", "-p", help="Port to bind to (http)"),
):
    """Start the MCP server."""
    from .gateway import ResourceGateway
    from .server import create_server

    settings = _settings(ctx)
    if transport not in ("stdio", "http"):
        console.print(f"[red]Unknown transport: {transport}[/]")
        raise typer.Exit(2)

    mcp = create_server(ResourceGateway(settings))

    if transport == "stdio":
        logger.info("Starting MCP server on stdio")
        mcp.run(transport="stdio")
        return

    host = host or settings.host
    port = port or settings.port
    logger.info("Starting MCP server on {}:{}", host, port)
    console.print("[bold blue]Starting Tableau Public MCP Server[/]")
    console.print(f"MCP endpoint: http://{host}:{port}/mcp")
    mcp.run(transport="http", host=host, port=port, path="/mcp")


@app.command()
def info(ctx: typer.Context):
    """Show configuration."""
    settings = _settings(ctx)
    logger.debug("Displaying configuration")

    table = Table(title="Settings")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("Base URL", settings.base_url)
    table.add_row("API Timeout", f"{settings.api_timeout}s")
    table.add_row("Cache", "enabled" if settings.cache_enabled else "[yellow]disabled[/]")
    table.add_row("Cache Max Entries", str(settings.cache_max_entries))
    table.add_row("Cache Default TTL", f"{settings.cache_default_ttl}s")
    table.add_row("Max Concurrency", str(settings.max_concurrency))
    table.add_row("Batch Delay", f"{settings.batch_delay_ms}ms")
    table.add_row(
        "Image Defaults",
        f"{settings.image_max_width}x{settings.image_max_height}, "
        f"{settings.image_format} q{settings.image_quality}",
    )
    table.add_row("Image Token Limit", str(settings.image_token_limit))
    table.add_row("Log Level", settings.log_level)

    console.print(table)


@app.command()
def get(
    ctx: typer.Context,
    path: str = typer.Argument(..., help="API path, e.g. /profile/api/username"),
    param: list[str] = typer.Option([], "--param", "-p", help="Query parameter as key=value"),
    repeat: int = typer.Option(1, "--repeat", "-r", help="Issue the request N times concurrently"),
    bypass_cache: bool = typer.Option(False, "--bypass-cache", help="Skip cached data"),
):
    """Fetch a JSON resource through the cache and print it."""
    from .gateway import ResourceGateway

    settings = _settings(ctx)
    params = _parse_params(param)
    logger.info("Fetching {} (params={}, repeat={})", path, params, repeat)

    async def run_get():
        async with ResourceGateway(settings) as gateway:
            results = await asyncio.gather(
                *(
                    gateway.get(path, params or None, bypass_cache=bypass_cache)
                    for _ in range(max(1, repeat))
                )
            )
            return results[0], gateway.stats()

    try:
        data, stats = asyncio.run(run_get())
    except GatewayError as e:
        _report_error(e, f"fetching '{path}'")
        raise typer.Exit(1)

    typer.echo(json.dumps(data, indent=2, default=str))
    console.print(
        f"[dim]fetches={stats['fetches']} coalesced={stats['coalesced']} "
        f"hits={stats['hits']} misses={stats['misses']}[/]"
    )


@app.command()
def image(
    ctx: typer.Context,
    url: str = typer.Argument(..., help="Image URL"),
    max_width: int | None = typer.Option(None, "--max-width", "-W", help="Maximum width"),
    max_height: int | None = typer.Option(None, "--max-height", "-H", help="Maximum height"),
    quality: int | None = typer.Option(None, "--quality", "-q", help="Quality 1-100"),
    fmt: str | None = typer.Option(None, "--format", "-f", help="jpeg, webp or png"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Write the image here"),
):
    """Fetch and optimize an image, then report size and token metrics."""
    from pydantic import ValidationError

    from .gateway import ResourceGateway
    from .images import ImageOptions

    settings = _settings(ctx)
    overrides = {
        "max_width": max_width,
        "max_height": max_height,
        "quality": quality,
        "format": fmt,
    }
    try:
        options = ImageOptions.from_settings(settings).model_copy(
            update={k: v for k, v in overrides.items() if v is not None}
        )
        options = ImageOptions.model_validate(options.model_dump())
    except ValidationError as e:
        console.print(f"[red]Invalid image options: {e}[/]")
        raise typer.Exit(2)

    async def run_image():
        async with ResourceGateway(settings) as gateway:
            if output:
                return await gateway.save_image(url, str(output), options)
            return await gateway.process_image(url, options)

    try:
        result = asyncio.run(run_image())
    except GatewayError as e:
        _report_error(e, f"fetching and optimizing image '{url}'")
        raise typer.Exit(1)

    within_limit = result.estimated_tokens <= settings.image_token_limit
    table = Table(title="Image Optimization")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    table.add_row("Format", result.mime_type)
    table.add_row(
        "Dimensions",
        f"{result.original_width}x{result.original_height} -> {result.width}x{result.height}",
    )
    table.add_row("Original Size", f"{result.original_size:,} bytes")
    table.add_row("Processed Size", f"{result.processed_size:,} bytes")
    table.add_row("Compression", f"{result.compression_ratio:.1f}x")
    table.add_row(
        "Estimated Tokens",
        f"{result.estimated_tokens:,} / {settings.image_token_limit:,}"
        + ("" if within_limit else " [red](over limit)[/]"),
    )
    if output:
        table.add_row("Saved To", result.file_path)
    console.print(table)

    if not within_limit:
        from .images import suggest_quality_for_token_limit

        suggestion = suggest_quality_for_token_limit(result.original_size)
        console.print(f"[yellow]Over the token limit; try --quality {suggestion}[/]")


if __name__ == "__main__":
    app()
