"""Treeloader CLI entry point."""

import asyncio
import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from treeloader import __version__
from treeloader.config import DEFAULT_MAX_DEPTH, LoaderConfig
from treeloader.errors import CloseError, TreeloaderError, WatchError

console = Console(stderr=True)


def setup_logging(debug: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, console=console)],
    )


def build_config(ctx: click.Context, entry: str, **options) -> LoaderConfig:
    """Build a LoaderConfig, turning configuration errors into CLI errors."""
    try:
        return LoaderConfig.build(entry=entry, verbose=ctx.obj["verbose"], **options)
    except TreeloaderError as e:
        raise click.ClickException(str(e)) from e


@click.group()
@click.version_option(__version__, prog_name="treeloader")
@click.option("-v/-q", "--verbose/--quiet", default=True, help="Log watch and process activity")
@click.option("--debug", is_flag=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, verbose: bool, debug: bool) -> None:
    """Treeloader - restart a program whenever its import tree changes."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    setup_logging(debug)


@cli.command(context_settings={"ignore_unknown_options": True})
@click.argument("entry", type=click.Path())
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.option(
    "-e",
    "--extensions",
    multiple=True,
    help="Comma delimited list of file extensions to watch (defaults to the entry's)",
)
@click.option("--search-path", multiple=True, type=click.Path(), help="Extra first-party import root")
@click.option(
    "--max-depth", default=DEFAULT_MAX_DEPTH, show_default=True, help="Maximum import depth"
)
@click.option("--no-cycles", is_flag=True, help="Treat import cycles as errors")
@click.option("--debounce", default=0.0, help="Ignore repeat writes within this many seconds")
@click.option("--python", "interpreter", default=None, help="Interpreter used to run ENTRY")
@click.pass_context
def run(
    ctx: click.Context,
    entry: str,
    args: tuple[str, ...],
    extensions: tuple[str, ...],
    search_path: tuple[str, ...],
    max_depth: int,
    no_cycles: bool,
    debounce: float,
    interpreter: str | None,
) -> None:
    """Run ENTRY and restart it whenever a file it imports changes."""
    from treeloader.reload import ReloadCoordinator

    config = build_config(
        ctx,
        entry,
        args=list(args),
        extensions=list(extensions),
        search_paths=list(search_path),
        max_depth=max_depth,
        allow_cycles=not no_cycles,
        debounce_seconds=debounce,
        interpreter=interpreter,
    )

    async def run_loader() -> None:
        loader = ReloadCoordinator(config)
        console.print(f"[bold green]Watching {config.entry_path.name}[/bold green]")
        try:
            await loader.run()
        finally:
            try:
                await loader.close()
            except CloseError as e:
                for error in e.errors:
                    console.print(f"[red]{type(error).__name__}: {error}[/red]")

    try:
        asyncio.run(run_loader())
    except WatchError as e:
        console.print(f"[red]Unable to watch files: {e}[/red]")
        raise SystemExit(1) from e
    except KeyboardInterrupt:
        console.print("\n[yellow]Stopped[/yellow]")


@cli.command()
@click.argument("entry", type=click.Path())
@click.option("--search-path", multiple=True, type=click.Path(), help="Extra first-party import root")
@click.option(
    "--max-depth", default=DEFAULT_MAX_DEPTH, show_default=True, help="Maximum import depth"
)
@click.option("--no-cycles", is_flag=True, help="Treat import cycles as errors")
@click.option("--table", "as_table", is_flag=True, help="Render as a table")
@click.pass_context
def deps(
    ctx: click.Context,
    entry: str,
    search_path: tuple[str, ...],
    max_depth: int,
    no_cycles: bool,
    as_table: bool,
) -> None:
    """Print the directories ENTRY depends on."""
    from treeloader.deps import DependencyResolver, PythonImportSource

    config = build_config(
        ctx,
        entry,
        search_paths=list(search_path),
        max_depth=max_depth,
        allow_cycles=not no_cycles,
    )
    resolver = DependencyResolver(
        PythonImportSource(config.search_paths),
        max_depth=config.max_depth,
        allow_cycles=config.allow_cycles,
    )

    try:
        dirs = resolver.resolve(config.entry_path)
    except TreeloaderError as e:
        console.print(f"[red]{type(e).__name__}: {e}[/red]")
        raise SystemExit(1) from e

    if not as_table:
        for directory in dirs:
            click.echo(directory)
        return

    table = Table(title=f"Directories for {config.entry_path.name}")
    table.add_column("Directory", style="cyan", overflow="fold")
    for directory in dirs:
        table.add_row(directory)
    Console().print(table)


def main() -> None:
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
