"""
QuerySight - Main Entry Point

Command-line interface for running safe queries and inspecting schemas.
"""

import sys
import logging
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from querysight import __version__
from querysight.config import QuerySightConfig, QuerySettings, create_default_config
from querysight.core.manager import DatabaseManager
from querysight.exceptions import QuerySightError

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

console = Console()


def connection_options(func):
    """Shared connection options for every database command."""
    options = [
        click.option('--config', '-c', 'config_path', type=click.Path(exists=True),
                     help='YAML configuration file'),
        click.option('--engine', '-t', type=click.Choice(['sqlite', 'postgresql', 'mysql']),
                     help='Database type'),
        click.option('--db-path', '-p', type=click.Path(), help='Path to SQLite database'),
        click.option('--host', '-h', help='Database host'),
        click.option('--port', type=int, help='Database port'),
        click.option('--database', '-d', help='Database name'),
        click.option('--user', '-u', help='Database username'),
        click.option('--password', help='Database password'),
        click.option('--verbose', '-v', is_flag=True, help='Verbose output'),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _load_config(
    config_path: Optional[str],
    engine: Optional[str],
    db_path: Optional[str],
    host: Optional[str],
    port: Optional[int],
    database: Optional[str],
    user: Optional[str],
    password: Optional[str],
) -> QuerySightConfig:
    if config_path:
        return QuerySightConfig.from_yaml(config_path)
    if not engine:
        raise click.UsageError("Either --config or --engine is required")
    return create_default_config(
        db_type=engine,
        db_path=db_path,
        host=host,
        port=port,
        database=database,
        username=user,
        password=password,
    )


def _open_manager(verbose: bool, **connection) -> DatabaseManager:
    config = _load_config(**connection)
    if verbose or config.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    manager = DatabaseManager(config)
    manager.initialize(config.engine)
    return manager


def _fail(error: Exception, verbose: bool):
    console.print(f"[bold red]✗ Error: {error}[/bold red]")
    if verbose:
        import traceback
        traceback.print_exc()
    sys.exit(1)


# CLI Commands
@click.group()
@click.version_option(version=__version__, prog_name="QuerySight")
def cli():
    """QuerySight - Query safety and schema intelligence"""
    pass


@cli.command()
@click.argument('sql')
@click.option('--tables', required=True, help='Comma-separated allow-listed tables')
@click.option('--max-results', type=int, default=100, show_default=True, help='Row cap')
@click.option('--timeout', type=float, help='Request deadline in seconds')
@click.option('--json', 'as_json', is_flag=True, help='Print the raw result as JSON')
@connection_options
def query(sql, tables, max_results, timeout, as_json, verbose, **connection):
    """
    Run a read-only query under a table allow-list.

    Examples:

        querysight query "SELECT * FROM products" --tables products -t sqlite -p shop.db
    """
    manager = None
    try:
        manager = _open_manager(verbose, **connection)
        settings = QuerySettings(enabled_tables=tables, max_results=max_results)
        result = manager.execute_safe_query(sql, settings, timeout=timeout)

        if as_json:
            click.echo(result.to_json())
            return

        table = Table(
            title=f"{result.row_count} rows in {result.execution_time:.1f}ms"
                  f"{' (cached)' if result.cached else ''}",
            show_header=True,
        )
        columns = list(result.data[0].keys()) if result.data else []
        for column in columns:
            table.add_column(str(column), style="cyan")
        for row in result.data:
            table.add_row(*[str(row.get(column)) for column in columns])
        console.print(table)

        for insight in result.insights:
            console.print(Panel(
                f"{insight.description}\n\n[dim]confidence: {insight.confidence:.2f}[/dim]",
                title=insight.title,
                border_style="green",
            ))

    except (QuerySightError, click.UsageError, ValueError, OSError) as e:
        _fail(e, verbose)
    finally:
        if manager:
            manager.disconnect_all()


@cli.command()
@click.option('--tables', required=True, help='Comma-separated allow-listed tables')
@connection_options
def schema(tables, verbose, **connection):
    """Print the schema text (columns, relationships, sample row) for tables."""
    manager = None
    try:
        manager = _open_manager(verbose, **connection)
        click.echo(manager.get_enhanced_schema(QuerySettings(enabled_tables=tables)))
    except (QuerySightError, click.UsageError, ValueError, OSError) as e:
        _fail(e, verbose)
    finally:
        if manager:
            manager.disconnect_all()


@cli.command()
@connection_options
def tables(verbose, **connection):
    """List tables with their estimated row counts."""
    manager = None
    try:
        manager = _open_manager(verbose, **connection)

        table = Table(title="Tables", show_header=True)
        table.add_column("Table", style="cyan")
        table.add_column("Rows", style="green", justify="right")
        table.add_column("Description")
        for summary in manager.get_table_list():
            table.add_row(summary.name, f"{summary.estimated_row_count:,}", summary.description)
        console.print(table)

    except (QuerySightError, click.UsageError, ValueError, OSError) as e:
        _fail(e, verbose)
    finally:
        if manager:
            manager.disconnect_all()


@cli.command()
@click.argument('text')
@click.option('--tables', required=True, help='Comma-separated candidate tables')
@connection_options
def relevant(text, tables, verbose, **connection):
    """Rank candidate tables by relevance to a question."""
    manager = None
    try:
        manager = _open_manager(verbose, **connection)
        schema_map = manager.build_schema_map(tables)
        matches = manager.find_relevant_tables(text, schema_map)
        if not matches:
            console.print("[yellow]No relevant tables found[/yellow]")
        for position, name in enumerate(matches, 1):
            console.print(f"  {position}. [bold]{name}[/bold]")
    except (QuerySightError, click.UsageError, ValueError, OSError) as e:
        _fail(e, verbose)
    finally:
        if manager:
            manager.disconnect_all()


@cli.command()
@connection_options
def test_connection(verbose, **connection):
    """Test database connection."""
    manager = None
    try:
        manager = _open_manager(verbose, **connection)
        health = manager.get_health_status()

        if health.get("status") == "healthy":
            console.print("[bold green]✓ Connection successful![/bold green]")
            console.print(f"  Database Type: {manager.get_database_type()}")
            console.print(f"  Tables Found: {len(manager.get_table_list())}")
        else:
            console.print(f"[bold red]✗ Connection failed: {health.get('error')}[/bold red]")
            sys.exit(1)

    except (QuerySightError, click.UsageError, ValueError, OSError) as e:
        _fail(e, verbose)
    finally:
        if manager:
            manager.disconnect_all()


@cli.command()
def version():
    """Show version information."""
    console.print(Panel(
        f"[bold]QuerySight[/bold] v{__version__}\n\n"
        "Query safety and schema intelligence for generated SQL.\n\n"
        "Components:\n"
        "  • Engine Adapters (MySQL, PostgreSQL, SQLite)\n"
        "  • Schema Analyzer\n"
        "  • Query Performance Monitor\n"
        "  • Insight Engine\n"
        "  • Database Manager",
        title="About",
        border_style="blue"
    ))


def main():
    """Main entry point."""
    cli()


if __name__ == "__main__":
    main()
