"""The ``contentbase`` command: registry setup and read-only inspection."""

import asyncio
from typing import NoReturn

import click

from contentbase.core.config import get_settings
from contentbase.core.logging import configure_logging
from contentbase.domain.entities import CollectionNode
from contentbase.domain.services.collection_service import CollectionService
from contentbase.infrastructure.persistence.database import (
    close_database,
    get_db_manager,
    init_database,
)


@click.group()
@click.version_option(version="0.1.0", prog_name="ContentBase")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    default=None,
    help="Override CONTENTBASE_LOG_LEVEL for this invocation",
)
def cli(log_level: str | None) -> None:
    """ContentBase - runtime-defined content collections."""
    settings = get_settings()
    if log_level is not None:
        settings = settings.model_copy(update={"log_level": log_level})
    configure_logging(settings)


@cli.command()
@click.option(
    "--force",
    is_flag=True,
    help="Do not ask for confirmation",
)
def init_db(force: bool) -> None:
    """Create the registry tables.

    Collection tables are created later, when collections are defined.
    """
    settings = get_settings()

    if not force:
        click.confirm(
            f"Create the collection registry in {settings.database_url}?",
            abort=True,
            default=False,
        )

    async def initialize() -> None:
        try:
            await init_database()
            click.echo("Registry initialized.")
        finally:
            await close_database()

    asyncio.run(initialize())


@cli.command()
def collections() -> None:
    """List the defined collections."""

    async def list_all() -> None:
        db = get_db_manager()
        try:
            async with db.session() as session:
                service = CollectionService(session, db.engine, db.settings)
                definitions = await service.list_collections()
        finally:
            await db.disconnect()

        if not definitions:
            click.echo("No collections defined.")
            return

        for definition in definitions:
            click.echo(
                f"{definition.slug:<32} {definition.name:<24} "
                f"{len(definition.scalar_fields)} fields, "
                f"{len(definition.relation_fields)} relations"
            )

    asyncio.run(list_all())


def _render_tree(nodes: list[CollectionNode]) -> list[str]:
    lines = []
    stack = [(node, 0) for node in reversed(nodes)]
    while stack:
        node, depth = stack.pop()
        lines.append(f"{'  ' * depth}- {node.collection.name} ({node.collection.slug})")
        stack.extend((child, depth + 1) for child in reversed(node.children))
    return lines


@cli.command()
def tree() -> None:
    """Show the collection hierarchy."""

    async def show() -> None:
        db = get_db_manager()
        try:
            async with db.session() as session:
                service = CollectionService(session, db.engine, db.settings)
                roots = await service.get_hierarchy()
        finally:
            await db.disconnect()

        if not roots:
            click.echo("No collections defined.")
            return
        for line in _render_tree(roots):
            click.echo(line)

    asyncio.run(show())


@cli.command()
def info() -> None:
    """Print the effective settings."""
    settings = get_settings()
    sections = {
        "Runtime": [
            ("Environment", settings.environment),
            ("Debug", settings.debug),
        ],
        "Storage": [
            ("Database", settings.database_url),
            ("Backend", "sqlite" if settings.is_sqlite else "pooled"),
            ("Echo SQL", settings.db_echo),
        ],
        "Collections": [
            ("Table Prefix", settings.table_prefix),
            ("Page Size", f"{settings.default_page_size} (max {settings.max_page_size})"),
        ],
        "Logging": [
            ("Level", settings.log_level),
            ("Format", settings.log_format),
        ],
    }

    click.echo(f"{settings.app_name} v{settings.app_version}")
    for title, rows in sections.items():
        click.echo(f"\n{title}")
        for label, value in rows:
            click.echo(f"  {label + ':':<14}{value}")


def main() -> NoReturn:
    """Run the CLI; shared by the console script and ``python -m contentbase``."""
    cli()


if __name__ == "__main__":
    main()
