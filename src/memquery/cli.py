"""memquery CLI.

Loads a JSON document of records grouped by entity into an in-memory store
and runs a query against it.
"""

import json
import sys
from pathlib import Path
from typing import List, Optional

import structlog
import typer

from memquery.errors import InvalidArgumentError
from memquery.services.factory import create_store_from_payload, parse_order_option, parse_where_option

structlog.configure(
    processors=[
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    logger_factory=lambda name: structlog.PrintLogger(file=sys.stderr),
    wrapper_class=structlog.BoundLogger,
    context_class=dict,
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger(__name__)

app = typer.Typer(
    name="memquery",
    help="""Query JSON record collections with an in-memory query engine.

Examples:

  # All users named alice, newest first
  uv run memquery query data.json --entity users --where name=alice --order-by id:desc

  # Users 1 or 2
  uv run memquery query data.json --entity users --where id=1 --or-where id=2""",
    rich_markup_mode="markdown",
)


@app.command()
def query(
    path: str = typer.Argument(
        ...,
        help="JSON file shaped as {entity: [records]}",
    ),
    entity: str = typer.Option(
        ...,
        "--entity",
        "-e",
        help="Entity to query",
    ),
    where: Optional[List[str]] = typer.Option(
        None,
        "--where",
        "-w",
        help="FIELD=VALUE constraint combined with 'and' (repeatable)",
    ),
    or_where: Optional[List[str]] = typer.Option(
        None,
        "--or-where",
        help="FIELD=VALUE constraint combined with 'or' (repeatable)",
    ),
    order_by: Optional[List[str]] = typer.Option(
        None,
        "--order-by",
        "-s",
        help="FIELD or FIELD:desc sort key (repeatable, first wins)",
    ),
    offset: int = typer.Option(
        0,
        "--offset",
        help="Number of records to skip",
    ),
    limit: Optional[int] = typer.Option(
        None,
        "--limit",
        "-n",
        help="Maximum number of records to return",
    ),
    primary_key: str = typer.Option(
        "id",
        "--primary-key",
        "-k",
        help="Primary key field of the queried entity",
    ),
) -> None:
    """Run a query and print matching records as JSON lines."""
    source = Path(path)

    if not source.exists():
        logger.error("file_not_found", path=str(source))
        raise typer.Exit(1)

    try:
        payload = json.loads(source.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        logger.error("invalid_json", path=str(source), error=str(e))
        raise typer.Exit(1)

    if not isinstance(payload, dict) or entity not in payload:
        logger.error("entity_not_found", path=str(source), entity=entity)
        raise typer.Exit(1)

    try:
        and_clauses = [parse_where_option(option) for option in where or []]
        or_clauses = [parse_where_option(option) for option in or_where or []]
        orders = [parse_order_option(option) for option in order_by or []]
    except ValueError as e:
        logger.error("invalid_option", error=str(e))
        raise typer.Exit(1)

    try:
        store = create_store_from_payload(payload, primary_keys={entity: primary_key})
    except ValueError as e:
        logger.error("invalid_records", path=str(source), error=str(e))
        raise typer.Exit(1)

    builder = store.query(entity)
    for field, value in and_clauses:
        builder.where(field, value)
    for field, value in or_clauses:
        builder.or_where(field, value)
    for field, direction in orders:
        builder.order_by(field, direction)
    builder.offset(offset)
    if limit is not None:
        builder.limit(limit)

    try:
        records = builder.get()
    except InvalidArgumentError as e:
        logger.error("query_failed", entity=entity, error=str(e))
        raise typer.Exit(1)

    logger.info("query_completed", entity=entity, record_count=len(records))

    for record in records:
        typer.echo(json.dumps(record.to_record(), default=str))


@app.command()
def version() -> None:
    """Show version information."""
    from memquery import __version__

    typer.echo(f"memquery {__version__}")
