"""
Command line entry point: `consent-server serve` and `consent-server validate`.
"""
import json
import logging
import sys

import click

from consent_server import kratos
from consent_server.config import DIRECT_MAPPING, HOST, PORT, SCHEMA_KEYWORD
from consent_server.engine import validate_schema
from consent_server.errors import KratosError


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.option("--log-level", default="INFO", show_default=True, help="Python logging level.")
def cli(log_level: str):
    """Consent server between Hydra and Kratos."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


@cli.command()
@click.option("--host", default=HOST, show_default=True)
@click.option("--port", default=PORT, show_default=True, type=int)
def serve(host: str, port: int):
    """Run the consent HTTP server."""
    import uvicorn

    uvicorn.run("consent_server.main:app", host=host, port=port)


def _load_schemas(schema_files: tuple[str, ...]) -> list[tuple[str, object]]:
    if schema_files:
        schemas = []
        for path in schema_files:
            with open(path, encoding="utf-8") as f:
                try:
                    schemas.append((path, json.load(f)))
                except json.JSONDecodeError as e:
                    raise click.ClickException(f"{path}: invalid JSON: {e}")
        return schemas
    try:
        return [(entry.get("id", "?"), entry.get("schema")) for entry in kratos.list_identity_schemas()]
    except KratosError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.option(
    "--schema-file",
    "schema_files",
    multiple=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Validate a local identity schema instead of the schemas Kratos serves. Repeatable.",
)
@click.option("--keyword", default=SCHEMA_KEYWORD, show_default=True, help="Scope annotation keyword.")
@click.option("--direct-mapping/--no-direct-mapping", default=DIRECT_MAPPING, show_default=True)
def validate(schema_files: tuple[str, ...], keyword: str, direct_mapping: bool):
    """Report dropped or invalid scope annotations and consent configuration. Exits 1 on any warning."""
    total = 0
    for name, schema in _load_schemas(schema_files):
        warnings = validate_schema(schema, keyword=keyword, direct_mapping=direct_mapping)
        total += len(warnings)
        for warning in warnings:
            click.echo(f"{name}: {warning}")
        if not warnings:
            click.echo(f"{name}: ok")
    if total:
        click.echo(f"{total} warning(s)", err=True)
        sys.exit(1)


def main():
    cli()


if __name__ == "__main__":
    main()
