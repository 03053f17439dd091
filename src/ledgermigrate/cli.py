"""Command line interface for :mod:`ledgermigrate`."""

from pathlib import Path
from typing import Optional

import click

from .errors import MigrationError
from .prompts import DEFAULT_SOURCE_URL, ClickPrompter
from .utils import is_valid_url, parse_context_entries
from .version import get_version

__all__ = [
    "main",
]


@click.group()
@click.version_option(version=get_version())
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    r"""ledgermigrate - move a collection/property ledger to JSON-LD.

    Reads the schema and every entity of a source ledger, turns the
    schema into RDFS classes and properties (optionally with SHACL
    shapes) and the entities into JSON-LD nodes.


    Typical workflow: migrate --url ... --output ./out
    """
    import logging

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            force=True,
        )
        logging.getLogger("ledgermigrate").setLevel(logging.DEBUG)
    else:
        logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s", force=True)


@main.command()
@click.option("--url", "-u", help="Source ledger URL (e.g. http://localhost:8090/fdb/net/db)")
@click.option("--authorization", "-a", help="API key for the source ledger")
@click.option(
    "--output",
    "-o",
    type=click.Path(file_okay=False, path_type=Path),
    help="Write numbered JSON-LD files to this directory",
)
@click.option("--target", help="Transact into the ledger server at this URL")
@click.option("--target-authorization", help="API key for the target ledger")
@click.option("--create-ledger", is_flag=True, help="Create the target ledger on first submission")
@click.option("--ledger", help="Ledger identifier (network/db); derived from --url by default")
@click.option("--base", "-b", help="@base value for data documents")
@click.option("--vocab", help="@vocab value (and @base of the vocabulary document)")
@click.option(
    "--context",
    "-c",
    multiple=True,
    help="Extra context entry as prefix=iri (repeatable)",
)
@click.option("--namespace", "-n", help="Context prefix to use for new classes and properties")
@click.option("--shacl", "-s", is_flag=True, help="Add SHACL shapes to the vocabulary")
@click.option("--closed-shapes", is_flag=True, help="Emit closed SHACL shapes")
@click.option("--page-size", type=int, help="Entities requested per page")
@click.option(
    "--spill-dir",
    type=click.Path(file_okay=False, path_type=Path),
    help="Directory for temporary spill files (stale spill files in it are removed)",
)
@click.option("--no-input", is_flag=True, help="Never prompt; skip what cannot be fixed unattended")
def migrate(
    url: Optional[str],
    authorization: Optional[str],
    output: Optional[Path],
    target: Optional[str],
    target_authorization: Optional[str],
    create_ledger: bool,
    ledger: Optional[str],
    base: Optional[str],
    vocab: Optional[str],
    context: tuple,
    namespace: Optional[str],
    shacl: bool,
    closed_shapes: bool,
    page_size: Optional[int],
    spill_dir: Optional[Path],
    no_input: bool,
) -> None:
    r"""Migrate schema and data from a source ledger.

    Without --output or --target the documents are printed.


    Outputs (with --output):
      - 0_vocab.jsonld  - classes, properties and optional shapes
      - N_data.jsonld   - entity nodes, about 2.5 MB per file


    Example:
      ledgermigrate migrate --url http://localhost:8090/fdb/acme/crm \
                            --shacl --output ./crm_jsonld
    """
    import time

    from .api import migrate as run_migration
    from .config import MigrationConfig

    if url is None:
        if no_input:
            click.echo("Error: --url is required with --no-input", err=True)
            raise click.Abort()
        url = ClickPrompter().ask_url(DEFAULT_SOURCE_URL)
    elif not is_valid_url(url):
        click.echo(f"Error: {url} is not a valid URL", err=True)
        raise click.Abort()

    start = time.monotonic()
    try:
        settings = {
            "source_url": url,
            "source_credential": authorization,
            "output_dir": output,
            "target_url": target,
            "target_credential": target_authorization,
            "create_ledger": create_ledger,
            "ledger": ledger,
            "base": base,
            "vocab": vocab,
            "namespace": namespace,
            "context": parse_context_entries(context),
            "shacl": shacl,
            "closed_shapes": closed_shapes,
            "interactive": not no_input,
        }
        if page_size is not None:
            settings["page_size"] = page_size
        if spill_dir is not None:
            settings["spill_dir"] = spill_dir
        config = MigrationConfig(**settings)
        summary = run_migration(config, prompter=ClickPrompter())
    except (MigrationError, ValueError) as e:
        click.echo(f"Error: {e}", err=True)
        raise click.Abort()

    if summary.conflicts:
        click.echo(
            f"Warning: {len(summary.conflicts)} datatype conflicts; "
            "sh:datatype was omitted for those properties",
            err=True,
        )
    if summary.skipped_collections:
        click.echo(
            "Warning: extraction stopped early for "
            f"{', '.join(summary.skipped_collections)}; their data is incomplete",
            err=True,
        )
    if summary.failed_flushes:
        click.echo(f"Warning: {summary.failed_flushes} documents were not accepted", err=True)

    finish_line = f"to {output}/ " if output else ""
    click.echo(
        f"Finished migration {finish_line}in {time.monotonic() - start:.1f}s "
        f"({summary.class_count} classes, {summary.nodes_emitted} entities)",
        err=output is None and target is None,
    )


if __name__ == "__main__":
    main()
