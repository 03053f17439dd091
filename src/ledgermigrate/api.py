"""Main ledgermigrate functionality: run a complete migration."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from .canonical import SchemaCanonicalizer, parse_predicates, user_predicates
from .config import Destination, MigrationConfig
from .connection import ConnectionState, RequestLoop
from .context import ContextBuilder
from .errors import SchemaQueryError
from .extractor import EntityExtractor, SpillStore
from .models import MigrationSummary, OutputDocument
from .prompts import Prompter
from .sink import OutputSink
from .transformer import RecordTransformer
from .version import VERSION

logger = logging.getLogger(__name__)

__all__ = [
    "fetch_schema",
    "migrate",
]


def fetch_schema(
    source: ConnectionState,
    prompter: Optional[Prompter] = None,
    retry_attempts: int = 5,
    retry_backoff: float = 15.0,
    sleep: Callable[[float], None] = time.sleep,
) -> Any:
    """Retrieve the raw predicate payload, prompting for fixes if allowed.

    Args:
        source: Source ledger connection (its url/credential may be updated)
        prompter: Interactive remediation, or None for unattended runs
        retry_attempts: Transport attempts before asking for a new URL
        retry_backoff: Seconds between transport attempts
        sleep: Sleep function (injectable for tests)

    Returns:
        Decoded JSON payload of the schema multi-query

    Raises:
        SchemaQueryError: If the schema cannot be retrieved or decoded
    """
    loop = RequestLoop(
        source,
        prompter=prompter,
        max_attempts=retry_attempts,
        backoff=retry_backoff,
        sleep=sleep,
    )
    response = loop.run(lambda conn: conn.issue_schema_query())
    if response is None:
        raise SchemaQueryError(f"Could not retrieve the schema from {source.url}")
    try:
        return response.json()
    except ValueError as exc:
        raise SchemaQueryError(f"The schema response from {source.url} is not JSON") from exc


def migrate(
    config: MigrationConfig,
    prompter: Optional[Prompter] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> MigrationSummary:
    """Migrate the source ledger's schema and data to JSON-LD.

    Runs schema retrieval, canonicalization, vocabulary emission,
    concurrent extraction, and only after every extraction task has
    joined, transformation and emission of the data documents.

    Args:
        config: Run settings
        prompter: Interactive remediation; ignored unless
            ``config.interactive`` is set
        sleep: Sleep function used between retries

    Returns:
        A :class:`MigrationSummary` of the run
    """
    started = datetime.now(timezone.utc)
    t0 = time.monotonic()
    prompter = prompter if config.interactive else None
    destination = config.destination

    source = ConnectionState(
        config.source_url,
        config.source_credential,
        timeout=config.request_timeout,
    )
    target = None
    if destination is Destination.REMOTE:
        target = ConnectionState(
            config.target_url,
            config.target_credential,
            ledger_created=not config.create_ledger,
            timeout=config.request_timeout,
        )

    try:
        logger.info(f"Extracting schema from {source.url}")
        payload = fetch_schema(
            source,
            prompter=prompter,
            retry_attempts=config.retry_attempts,
            retry_backoff=config.retry_backoff,
            sleep=sleep,
        )
        predicates = parse_predicates(user_predicates(payload))

        canonicalizer = SchemaCanonicalizer(
            prefix=config.prefix,
            closed_shapes=config.closed_shapes,
        )
        conflicts = canonicalizer.canonicalize(predicates)
        registry = canonicalizer.registry

        # The source url may have been corrected by a prompt.
        context = ContextBuilder(
            source_url=source.url,
            base=config.base,
            vocab=config.vocab,
            extra=dict(config.context),
        )
        ledger = config.ledger_name(source.url)
        if ledger is None:
            logger.warning(f"Could not derive a ledger name from {source.url}")

        sink = OutputSink(
            destination,
            OutputDocument(ledger=ledger, context=context.data_context()),
            output_dir=config.output_dir,
            target=target,
            prompter=prompter,
            flush_size=config.flush_size,
            retry_attempts=config.retry_attempts,
            retry_backoff=config.retry_backoff,
            sleep=sleep,
        )
        sink.prepare()
        vocab_ok = sink.emit_vocab(
            canonicalizer.get_vocab_document(
                config.shacl,
                context,
                ledger=ledger,
                default_context=config.create_ledger,
            )
        )

        spill_store = SpillStore(config.spill_dir)
        spill_store.reset()
        extractor = EntityExtractor(
            source,
            spill_store,
            page_size=config.page_size,
            spill_threshold=config.spill_threshold,
            max_concurrency=config.max_concurrency,
            retry_attempts=config.retry_attempts,
            retry_backoff=config.retry_backoff,
            prompter=prompter,
            sleep=sleep,
        )
        spill_files = extractor.extract_all(registry.collection_names())

        transformer = RecordTransformer(registry, spill_store)
        transformer.run(sink)
        sink.close()
    finally:
        source.close()
        if target is not None:
            target.close()

    finished = datetime.now(timezone.utc)
    summary = MigrationSummary(
        source_url=source.url,
        destination=destination.value,
        ledger=ledger,
        tool_version=VERSION,
        started_at=started.isoformat(),
        finished_at=finished.isoformat(),
        duration_s=round(time.monotonic() - t0, 3),
        class_count=len(registry.classes),
        property_count=len(registry.properties),
        shape_count=len(registry.shapes) if config.shacl else 0,
        conflicts=conflicts,
        spill_files=spill_files,
        skipped_collections=extractor.skipped,
        nodes_emitted=sink.nodes_emitted,
        documents_flushed=sink.documents_flushed,
        failed_flushes=sink.failed_flushes + (0 if vocab_ok else 1),
    )
    logger.info(
        f"Migration complete: {summary.nodes_emitted} nodes in "
        f"{summary.documents_flushed} documents in {summary.duration_s:.1f}s"
    )
    return summary
