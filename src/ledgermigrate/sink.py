"""
Output sink - size-bounded JSON-LD documents to stdout, files or a ledger.

Exactly one destination is active per run:

- ``print``: documents are echoed to stdout
- ``files``: ``0_vocab.jsonld`` then ``1_data.jsonld``, ``2_data.jsonld``, …
- ``remote``: documents are transacted into a target ledger; the first
  submission to a ledger being created uses the create path

A data document is flushed once the serialized size of the nodes added
since the last flush exceeds ``flush_size``, and once more on
:meth:`OutputSink.close`, even when no node is pending, so the ledger
and context metadata always go out.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Callable, Optional

import click

from .config import DEFAULT_FLUSH_SIZE, Destination
from .connection import ConnectionState, RequestLoop
from .models import OutputDocument
from .prompts import Prompter
from .utils import format_bytes

logger = logging.getLogger(__name__)

__all__ = [
    "OutputSink",
]

VOCAB_FILENAME = "0_vocab.jsonld"


def _data_filename(n: int) -> str:
    return f"{n}_data.jsonld"


class OutputSink:
    """
    Accumulate transformed nodes and flush them to one destination.

    Attributes:
        document: The active data document (ledger, context, nodes)
        documents_flushed: Data documents written or accepted so far
        failed_flushes: Documents the target never accepted
        nodes_emitted: Nodes handed to a flush
    """

    def __init__(
        self,
        destination: Destination,
        document: OutputDocument,
        *,
        output_dir: Optional[Path] = None,
        target: Optional[ConnectionState] = None,
        prompter: Optional[Prompter] = None,
        flush_size: int = DEFAULT_FLUSH_SIZE,
        retry_attempts: int = 5,
        retry_backoff: float = 15.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if destination is Destination.FILES and output_dir is None:
            raise ValueError("File output needs an output directory")
        if destination is Destination.REMOTE and target is None:
            raise ValueError("Remote output needs a target connection")
        self.destination = destination
        self.document = document
        self.output_dir = Path(output_dir) if output_dir is not None else None
        self.target = target
        self.prompter = prompter
        self.flush_size = flush_size
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self._sleep = sleep

        self._pending_size = 0
        self._next_index = 1
        self.documents_flushed = 0
        self.failed_flushes = 0
        self.nodes_emitted = 0

    # ---- lifecycle ------------------------------------------------

    def prepare(self) -> None:
        """Create the output directory, clearing output of a previous run."""
        if self.destination is not Destination.FILES:
            return
        if self.output_dir.exists():
            stale = sorted(self.output_dir.glob("*.jsonld"))
            for path in stale:
                path.unlink()
            if stale:
                logger.info(f"Removed {len(stale)} files from a previous run in {self.output_dir}")
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def emit_vocab(self, vocab: OutputDocument) -> bool:
        """Emit the vocabulary document ahead of any data."""
        return self._emit(vocab.to_jsonld(), VOCAB_FILENAME)

    def add(self, node: dict[str, Any]) -> None:
        self.document.nodes.append(node)
        self._pending_size += len(json.dumps(node).encode("utf-8"))
        if self._pending_size > self.flush_size:
            self.flush()

    def flush(self) -> bool:
        """Emit the active document and start a new one."""
        payload = self.document.to_jsonld()
        node_count = len(self.document.nodes)
        logger.info(
            f"Flushing {node_count} nodes ({format_bytes(self._pending_size)}) "
            f"as document {self._next_index}"
        )
        ok = self._emit(payload, _data_filename(self._next_index))
        self._next_index += 1
        self.nodes_emitted += node_count
        if ok:
            self.documents_flushed += 1
        self.document.reset()
        self._pending_size = 0
        return ok

    def close(self) -> bool:
        """Final flush; always emits, including an empty node array."""
        return self.flush()

    # ---- destinations ---------------------------------------------

    def _emit(self, payload: dict[str, Any], filename: str) -> bool:
        if self.destination is Destination.PRINT:
            click.echo(json.dumps(payload, indent=2))
            return True
        if self.destination is Destination.FILES:
            path = self.output_dir / filename
            with open(path, "w", encoding="utf-8") as f:
                json.dump(payload, f, indent=2)
            logger.debug(f"Wrote {path}")
            return True
        return self._submit(payload, filename)

    def _submit(self, payload: dict[str, Any], label: str) -> bool:
        loop = RequestLoop(
            self.target,
            prompter=self.prompter,
            max_attempts=self.retry_attempts,
            backoff=self.retry_backoff,
            sleep=self._sleep,
        )
        response = loop.run(lambda conn: conn.submit(payload))
        if response is None:
            self.failed_flushes += 1
            logger.error(
                f"Could not transact {label} into {self.target.url}; continuing"
            )
            return False
        logger.debug(f"Transacted {label} into {self.target.url} ({response.status_code})")
        return True
