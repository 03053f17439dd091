"""
Entity extractor - page every collection out of the source concurrently.

One task per collection runs on a thread pool, gated by a semaphore of
``max_concurrency`` slots.  Within a collection, pages are strictly
sequential: each page's entity ids are compared to the ids already seen
for that collection, and pagination stops as soon as a page is empty or
brings no new id (a source that keeps returning its last page still
terminates).  Buffered rows spill to numbered files once the buffer
exceeds ``spill_threshold`` rows, and once more when pagination ends.

A page the source never answers, after retries and any prompts, ends
that collection's pagination early; what was already buffered is still
spilled and the collection is reported in :attr:`EntityExtractor.skipped`.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from .connection import ConnectionState, RequestLoop
from .errors import ExtractionError
from .prompts import Prompter

logger = logging.getLogger(__name__)

__all__ = [
    "EntityExtractor",
    "SpillStore",
]

SPILL_SEPARATOR = "__"
SPILL_PATTERN = re.compile(r"^\d{8}__.+")


class SpillStore:
    """Temporary on-disk batches of raw records.

    Files are named ``{counter}__{collection}`` with a zero-padded,
    run-wide counter, so a sorted listing is flush order.  Only entries
    with that name shape are ever listed or removed.
    """

    def __init__(self, directory: Path | str) -> None:
        self.directory = Path(directory)
        self._lock = threading.Lock()
        self._counter = 0

    def reset(self) -> None:
        """Remove spill files of a previous run; spill files are never reused."""
        with self._lock:
            self.directory.mkdir(parents=True, exist_ok=True)
            stale = self._spill_paths()
            for path in stale:
                path.unlink()
            if stale:
                logger.debug(f"Removed {len(stale)} stale spill files from {self.directory}")
            self._counter = 0

    def write(self, collection: str, records: list[dict[str, Any]]) -> Path:
        with self._lock:
            self._counter += 1
            path = self.directory / f"{self._counter:08d}{SPILL_SEPARATOR}{collection}"
            with open(path, "w", encoding="utf-8") as f:
                json.dump(records, f)
        logger.debug(f"Spilled {len(records)} {collection} records to {path.name}")
        return path

    def files(self) -> list[Path]:
        if not self.directory.exists():
            return []
        return self._spill_paths()

    def _spill_paths(self) -> list[Path]:
        return sorted(
            p for p in self.directory.iterdir()
            if p.is_file() and SPILL_PATTERN.match(p.name)
        )

    @property
    def count(self) -> int:
        return self._counter

    @staticmethod
    def collection_of(path: Path) -> str:
        return path.name.split(SPILL_SEPARATOR, 1)[1]


class _SerializedPrompter(Prompter):
    """One prompt at a time across extraction threads."""

    def __init__(self, prompter: Prompter) -> None:
        self._prompter = prompter
        self._lock = threading.Lock()

    def ask_url(self, current: Optional[str] = None) -> Optional[str]:
        with self._lock:
            return self._prompter.ask_url(current)

    def ask_credential(self) -> Optional[str]:
        with self._lock:
            return self._prompter.ask_credential()


class EntityExtractor:
    """
    Extract every collection's entities from the source ledger.

    Attributes:
        connection: Source :class:`ConnectionState`, shared by all tasks
        spill_store: Where buffered rows are flushed
        page_size: Rows requested per page
        spill_threshold: Buffer size that triggers a mid-pagination flush
        max_concurrency: Collections extracted at the same time
        skipped: Collections whose pagination stopped early because a
            page could not be fetched
    """

    def __init__(
        self,
        connection: ConnectionState,
        spill_store: SpillStore,
        *,
        page_size: int = 5_000,
        spill_threshold: int = 12_500,
        max_concurrency: int = 10,
        retry_attempts: int = 5,
        retry_backoff: float = 15.0,
        prompter: Optional[Prompter] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.connection = connection
        self.spill_store = spill_store
        self.page_size = page_size
        self.spill_threshold = spill_threshold
        self.max_concurrency = max_concurrency
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.prompter = _SerializedPrompter(prompter) if prompter is not None else None
        self._sleep = sleep

        self._slots = threading.BoundedSemaphore(max_concurrency)
        self._seen_lock = threading.Lock()
        self._seen: dict[str, set[Any]] = {}
        self._processing_lock = threading.Lock()
        self._processing: list[str] = []
        self._skipped: list[str] = []

    @property
    def processing(self) -> list[str]:
        """Collections currently being paged (for status display only)."""
        with self._processing_lock:
            return list(self._processing)

    @property
    def skipped(self) -> list[str]:
        with self._processing_lock:
            return list(self._skipped)

    def seen_ids(self, collection: str) -> set[Any]:
        with self._seen_lock:
            return set(self._seen.get(collection, ()))

    # ---- public API -----------------------------------------------

    def extract_all(self, collections: Iterable[str]) -> int:
        """Extract every collection and wait for all of them.

        Returns:
            Number of spill files written

        Raises:
            ExtractionError: If a collection returned a malformed page;
                raised only after every task has finished. Pages that
                could not be fetched at all are skipped, see :attr:`skipped`
        """
        collections = list(collections)
        if not collections:
            return 0
        t0 = time.monotonic()
        workers = min(len(collections), max(self.max_concurrency, 1) * 2)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="extract") as pool:
            futures = {pool.submit(self.extract_collection, c): c for c in collections}
            wait(futures)

        failures = [
            (futures[f], f.exception()) for f in futures if f.exception() is not None
        ]
        for collection, exc in failures:
            logger.error(f"Extraction of {collection} failed: {exc}")
        if failures:
            collection, exc = failures[0]
            if isinstance(exc, ExtractionError):
                raise exc
            raise ExtractionError(f"Extraction of {collection} failed: {exc}") from exc

        logger.info(
            f"Extracted {len(collections)} collections into "
            f"{self.spill_store.count} spill files in {time.monotonic() - t0:.1f}s"
        )
        return self.spill_store.count

    def extract_collection(self, collection: str) -> int:
        """Page one collection out to spill files; returns rows seen."""
        with self._slots:
            self._mark(collection, active=True)
            try:
                return self._paginate(collection)
            finally:
                self._mark(collection, active=False)

    # ---- pagination -----------------------------------------------

    def _paginate(self, collection: str) -> int:
        buffer: list[dict[str, Any]] = []
        offset = 0
        total = 0

        while True:
            page = self.fetch_page(collection, offset)
            if page is None:
                logger.error(
                    f"Skipping the rest of {collection} from offset {offset}; "
                    f"{total} rows were extracted before the source stopped answering"
                )
                with self._processing_lock:
                    self._skipped.append(collection)
                break
            if not self._record_page(collection, page):
                break
            buffer.extend(page)
            total += len(page)
            if len(buffer) > self.spill_threshold:
                self.spill_store.write(collection, buffer)
                buffer = []
            offset += self.page_size

        # Final flush always happens, even for an empty collection.
        self.spill_store.write(collection, buffer)
        logger.debug(f"{collection}: {total} rows in {offset // self.page_size} pages")
        return total

    def _record_page(self, collection: str, page: list[dict[str, Any]]) -> bool:
        """Merge the page's ids into history; False means stop paging."""
        if not page:
            return False
        ids = {row.get("_id") for row in page if isinstance(row, dict)}
        with self._seen_lock:
            history = self._seen.setdefault(collection, set())
            if ids <= history:
                logger.debug(f"{collection}: page brought no new ids, stopping")
                return False
            history |= ids
        return True

    def fetch_page(self, collection: str, offset: int) -> Optional[list[dict[str, Any]]]:
        """Fetch one page, retrying transport failures and prompting if allowed.

        Returns:
            The page rows, or None when the source could not be reached

        Raises:
            ExtractionError: If the response body is not a JSON list
        """
        loop = RequestLoop(
            self.connection,
            prompter=self.prompter,
            max_attempts=self.retry_attempts,
            backoff=self.retry_backoff,
            sleep=self._sleep,
        )
        response = loop.run(
            lambda conn: conn.issue_data_page_query(collection, offset, self.page_size)
        )
        if response is None:
            logger.error(
                f"Could not fetch {collection} at offset {offset} from {self.connection.url}"
            )
            return None
        try:
            page = response.json()
        except ValueError as exc:
            raise ExtractionError(
                f"{collection} at offset {offset} did not return JSON"
            ) from exc
        if not isinstance(page, list):
            raise ExtractionError(
                f"{collection} at offset {offset} returned {type(page).__name__}, expected a list"
            )
        return page

    def _mark(self, collection: str, active: bool) -> None:
        with self._processing_lock:
            if active:
                self._processing.append(collection)
            elif collection in self._processing:
                self._processing.remove(collection)
            current: Optional[str] = ", ".join(self._processing) or None
        logger.debug(f"Extracting: {current or 'idle'}")
