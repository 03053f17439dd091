"""Record transformer - turn spilled raw records into JSON-LD nodes."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from .canonical import SchemaRegistry
from .errors import UnknownClassError
from .extractor import SpillStore
from .models import PropertyConstraint
from .utils import instant_to_iso_string

if TYPE_CHECKING:
    from .sink import OutputSink

logger = logging.getLogger(__name__)

__all__ = [
    "RecordTransformer",
]

DATETIME = "xsd:dateTime"


def _reference(value: Any) -> Any:
    """``{"_id": 42, ...}`` or ``42`` -> ``{"@id": "42"}``."""
    if isinstance(value, dict):
        if "_id" not in value:
            return value
        return {"@id": str(value["_id"])}
    if value is None:
        return None
    return {"@id": str(value)}


class RecordTransformer:
    """Convert spill files into nodes and feed them to an output sink.

    Keys are resolved against the registry shared with the
    canonicalizer; keys it does not know are dropped.
    """

    def __init__(self, registry: SchemaRegistry, spill_store: SpillStore) -> None:
        self.registry = registry
        self.spill_store = spill_store

    def run(self, sink: OutputSink) -> int:
        """Transform every spill file in creation order; returns node count."""
        count = 0
        for path in self.spill_store.files():
            for node in self.transform_file(path):
                sink.add(node)
                count += 1
        logger.info(f"Transformed {count} entities")
        return count

    def transform_file(self, path: Path) -> list[dict[str, Any]]:
        """Read, transform and delete one spill file.

        Raises:
            UnknownClassError: If the file's collection has no canonical class
        """
        try:
            collection = SpillStore.collection_of(path)
            if collection not in self.registry.classes:
                raise UnknownClassError(
                    f"Spill file {path.name} names collection {collection!r}, "
                    "which is not in the canonical schema"
                )
            with open(path, encoding="utf-8") as f:
                records = json.load(f)
            nodes = []
            for record in records:
                if not isinstance(record, dict) or "_id" not in record:
                    logger.warning(f"Skipping a {collection} record without an _id: {record!r}")
                    continue
                nodes.append(self.transform_record(collection, record))
            return nodes
        finally:
            path.unlink(missing_ok=True)

    def transform_record(self, collection: str, record: dict[str, Any]) -> dict[str, Any]:
        cls = self.registry.classes[collection]
        shape = self.registry.shapes.get(collection)
        node: dict[str, Any] = {
            "@id": str(record["_id"]),
            "@type": cls.iri,
        }
        for key, value in record.items():
            prop = self.registry.properties.get(key.rsplit("/", 1)[-1])
            if prop is None:
                continue
            constraint = shape.constraint_for(prop.iri) if shape else None
            node[prop.iri] = self._convert(value, constraint)
        return node

    def _convert(self, value: Any, constraint: Optional[PropertyConstraint]) -> Any:
        if isinstance(value, list):
            return [self._convert(item, constraint) for item in value]
        if constraint is not None:
            if (
                constraint.datatype == DATETIME
                and isinstance(value, int)
                and not isinstance(value, bool)
            ):
                return instant_to_iso_string(value)
            if constraint.class_ref:
                return _reference(value)
        # Nested entities are always references
        if isinstance(value, dict):
            return _reference(value)
        return value
