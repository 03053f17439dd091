"""
Schema canonicalizer - build a class/property/shape graph from predicates.

The source describes its schema as a flat list of predicates named
``collection/property``.  This module assembles that list in Python
into canonical classes (one per collection), canonical properties (one
per property name, merged across collections) and optional SHACL node
shapes, in two passes:

1. **Placeholders**: every predicate creates or reuses its class and
   property, and its normalized datatype is unioned into the property's
   datatype set.

2. **Finalisation**: with every datatype known, ranges, domains and
   shape constraints are derived.  A property declared with more than
   one datatype gets no ``sh:datatype``; each offending class yields a
   :class:`~ledgermigrate.models.DatatypeConflict` instead.

The primary export is :meth:`SchemaCanonicalizer.get_vocab_document`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pydantic import ValidationError

from .context import ContextBuilder
from .errors import MalformedPredicateError, SchemaQueryError
from .models import (
    CanonicalClass,
    CanonicalProperty,
    DatatypeConflict,
    OutputDocument,
    Predicate,
    ShaclShape,
)
from .utils import (
    add_prefix,
    remove_namespace,
    standardize_class_name,
    standardize_property_name,
)

logger = logging.getLogger(__name__)

__all__ = [
    "DATATYPES",
    "SchemaCanonicalizer",
    "SchemaRegistry",
    "normalize_datatype",
    "parse_predicates",
    "user_predicates",
]

# Source type tag -> xsd datatype. ``tag`` and ``ref`` carry no datatype.
DATATYPES: dict[str, str] = {
    "float": "xsd:float",
    "int": "xsd:integer",
    "instant": "xsd:dateTime",
    "boolean": "xsd:boolean",
    "long": "xsd:long",
    "string": "xsd:string",
}


def normalize_datatype(type_tag: Optional[str]) -> Optional[str]:
    """Map a source type tag to an xsd datatype, or None if it has none."""
    if type_tag is None:
        return None
    return DATATYPES.get(type_tag)


# -------------------------------------------------------------------
# Source schema payload
# -------------------------------------------------------------------

def user_predicates(payload: Any) -> list[dict[str, Any]]:
    """Drop built-in predicates from a schema multi-query payload.

    Raises:
        SchemaQueryError: If either half of the multi-query is missing
    """
    if not isinstance(payload, dict) or not isinstance(
        payload.get("current_predicates"), list
    ) or not isinstance(payload.get("initial_predicates"), list):
        raise SchemaQueryError(
            "Attempting to retrieve the schema from the ledger failed. If you "
            "provided an API Key, please check that it is correct. If you did not "
            "provide an API Key, please check that the ledger is running and that "
            "you have access to it."
        )
    system_ids = set(payload["initial_predicates"])
    return [
        item for item in payload["current_predicates"]
        if not (isinstance(item, dict) and item.get("_id") in system_ids)
    ]


def parse_predicates(items: Iterable[Any]) -> list[Predicate]:
    """Validate raw predicate records.

    Raises:
        MalformedPredicateError: If a record lacks an ``_id`` or a
            ``collection/property`` name
    """
    predicates = []
    for item in items:
        try:
            predicate = Predicate.model_validate(item)
            predicate.split_name()
        except ValidationError as exc:
            raise MalformedPredicateError(
                f"A predicate does not have a valid _id and name: {item!r}"
            ) from exc
        except ValueError as exc:
            raise MalformedPredicateError(str(exc)) from exc
        predicates.append(predicate)
    return predicates


# -------------------------------------------------------------------
# Registry
# -------------------------------------------------------------------

@dataclass
class SchemaRegistry:
    """Canonical graph keyed by raw source names.

    ``classes`` and ``shapes`` are keyed by collection name,
    ``properties`` by property name.  Insertion order is emission order.
    """

    classes: dict[str, CanonicalClass] = field(default_factory=dict)
    properties: dict[str, CanonicalProperty] = field(default_factory=dict)
    shapes: dict[str, ShaclShape] = field(default_factory=dict)

    def collection_names(self) -> list[str]:
        return list(self.classes)


class SchemaCanonicalizer:
    """Canonicalize source predicates into a :class:`SchemaRegistry`.

    Parameters
    ----------
    registry:
        Registry to populate; a fresh one is created when omitted.
        Callers share it by reference.
    prefix:
        ``"ns:"`` prepended to every class and property IRI.
    closed_shapes:
        Emit ``sh:closed true`` node shapes that ignore ``rdf:type``.
    """

    def __init__(
        self,
        registry: Optional[SchemaRegistry] = None,
        prefix: str = "",
        closed_shapes: bool = False,
    ) -> None:
        self.registry = registry if registry is not None else SchemaRegistry()
        self.prefix = prefix
        self.closed_shapes = closed_shapes
        self.conflicts: list[DatatypeConflict] = []

    # ---- naming ---------------------------------------------------

    def class_iri(self, raw_name: str) -> str:
        existing = self.registry.classes.get(raw_name)
        if existing is not None:
            return existing.iri
        return add_prefix(standardize_class_name(raw_name), self.prefix)

    def property_iri(self, raw_name: str) -> str:
        return add_prefix(standardize_property_name(raw_name), self.prefix)

    # ---- get-or-create --------------------------------------------

    def get_or_create_class(self, raw_name: str) -> CanonicalClass:
        cls = self.registry.classes.get(raw_name)
        if cls is None:
            iri = self.class_iri(raw_name)
            cls = CanonicalClass(iri=iri, label=remove_namespace(iri))
            self.registry.classes[raw_name] = cls
        return cls

    def get_or_create_property(
        self,
        raw_name: str,
        type_tag: Optional[str] = None,
        collection: Optional[str] = None,
    ) -> CanonicalProperty:
        prop = self.registry.properties.get(raw_name)
        if prop is None:
            iri = self.property_iri(raw_name)
            prop = CanonicalProperty(iri=iri, label=remove_namespace(iri))
            self.registry.properties[raw_name] = prop
        prop.add_datatype(collection or "", normalize_datatype(type_tag))
        return prop

    def get_or_create_shape(
        self,
        class_name: str,
        closed: Optional[bool] = None,
    ) -> ShaclShape:
        shape = self.registry.shapes.get(class_name)
        if shape is None:
            target = self.get_or_create_class(class_name).iri
            shape = ShaclShape(iri=f"{target}Shape", target_class=target)
            self.registry.shapes[class_name] = shape
        if closed is None:
            closed = self.closed_shapes
        shape.closed = closed
        shape.ignored_properties = ["rdf:type"] if closed else []
        return shape

    # ---- constraints ----------------------------------------------

    def set_property(
        self,
        shape: ShaclShape,
        prop: CanonicalProperty,
        predicate: Predicate,
    ) -> Optional[DatatypeConflict]:
        """Apply one predicate's metadata to its shape constraint.

        Returns:
            A conflict report when the property's accumulated datatype
            set is ambiguous, otherwise None
        """
        collection = predicate.collection
        constraint = shape.get_or_add_constraint(prop.iri)
        conflict = None

        if predicate.doc is not None:
            prop.comment = predicate.doc

        datatype = normalize_datatype(predicate.type)
        if datatype is not None:
            if prop.has_conflict:
                constraint.datatype = None
                conflict = DatatypeConflict(
                    property_iri=prop.iri,
                    class_iri=shape.target_class,
                    datatype=datatype,
                    others={
                        self.class_iri(other): other_type
                        for other, other_type in prop.class_datatypes.items()
                        if other != collection and other_type != datatype
                    },
                )
            else:
                constraint.datatype = datatype

        if predicate.restrict_collection:
            constraint.class_ref = self.class_iri(predicate.restrict_collection)

        constraint.max_count = 1 if predicate.multi is False else None
        return conflict

    # ---- passes ---------------------------------------------------

    def canonicalize(self, predicates: Iterable[Predicate]) -> list[DatatypeConflict]:
        """Run both passes over *predicates* and return conflict reports."""
        predicates = list(predicates)

        for predicate in predicates:
            collection, prop_name = predicate.split_name()
            self.get_or_create_class(collection)
            self.get_or_create_property(prop_name, predicate.type, collection)

        conflicts: list[DatatypeConflict] = []
        for predicate in predicates:
            collection, prop_name = predicate.split_name()
            cls = self.registry.classes[collection]
            prop = self.registry.properties[prop_name]
            cls.add_range(prop.iri)
            prop.add_domain(cls.iri)
            shape = self.get_or_create_shape(collection)
            conflict = self.set_property(shape, prop, predicate)
            if conflict is not None:
                logger.warning(conflict.message())
                conflicts.append(conflict)

        self.conflicts.extend(conflicts)
        logger.info(
            f"Canonicalized {len(predicates)} predicates into "
            f"{len(self.registry.classes)} classes and "
            f"{len(self.registry.properties)} properties"
        )
        return conflicts

    # ---- export ---------------------------------------------------

    def vocab_nodes(self, include_shacl: bool = False) -> list[dict[str, Any]]:
        nodes = [c.to_jsonld() for c in self.registry.classes.values()]
        nodes.extend(p.to_jsonld() for p in self.registry.properties.values())
        if include_shacl:
            nodes.extend(s.to_jsonld() for s in self.registry.shapes.values())
        return nodes

    def get_vocab_document(
        self,
        include_shacl: bool,
        context: ContextBuilder,
        ledger: Optional[str] = None,
        default_context: bool = False,
    ) -> OutputDocument:
        """Classes, properties and (optionally) shapes as one document.

        When *default_context* is set the data context is attached as
        ``f:defaultContext`` so a newly created ledger adopts it.
        """
        extra: dict[str, Any] = {}
        if default_context:
            extra["f:defaultContext"] = context.data_context()
        return OutputDocument(
            ledger=ledger,
            context=context.vocab_context(),
            nodes=self.vocab_nodes(include_shacl),
            extra=extra,
        )
