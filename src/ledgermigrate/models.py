"""
Pydantic models for the canonical schema graph and migration outputs.

Provides type-safe data structures for source predicates, the
class/property/shape graph built from them, and the JSON-LD documents
and run summary produced by a migration.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Set, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .utils import split_predicate_name

__all__ = [
    "CanonicalClass",
    "CanonicalProperty",
    "DatatypeConflict",
    "MigrationSummary",
    "OutputDocument",
    "Predicate",
    "PropertyConstraint",
    "ShaclShape",
]


class Predicate(BaseModel):
    """A raw source schema record naming one property of one collection."""

    id: int = Field(..., alias="_id", description="Numeric predicate id")
    name: str = Field(..., description="Predicate name as collection/property")
    type: Optional[str] = Field(None, description="Source type tag")
    doc: Optional[str] = Field(None, description="Documentation string")
    multi: Optional[bool] = Field(None, description="Whether the property is multi-valued")
    restrict_collection: Optional[str] = Field(None, alias="restrictCollection")
    unique: Optional[bool] = None
    index: Optional[bool] = None
    full_text: Optional[bool] = Field(None, alias="fullText")
    upsert: Optional[bool] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    def split_name(self) -> Tuple[str, str]:
        """Return (collection name, property name)."""
        return split_predicate_name(self.name)

    @property
    def collection(self) -> str:
        return self.split_name()[0]

    @property
    def property_name(self) -> str:
        return self.split_name()[1]


class CanonicalClass(BaseModel):
    """Normalized, IRI-addressable form of one source collection."""

    iri: str
    label: str
    comment: Optional[str] = None
    superclasses: List[str] = Field(default_factory=list)
    range: List[str] = Field(default_factory=list, description="Property IRIs")

    def add_range(self, property_iri: str) -> None:
        if property_iri not in self.range:
            self.range.append(property_iri)

    def to_jsonld(self) -> Dict[str, Any]:
        node: Dict[str, Any] = {
            "@id": self.iri,
            "@type": "rdfs:Class",
            "rdfs:label": self.label,
        }
        if self.comment:
            node["rdfs:comment"] = self.comment
        if self.superclasses:
            node["rdfs:subClassOf"] = [{"@id": iri} for iri in self.superclasses]
        if self.range:
            node["rdfs:range"] = [{"@id": iri} for iri in self.range]
        return node


class CanonicalProperty(BaseModel):
    """Normalized form of one source property name, merged across collections.

    ``datatypes`` only ever grows; more than one member means the
    source declares the property with inconsistent types.
    """

    iri: str
    label: str
    comment: Optional[str] = None
    domain: List[str] = Field(default_factory=list, description="Class IRIs")
    datatypes: Set[str] = Field(default_factory=set)
    class_datatypes: Dict[str, str] = Field(
        default_factory=dict,
        description="Raw collection name -> normalized datatype",
    )

    def add_domain(self, class_iri: str) -> None:
        if class_iri not in self.domain:
            self.domain.append(class_iri)

    def add_datatype(self, collection: str, datatype: Optional[str]) -> None:
        if datatype is None:
            return
        self.datatypes.add(datatype)
        self.class_datatypes[collection] = datatype

    @property
    def has_conflict(self) -> bool:
        return len(self.datatypes) > 1

    def to_jsonld(self) -> Dict[str, Any]:
        node: Dict[str, Any] = {
            "@id": self.iri,
            "@type": "rdf:Property",
            "rdfs:label": self.label,
        }
        if self.comment:
            node["rdfs:comment"] = self.comment
        if self.domain:
            node["rdfs:domain"] = [{"@id": iri} for iri in self.domain]
        return node


class PropertyConstraint(BaseModel):
    """One ``sh:property`` entry of a node shape."""

    path: str
    min_count: Optional[int] = None
    max_count: Optional[int] = None
    datatype: Optional[str] = None
    class_ref: Optional[str] = Field(None, description="Referenced class IRI (sh:class)")

    def to_jsonld(self) -> Dict[str, Any]:
        node: Dict[str, Any] = {"sh:path": {"@id": self.path}}
        if self.min_count is not None:
            node["sh:minCount"] = self.min_count
        if self.max_count is not None:
            node["sh:maxCount"] = self.max_count
        if self.datatype:
            node["sh:datatype"] = {"@id": self.datatype}
        if self.class_ref:
            node["sh:class"] = {"@id": self.class_ref}
        return node


class ShaclShape(BaseModel):
    """Node shape describing valid instances of one canonical class."""

    iri: str
    target_class: str
    closed: bool = False
    ignored_properties: List[str] = Field(default_factory=list)
    properties: List[PropertyConstraint] = Field(default_factory=list)

    def constraint_for(self, path: str) -> Optional[PropertyConstraint]:
        for constraint in self.properties:
            if constraint.path == path:
                return constraint
        return None

    def get_or_add_constraint(self, path: str) -> PropertyConstraint:
        constraint = self.constraint_for(path)
        if constraint is None:
            constraint = PropertyConstraint(path=path)
            self.properties.append(constraint)
        return constraint

    def to_jsonld(self) -> Dict[str, Any]:
        node: Dict[str, Any] = {
            "@id": self.iri,
            "@type": "sh:NodeShape",
            "sh:targetClass": {"@id": self.target_class},
        }
        if self.closed:
            node["sh:closed"] = True
            node["sh:ignoredProperties"] = {
                "@list": [{"@id": iri} for iri in self.ignored_properties]
            }
        node["sh:property"] = [c.to_jsonld() for c in self.properties]
        return node


class DatatypeConflict(BaseModel):
    """Non-fatal report of a property declared with several datatypes."""

    property_iri: str
    class_iri: str
    datatype: Optional[str] = Field(None, description="Datatype declared by this class")
    others: Dict[str, str] = Field(
        default_factory=dict,
        description="Other class IRI -> the datatype it declares",
    )

    def message(self) -> str:
        others = ", ".join(f"{cls} ({dt})" for cls, dt in sorted(self.others.items()))
        return (
            f"Property {self.property_iri} on {self.class_iri} is declared as "
            f"{self.datatype or 'untyped'} but also as a different datatype on: "
            f"{others or 'other classes'}; sh:datatype omitted"
        )


class OutputDocument(BaseModel):
    """A size-bounded JSON-LD transaction document."""

    ledger: Optional[str] = None
    context: Dict[str, str] = Field(default_factory=dict)
    nodes: List[Dict[str, Any]] = Field(default_factory=list)
    extra: Dict[str, Any] = Field(default_factory=dict)

    def reset(self) -> None:
        self.nodes = []

    def to_jsonld(self) -> Dict[str, Any]:
        doc: Dict[str, Any] = {}
        if self.ledger:
            doc["ledger"] = self.ledger
        doc["@context"] = dict(self.context)
        doc.update(self.extra)
        doc["insert"] = list(self.nodes)
        return doc


class MigrationSummary(BaseModel):
    """Analytics collected over one migration run."""

    source_url: str
    destination: str
    ledger: Optional[str] = None
    tool_version: str = ""
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    duration_s: Optional[float] = None
    class_count: int = 0
    property_count: int = 0
    shape_count: int = 0
    conflicts: List[DatatypeConflict] = Field(default_factory=list)
    spill_files: int = 0
    skipped_collections: List[str] = Field(
        default_factory=list,
        description="Collections only partly extracted because the source stopped answering",
    )
    nodes_emitted: int = 0
    documents_flushed: int = 0
    failed_flushes: int = 0
