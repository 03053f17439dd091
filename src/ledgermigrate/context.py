"""JSON-LD ``@context`` assembly for vocabulary and data documents."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from rdflib.namespace import RDF, RDFS, SH, XSD

__all__ = [
    "ContextBuilder",
    "FIXED_PREFIXES",
    "LEDGER_NAMESPACE",
]

LEDGER_NAMESPACE = "https://ns.flur.ee/ledger#"

FIXED_PREFIXES: dict[str, str] = {
    "rdf": str(RDF),
    "rdfs": str(RDFS),
    "sh": str(SH),
    "xsd": str(XSD),
    "f": LEDGER_NAMESPACE,
}


@dataclass
class ContextBuilder:
    """Build contexts from explicit overrides or source-URL defaults.

    Vocabulary terms resolve against ``@base`` (the vocab IRI) while
    data nodes resolve ids against ``@base`` and types/properties
    against ``@vocab``.
    """

    source_url: str
    base: Optional[str] = None
    vocab: Optional[str] = None
    extra: dict[str, str] = field(default_factory=dict)

    @property
    def default_terms(self) -> str:
        return f"{self.source_url.rstrip('/')}/terms/"

    @property
    def default_ids(self) -> str:
        return f"{self.source_url.rstrip('/')}/ids/"

    def vocab_context(self) -> dict[str, str]:
        context = {"@base": self.vocab or self.default_terms}
        return self._finish(context)

    def data_context(self) -> dict[str, str]:
        context = {
            "@base": self.base or self.default_ids,
            "@vocab": self.vocab or self.default_terms,
        }
        return self._finish(context)

    def _finish(self, context: dict[str, str]) -> dict[str, str]:
        context.update(self.extra)
        context.update(FIXED_PREFIXES)
        return context
