"""
Query documents sent to the source ledger.

The source speaks a JSON query language posted to ``/multi-query``
(schema) and ``/query`` (data).  Builders return plain dicts; the
connection serializes them.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "SCHEMA_QUERY",
    "build_data_page_query",
    "build_schema_query",
]

# Larger than any realistic predicate count; the source caps at this.
_UNBOUNDED = 9_999_999

# Query budget for a single data page.
_PAGE_FUEL = 9_999_999_999

SCHEMA_QUERY: dict[str, Any] = {
    # Ids of predicates present at block 1, i.e. built-in system predicates.
    "initial_predicates": {
        "select": "?pred",
        "where": [["?pred", "_predicate/name", "?pN"]],
        "block": 1,
        "opts": {"limit": _UNBOUNDED},
    },
    "current_predicates": {
        "select": {"?pred": ["*"]},
        "where": [["?pred", "_predicate/name", "?pN"]],
        "opts": {"compact": True, "limit": _UNBOUNDED},
    },
}


def build_schema_query() -> dict[str, Any]:
    """Multi-query returning system predicate ids and every predicate."""
    return {key: dict(value) for key, value in SCHEMA_QUERY.items()}


def build_data_page_query(
    collection: str,
    offset: int,
    page_size: int,
) -> dict[str, Any]:
    """Select one page of entities from *collection* (compact keys)."""
    return {
        "select": ["*"],
        "from": collection,
        "opts": {
            "compact": True,
            "limit": page_size,
            "offset": offset,
            "fuel": _PAGE_FUEL,
        },
    }
