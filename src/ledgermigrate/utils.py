"""
Common utility functions for naming, time and size formatting.

This module contains the small string helpers shared by the
canonicalizer, the transformer and the output sink so that every
component derives class and property IRIs the same way.
"""

import math
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, Tuple
from urllib.parse import urlparse

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def remove_namespace(name: str) -> str:
    """
    Strip a ``prefix:`` namespace from a name.

    Args:
        name: Name that may carry a namespace (e.g. ``"schema:Person"``)

    Returns:
        The part after the first colon, or the name unchanged
    """
    parts = name.split(":")
    if len(parts) > 1:
        return parts[1]
    return name


def capitalize(name: str) -> str:
    """Upper-case the first character only (``"blogPost"`` -> ``"BlogPost"``)."""
    if not name:
        return ""
    return name[0].upper() + name[1:]


def case_normalize(name: str) -> str:
    """
    Merge ``snake_case`` segments into camelCase.

    The leading segment keeps its case, so ``"first_name"`` becomes
    ``"firstName"`` and ``"Blog_post"`` becomes ``"BlogPost"``.
    """
    first, *rest = name.split("_")
    return first + "".join(capitalize(part) for part in rest)


def standardize_class_name(raw_name: str) -> str:
    """Derive a PascalCase class name from a raw collection name."""
    return case_normalize(capitalize(remove_namespace(raw_name)))


def standardize_property_name(raw_name: str) -> str:
    """Derive a camelCase property name from a raw property name."""
    return case_normalize(raw_name)


def add_prefix(name: str, prefix: str) -> str:
    """Prepend *prefix* (e.g. ``"schema:"``) to *name*."""
    return f"{prefix}{name}"


def split_predicate_name(name: str) -> Tuple[str, str]:
    """
    Split a ``collection/property`` predicate name.

    Args:
        name: Raw predicate name

    Returns:
        Tuple of (collection name, property name)

    Raises:
        ValueError: If the name does not have both parts
    """
    collection, sep, prop = name.partition("/")
    if not sep or not collection or not prop:
        raise ValueError(
            f"{name} does not have a collection and property name "
            "(e.g. collection/property)"
        )
    return collection, prop


def instant_to_iso_string(epoch_millis: int) -> str:
    """
    Convert an epoch-millisecond instant to an RFC 3339 UTC string.

    Examples::

        >>> instant_to_iso_string(1693403567000)
        '2023-08-30T13:52:47.000Z'
    """
    moment = _EPOCH + timedelta(milliseconds=int(epoch_millis))
    return moment.strftime("%Y-%m-%dT%H:%M:%S") + f".{moment.microsecond // 1000:03d}Z"


def get_ledger_name(url: str) -> str:
    """
    Derive the ``network/db`` ledger identifier from a ledger URL.

    Examples::

        >>> get_ledger_name("http://localhost:8090/fdb/acme/crm")
        'acme/crm'
    """
    segments = [s for s in urlparse(url).path.split("/") if s]
    if len(segments) < 2:
        raise ValueError(f"Cannot derive a network/db ledger name from {url}")
    return f"{segments[-2]}/{segments[-1]}"


def is_valid_url(url: str) -> bool:
    """Check that *url* has a scheme and a host."""
    parsed = urlparse(url)
    return bool(parsed.scheme in ("http", "https") and parsed.netloc)


def parse_context_entries(entries: Iterable[str]) -> Dict[str, str]:
    """
    Parse ``prefix=iri`` strings into a context mapping.

    Raises:
        ValueError: If an entry has no ``=`` separator
    """
    context: Dict[str, str] = {}
    for entry in entries:
        key, sep, value = entry.partition("=")
        if not sep or not key:
            raise ValueError(
                "Context entries must be a key and value separated by an equals "
                f"sign (e.g. schema=http://schema.org/), got {entry!r}"
            )
        context[key] = value
    return context


def format_bytes(size: float) -> str:
    """Render a byte count for humans (``2621440`` -> ``"2.5 MB"``)."""
    units = ["bytes", "KB", "MB", "GB", "TB", "PB", "EB"]
    if size < 1:
        return f"{float(size):.1f} bytes"
    exponent = min(int(math.floor(math.log(size, 1024))), len(units) - 1)
    return f"{size / 1024 ** exponent:.1f} {units[exponent]}"
