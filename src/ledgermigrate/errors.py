"""Exception hierarchy for migration failures.

Anything derived from :class:`MigrationError` stops the run; the CLI
turns it into an ``Error:`` line and a non-zero exit.
"""

__all__ = [
    "ConfigurationError",
    "ExtractionError",
    "MalformedPredicateError",
    "MigrationError",
    "SchemaQueryError",
    "UnknownClassError",
]


class MigrationError(Exception):
    """Base exception for migration errors."""

    pass


class ConfigurationError(MigrationError):
    """Raised when run settings are inconsistent."""

    pass


class SchemaQueryError(MigrationError):
    """Raised when the source schema cannot be retrieved or is unusable."""

    pass


class MalformedPredicateError(MigrationError):
    """Raised when a predicate lacks an id or a collection/property name."""

    pass


class ExtractionError(MigrationError):
    """Raised when a collection's data cannot be paged out of the source."""

    pass


class UnknownClassError(MigrationError):
    """Raised when a spill file names a collection the schema does not know."""

    pass
