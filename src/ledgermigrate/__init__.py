"""ledgermigrate: migrate a collection/property ledger to normalized JSON-LD.

Main modules:
- canonical: SchemaCanonicalizer building classes, properties and SHACL shapes
- extractor: EntityExtractor paging entities out of the source concurrently
- transformer: RecordTransformer turning raw records into JSON-LD nodes
- sink: OutputSink writing size-bounded documents to stdout, files or a ledger
- api: migrate() running the whole pipeline
"""

from .api import migrate
from .canonical import SchemaCanonicalizer, SchemaRegistry
from .config import Destination, MigrationConfig
from .connection import ConnectionState, RequestLoop, RequestState
from .models import MigrationSummary

# Import version information
from .version import VERSION

__all__ = [
    "VERSION",
    "ConnectionState",
    "Destination",
    "MigrationConfig",
    "MigrationSummary",
    "RequestLoop",
    "RequestState",
    "SchemaCanonicalizer",
    "SchemaRegistry",
    "migrate",
]
