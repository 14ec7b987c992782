"""Live-schema access: introspection, dependency ordering, identifiers.

Usage:
    from db_restore.schema import DependencyResolver, SchemaIntrospector
    from db_restore.schema import SYSTEM_TABLES, quote_ident
"""

from db_restore.schema.dependencies import DependencyResolver, topological_sort
from db_restore.schema.identifiers import quote_ident, quote_qualified
from db_restore.schema.introspector import SchemaIntrospector
from db_restore.schema.models import SYSTEM_TABLES, excluded_tables

__all__ = [
    "DependencyResolver",
    "topological_sort",
    "SchemaIntrospector",
    "quote_ident",
    "quote_qualified",
    "SYSTEM_TABLES",
    "excluded_tables",
]
