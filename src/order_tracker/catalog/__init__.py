"""Read-only access to the manufacturing cost catalog.

Modules:
- db: SQLite `piece_costs` file, snapshot loading and the init-once handle
"""

from .db import CatalogDatabase, CatalogHandle

__all__ = [
    "CatalogDatabase",
    "CatalogHandle",
]
