from __future__ import annotations

import json
import os
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Mapping, Optional

from ..domain.models import CatalogRow
from ..errors import CatalogUnavailableError
from ..logging import get_logger


LOG = get_logger("catalog-db")

CATALOG_COLUMNS = (
    "design_key",
    "ring_size",
    "volume_cm3",
    "silver_g",
    "silver_usd",
    "gold_g",
    "gold_usd",
    "bronze_g",
    "bronze_usd",
    "wax_usd",
    "product_keys",
)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS piece_costs (
  row_id        INTEGER PRIMARY KEY,
  design_key    TEXT NOT NULL,
  ring_size     TEXT,             -- NULL, '' or 'N/A' = any size
  volume_cm3    REAL,
  silver_g      REAL,
  silver_usd    REAL,
  gold_g        REAL,
  gold_usd      REAL,
  bronze_g      REAL,
  bronze_usd    REAL,
  wax_usd       REAL,
  product_keys  TEXT              -- JSON array of alias strings
);
CREATE INDEX IF NOT EXISTS idx_piece_costs_design ON piece_costs(design_key);
"""


class CatalogDatabase:
    """SQLite file holding manufacturing cost/weight rows (`piece_costs`).

    Order fetching only ever reads it; `import_rows` exists for seeding the
    file from a JSON export.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path

    @contextmanager
    def connect(self, *, read_only: bool = True) -> Iterator[sqlite3.Connection]:
        if read_only:
            if not os.path.isfile(self.db_path):
                raise CatalogUnavailableError(f"Catalog database not found at {self.db_path}")
            uri = f"{Path(os.path.abspath(self.db_path)).as_uri()}?mode=ro"
            try:
                conn = sqlite3.connect(uri, uri=True)
            except sqlite3.Error as e:
                raise CatalogUnavailableError(f"Cannot open catalog {self.db_path}: {e}") from e
        else:
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)
            conn = sqlite3.connect(self.db_path)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self.connect(read_only=False) as conn:
            conn.executescript(SCHEMA_SQL)
            conn.commit()

    def load_catalog(self) -> List[CatalogRow]:
        """Snapshot of every row, in insertion order."""
        cols = ", ".join(CATALOG_COLUMNS)
        with self.connect() as conn:
            try:
                rows = conn.execute(f"SELECT {cols} FROM piece_costs ORDER BY row_id;").fetchall()
            except sqlite3.Error as e:
                raise CatalogUnavailableError(f"Cannot read piece_costs: {e}") from e
        out: List[CatalogRow] = []
        for row in rows:
            try:
                out.append(CatalogRow.from_mapping(dict(row)))
            except (ValueError, TypeError) as e:
                LOG.warning(f"Skipping malformed catalog row design_key={row['design_key']!r}: {e}")
        LOG.info(f"Loaded {len(out)} catalog rows from {self.db_path}")
        return out

    def import_rows(self, rows: Iterable[Mapping[str, Any]]) -> int:
        self.ensure_schema()
        placeholders = ", ".join("?" for _ in CATALOG_COLUMNS)
        sql = f"INSERT INTO piece_costs ({', '.join(CATALOG_COLUMNS)}) VALUES ({placeholders});"
        count = 0
        with self.connect(read_only=False) as conn:
            for raw in rows:
                row = CatalogRow.from_mapping(raw)
                values = row.to_dict()
                if values["product_keys"] is not None:
                    values["product_keys"] = json.dumps(values["product_keys"], ensure_ascii=False)
                conn.execute(sql, tuple(values[c] for c in CATALOG_COLUMNS))
                count += 1
            conn.commit()
        LOG.info(f"Imported {count} catalog rows into {self.db_path}")
        return count


class CatalogHandle:
    """Lazily opens one CatalogDatabase; the first caller initializes it.

    Construct it once at startup and pass it to whatever needs the catalog.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: Optional[CatalogDatabase] = None
        self._lock = threading.Lock()

    def get(self) -> CatalogDatabase:
        if self._db is None:
            with self._lock:
                if self._db is None:
                    LOG.info(f"Catalog DB path: {self._db_path}")
                    self._db = CatalogDatabase(self._db_path)
        return self._db

    def load_catalog(self) -> List[CatalogRow]:
        return self.get().load_catalog()
