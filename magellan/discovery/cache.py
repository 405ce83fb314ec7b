"""
Magellan - Scan Cache.

SQLite table of scan results, written by `magellan scan` and read by
`magellan collect` and `magellan list`.

Design:
- One row per (host, port); a rescan replaces the previous row
- state stored as INTEGER (0/1), timestamp as ISO text
- Reading never creates the database file
"""

import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterator, List, Union

from ..exceptions import MagellanError
from .models import Protocol, RemoteAsset

logger = logging.getLogger(__name__)

TABLE_NAME = "magellan_scanned_assets"

SCHEMA_SQL = f"""
CREATE TABLE IF NOT EXISTS {TABLE_NAME} (
    host        TEXT NOT NULL,
    port        INTEGER NOT NULL,
    protocol    TEXT,
    state       INTEGER,
    timestamp   TEXT,
    PRIMARY KEY (host, port)
);
"""


class CacheError(MagellanError):
    """Scan cache could not be opened or read."""
    pass


class ScanCache:
    """
    Scan result store.

    Usage:
        cache = ScanCache("/tmp/me/magellan/magellan.db")
        cache.insert_assets(assets)
        live = [a for a in cache.get_assets() if a.state]
    """

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @contextmanager
    def _connect(self, create: bool = True) -> Iterator[sqlite3.Connection]:
        if not create and not self.path.exists():
            raise CacheError(f"no scan cache found at {self.path}")
        if create:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        try:
            conn = sqlite3.connect(str(self.path))
        except sqlite3.Error as e:
            raise CacheError(f"failed to open database {self.path}: {e}") from e
        try:
            conn.row_factory = sqlite3.Row
            conn.executescript(SCHEMA_SQL)
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise CacheError(f"scan cache error: {e}") from e
        finally:
            conn.close()

    def insert_assets(self, assets: List[RemoteAsset]) -> int:
        """Insert or replace scan results. Returns rows written."""
        if not assets:
            return 0
        rows = [
            (a.host, a.port, a.protocol.value, int(a.state), a.timestamp.isoformat())
            for a in assets
        ]
        with self._connect() as conn:
            conn.executemany(
                f"INSERT OR REPLACE INTO {TABLE_NAME} "
                f"(host, port, protocol, state, timestamp) VALUES (?, ?, ?, ?, ?)",
                rows,
            )
        logger.debug(f"Cached {len(rows)} scan results in {self.path}")
        return len(rows)

    def get_assets(self) -> List[RemoteAsset]:
        """All cached results, ordered by host then port."""
        with self._connect(create=False) as conn:
            cursor = conn.execute(
                f"SELECT host, port, protocol, state, timestamp FROM {TABLE_NAME} "
                f"ORDER BY host, port"
            )
            return [self._row_to_asset(row) for row in cursor.fetchall()]

    def delete_assets(self, assets: List[RemoteAsset]) -> int:
        """
        Delete results matching host and/or port.

        An asset with an empty host matches every host on that port; a
        port <= 0 matches every port on that host.
        """
        deleted = 0
        with self._connect(create=False) as conn:
            for asset in assets:
                where, params = [], []
                if asset.host:
                    where.append("host = ?")
                    params.append(asset.host)
                if asset.port > 0:
                    where.append("port = ?")
                    params.append(asset.port)
                if not where:
                    continue
                cursor = conn.execute(
                    f"DELETE FROM {TABLE_NAME} WHERE {' AND '.join(where)}",
                    params,
                )
                deleted += cursor.rowcount
        return deleted

    def clear(self) -> None:
        """Remove every cached result."""
        with self._connect() as conn:
            conn.execute(f"DELETE FROM {TABLE_NAME}")

    @staticmethod
    def _row_to_asset(row: sqlite3.Row) -> RemoteAsset:
        timestamp = row["timestamp"]
        return RemoteAsset(
            host=row["host"],
            port=int(row["port"]),
            protocol=Protocol(row["protocol"] or "tcp"),
            state=bool(row["state"]),
            timestamp=datetime.fromisoformat(timestamp) if timestamp else datetime.now(),
        )
