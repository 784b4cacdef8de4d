"""DuckDB persistence - one module per table, functions take the connection first."""

from mitate.storage.db import Database, get_connection, init_schema, new_id, now_ms

__all__ = ["Database", "get_connection", "init_schema", "new_id", "now_ms"]
