"""DuckDB connection, schema init, and the Database handle shared by all components."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, TypeVar

import duckdb
import structlog

if TYPE_CHECKING:
    from duckdb import DuckDBPyConnection

log = structlog.get_logger(__name__)

T = TypeVar("T")

RETRY_BASE_DELAY_SEC = 0.01

SCHEMA_SQL = """
-- Markets (lifecycle state + pool total as decimal string)
CREATE TABLE IF NOT EXISTS markets (
    id                  VARCHAR PRIMARY KEY,
    title               VARCHAR NOT NULL,
    description         VARCHAR NOT NULL DEFAULT '',
    category            VARCHAR,
    status              VARCHAR NOT NULL,
    outcome             VARCHAR,
    resolved_outcome_id VARCHAR,
    created_by          VARCHAR,
    betting_deadline    BIGINT NOT NULL,
    resolution_time     BIGINT,
    pool_total          VARCHAR NOT NULL DEFAULT '0',
    issuer_address      VARCHAR NOT NULL,
    operator_address    VARCHAR NOT NULL,
    escrow_sequence     BIGINT,
    escrow_create_tx    VARCHAR,
    escrow_finish_tx    VARCHAR,
    escrow_cancel_tx    VARCHAR,
    created_at          BIGINT NOT NULL,
    updated_at          BIGINT NOT NULL
);

-- Outcomes (2-5 per market, each with its own issued currency code)
CREATE TABLE IF NOT EXISTS outcomes (
    id                  VARCHAR PRIMARY KEY,
    market_id           VARCHAR NOT NULL,
    label               VARCHAR NOT NULL,
    currency_code       VARCHAR NOT NULL UNIQUE,
    total_amount        VARCHAR NOT NULL DEFAULT '0',
    display_order       INTEGER NOT NULL,
    created_at          BIGINT NOT NULL
);

-- Bets (Pending until a payment hash is bound)
CREATE TABLE IF NOT EXISTS bets (
    id                  VARCHAR PRIMARY KEY,
    market_id           VARCHAR NOT NULL,
    outcome_id          VARCHAR,
    outcome             VARCHAR,
    bettor              VARCHAR NOT NULL,
    amount              VARCHAR NOT NULL,
    weight_score        DOUBLE NOT NULL,
    effective_amount    VARCHAR NOT NULL,
    status              VARCHAR NOT NULL,
    payment_tx          VARCHAR,
    escrow_tx           VARCHAR,
    mint_tx             VARCHAR,
    memo_json           VARCHAR,
    placed_at           BIGINT NOT NULL,
    updated_at          BIGINT NOT NULL
);

-- Escrows backing each market pool
CREATE TABLE IF NOT EXISTS escrows (
    id                  VARCHAR PRIMARY KEY,
    market_id           VARCHAR NOT NULL,
    amount              VARCHAR NOT NULL,
    status              VARCHAR NOT NULL,
    sequence            BIGINT NOT NULL,
    create_tx           VARCHAR NOT NULL,
    finish_tx           VARCHAR,
    cancel_tx           VARCHAR,
    cancel_after        BIGINT NOT NULL,
    finish_after        BIGINT,
    created_at          BIGINT NOT NULL,
    updated_at          BIGINT NOT NULL
);

-- Payouts (one per market + recipient)
CREATE TABLE IF NOT EXISTS payouts (
    id                  VARCHAR PRIMARY KEY,
    market_id           VARCHAR NOT NULL,
    recipient           VARCHAR NOT NULL,
    amount              VARCHAR NOT NULL,
    status              VARCHAR NOT NULL,
    payout_tx           VARCHAR,
    created_at          BIGINT NOT NULL,
    updated_at          BIGINT NOT NULL,
    UNIQUE (market_id, recipient)
);

-- DEX fills of outcome tokens (append-only)
CREATE TABLE IF NOT EXISTS trades (
    id                  VARCHAR PRIMARY KEY,
    market_id           VARCHAR NOT NULL,
    offer_tx            VARCHAR NOT NULL UNIQUE,
    taker_gets          VARCHAR NOT NULL,
    taker_pays          VARCHAR NOT NULL,
    ledger_index        BIGINT NOT NULL,
    executed_at         BIGINT NOT NULL,
    memo_json           VARCHAR
);

-- Ledger events decoded from MITATE memos (append-only, idempotent by tx_hash)
CREATE TABLE IF NOT EXISTS ledger_events (
    id                  VARCHAR PRIMARY KEY,
    tx_hash             VARCHAR NOT NULL UNIQUE,
    event_type          VARCHAR NOT NULL,
    market_id           VARCHAR,
    payload             JSON NOT NULL,
    ledger_index        BIGINT NOT NULL,
    ingested_at         BIGINT NOT NULL
);

-- Verified bettor attributes (weight multipliers)
CREATE TABLE IF NOT EXISTS user_attributes (
    id                  VARCHAR PRIMARY KEY,
    wallet_address      VARCHAR NOT NULL,
    attribute_type      VARCHAR NOT NULL,
    attribute_label     VARCHAR NOT NULL,
    weight              DOUBLE NOT NULL,
    verified_at         BIGINT,
    created_at          BIGINT NOT NULL,
    UNIQUE (wallet_address, attribute_type, attribute_label)
);

-- Durable key/value state (sync cursor)
CREATE TABLE IF NOT EXISTS system_state (
    key                 VARCHAR PRIMARY KEY,
    value               VARCHAR NOT NULL,
    updated_at          BIGINT NOT NULL
);

-- Transaction hashes bound to a bet payment or payout (a hash confirms at most one record)
CREATE TABLE IF NOT EXISTS tx_claims (
    tx_hash             VARCHAR PRIMARY KEY,
    kind                VARCHAR NOT NULL,
    ref_id              VARCHAR NOT NULL,
    claimed_at          BIGINT NOT NULL
);
"""


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    """Random 32-char hex id. The first 8 chars are random, so they can key currency codes."""
    return uuid.uuid4().hex


def get_connection(db_path: str | Path, read_only: bool = False) -> DuckDBPyConnection:
    """Return a DuckDB connection. Caller must close or use as context manager.
    DuckDB allows one writing process per file; use read_only=True for inspection
    while the settlement service holds the write lock."""
    path = Path(db_path)
    if not read_only:
        path.parent.mkdir(parents=True, exist_ok=True)
    return duckdb.connect(str(path), read_only=read_only)


def init_schema(conn: DuckDBPyConnection) -> None:
    """Create tables if they do not exist."""
    for stmt in SCHEMA_SQL.split(";"):
        stmt = stmt.strip()
        if stmt:
            try:
                conn.execute(stmt)
            except duckdb.Error as e:
                if "already exists" not in str(e).lower():
                    raise


class Database:
    """Single DuckDB handle injected into every component.

    Lifecycle: open() (creates the file and schema) ... close(). Also usable as
    a context manager. transaction() is re-entrant: nested blocks join the
    outermost transaction, which commits or rolls back as a unit.
    """

    def __init__(self, db_path: str | Path, read_only: bool = False) -> None:
        self.db_path = Path(db_path)
        self.read_only = read_only
        self._conn: DuckDBPyConnection | None = None
        self._depth = 0

    def open(self) -> Database:
        if self._conn is None:
            self._conn = get_connection(self.db_path, read_only=self.read_only)
            if not self.read_only:
                init_schema(self._conn)
            log.debug("db_opened", path=str(self.db_path))
        return self

    @property
    def conn(self) -> DuckDBPyConnection:
        if self._conn is None:
            raise RuntimeError("Database not opened. Call open() first.")
        return self._conn

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
            self._depth = 0

    def __enter__(self) -> Database:
        return self.open()

    def __exit__(self, *exc: object) -> None:
        self.close()

    @property
    def in_transaction(self) -> bool:
        return self._depth > 0

    @contextmanager
    def transaction(self) -> Iterator[DuckDBPyConnection]:
        conn = self.conn
        if self._depth > 0:
            self._depth += 1
            try:
                yield conn
            finally:
                self._depth -= 1
            return
        conn.begin()
        self._depth = 1
        try:
            yield conn
        except BaseException:
            self._depth = 0
            conn.rollback()
            raise
        self._depth = 0
        conn.commit()

    def cursor(self) -> Database:
        """Another handle on the same open database, with its own transaction state."""
        handle = Database(self.db_path, read_only=self.read_only)
        handle._conn = self.conn.cursor()
        return handle

    def run_transaction(self, fn: Callable[[DuckDBPyConnection], T], retries: int = 5) -> T:
        """Run fn(conn) in a transaction, retrying on write-write conflicts.

        Conflicts surface as duckdb.TransactionException when two cursors touch
        the same rows, or as a constraint violation when both insert the same
        key. The loser is rolled back and fn re-evaluates fresh state.
        """
        if self._depth > 0:
            return fn(self.conn)
        attempt = 0
        while True:
            try:
                with self.transaction() as conn:
                    return fn(conn)
            except (duckdb.TransactionException, duckdb.ConstraintException) as e:
                attempt += 1
                if attempt > retries:
                    raise
                log.warning("db_transaction_conflict", attempt=attempt, error=str(e))
                time.sleep(min(RETRY_BASE_DELAY_SEC * 2 ** (attempt - 1), 0.5))
