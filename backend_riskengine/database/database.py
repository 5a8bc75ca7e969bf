"""
Persistence for reputation evidence, first-seen times, score history, and trace edges.

Evidence and score history are append-only: rows are inserted, never updated
or deleted. SQLite for now; the backend is swappable behind DatabaseBackend.
"""

from __future__ import annotations

import json
import sqlite3
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from backend_riskengine.analysis_engine.models import Evidence, LinkageType, RiskScore, TraceEdge
from backend_riskengine.database.models import EdgeRevisionRecord, RiskScoreRecord
from backend_riskengine.riskengine_logging import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Schema (SQLite)
# -----------------------------------------------------------------------------

SCHEMA_REPUTATION_EVIDENCE = """
CREATE TABLE IF NOT EXISTS reputation_evidence (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chain TEXT NOT NULL,
    address TEXT NOT NULL,
    source TEXT NOT NULL,
    weight REAL NOT NULL,
    timestamp INTEGER NOT NULL,
    detail TEXT NOT NULL DEFAULT '',
    created_at INTEGER
);
CREATE INDEX IF NOT EXISTS ix_reputation_evidence_key ON reputation_evidence(chain, address);
"""

SCHEMA_ADDRESS_FIRST_SEEN = """
CREATE TABLE IF NOT EXISTS address_first_seen (
    chain TEXT NOT NULL,
    address TEXT NOT NULL,
    first_seen INTEGER NOT NULL,
    PRIMARY KEY (chain, address)
);
"""

SCHEMA_RISK_SCORES = """
CREATE TABLE IF NOT EXISTS risk_scores (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    chain TEXT NOT NULL,
    tx_hash TEXT NOT NULL,
    score REAL NOT NULL,
    risk_level TEXT NOT NULL,
    model_version TEXT NOT NULL,
    computed_at INTEGER NOT NULL,
    factors_json TEXT
);
CREATE INDEX IF NOT EXISTS ix_risk_scores_tx ON risk_scores(chain, tx_hash, computed_at);
"""

SCHEMA_TRACE_EDGES = """
CREATE TABLE IF NOT EXISTS trace_edges (
    edge_key TEXT PRIMARY KEY,
    chain_a TEXT NOT NULL,
    address_a TEXT NOT NULL,
    chain_b TEXT NOT NULL,
    address_b TEXT NOT NULL,
    linkage TEXT NOT NULL,
    confidence REAL NOT NULL,
    evidence_ref TEXT NOT NULL DEFAULT ''
);
CREATE TABLE IF NOT EXISTS trace_edge_revisions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    edge_key TEXT NOT NULL,
    confidence REAL NOT NULL,
    reason TEXT NOT NULL,
    revised_at INTEGER NOT NULL
);
CREATE INDEX IF NOT EXISTS ix_trace_edge_revisions_key ON trace_edge_revisions(edge_key);
"""


# -----------------------------------------------------------------------------
# Abstract backend
# -----------------------------------------------------------------------------


class DatabaseBackend(ABC):
    """Abstract interface for persistence."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def append_evidence(self, chain: str, address: str, evidence: Evidence) -> int:
        ...

    @abstractmethod
    def get_evidence(self, chain: str, address: str) -> list[Evidence]:
        """All evidence for an address in insertion order."""
        ...

    @abstractmethod
    def upsert_first_seen(self, chain: str, address: str, timestamp: int) -> None:
        """Store first-seen time, keeping the earlier of existing and new."""
        ...

    @abstractmethod
    def get_first_seen(self, chain: str, address: str) -> int | None:
        ...

    @abstractmethod
    def insert_risk_score(
        self,
        chain: str,
        tx_hash: str,
        score: float,
        risk_level: str,
        model_version: str,
        computed_at: int,
        factors_json: str | None,
    ) -> int:
        ...

    @abstractmethod
    def get_risk_score_history(self, chain: str, tx_hash: str, *, limit: int = 100) -> list[RiskScoreRecord]:
        """Score history for a transaction, newest first."""
        ...

    @abstractmethod
    def upsert_trace_edge(self, edge: TraceEdge) -> None:
        ...

    @abstractmethod
    def load_trace_edges(self) -> list[TraceEdge]:
        ...

    @abstractmethod
    def append_edge_revision(self, edge_key: str, confidence: float, reason: str, revised_at: int) -> int:
        ...

    @abstractmethod
    def get_edge_revisions(self, edge_key: str) -> list[EdgeRevisionRecord]:
        """Revisions for an edge, oldest first."""
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


class SQLiteBackend(DatabaseBackend):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _cursor(self):
        conn = self._connect()
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            for stmt in (
                SCHEMA_REPUTATION_EVIDENCE,
                SCHEMA_ADDRESS_FIRST_SEEN,
                SCHEMA_RISK_SCORES,
                SCHEMA_TRACE_EDGES,
            ):
                cur.executescript(stmt)

    # --- reputation ---

    def append_evidence(self, chain: str, address: str, evidence: Evidence) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO reputation_evidence (chain, address, source, weight, timestamp, detail, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    chain,
                    address,
                    evidence.source,
                    evidence.weight,
                    evidence.timestamp,
                    evidence.detail,
                    int(time.time()),
                ),
            )
            return cur.lastrowid or 0

    def get_evidence(self, chain: str, address: str) -> list[Evidence]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT source, weight, timestamp, detail FROM reputation_evidence
                WHERE chain = ? AND address = ? ORDER BY id ASC
                """,
                (chain, address),
            )
            rows = cur.fetchall()
        return [
            Evidence(
                source=row["source"],
                weight=row["weight"],
                timestamp=row["timestamp"],
                detail=row["detail"],
            )
            for row in rows
        ]

    def upsert_first_seen(self, chain: str, address: str, timestamp: int) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO address_first_seen (chain, address, first_seen)
                VALUES (?, ?, ?)
                ON CONFLICT(chain, address) DO UPDATE SET
                    first_seen = MIN(first_seen, excluded.first_seen)
                """,
                (chain, address, timestamp),
            )

    def get_first_seen(self, chain: str, address: str) -> int | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT first_seen FROM address_first_seen WHERE chain = ? AND address = ?",
                (chain, address),
            )
            row = cur.fetchone()
        return row["first_seen"] if row is not None else None

    # --- scores ---

    def insert_risk_score(
        self,
        chain: str,
        tx_hash: str,
        score: float,
        risk_level: str,
        model_version: str,
        computed_at: int,
        factors_json: str | None,
    ) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO risk_scores (chain, tx_hash, score, risk_level, model_version, computed_at, factors_json)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (chain, tx_hash, score, risk_level, model_version, computed_at, factors_json),
            )
            return cur.lastrowid or 0

    def get_risk_score_history(self, chain: str, tx_hash: str, *, limit: int = 100) -> list[RiskScoreRecord]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, chain, tx_hash, score, risk_level, model_version, computed_at, factors_json
                FROM risk_scores WHERE chain = ? AND tx_hash = ?
                ORDER BY computed_at DESC, id DESC LIMIT ?
                """,
                (chain, tx_hash, limit),
            )
            rows = cur.fetchall()
        return [
            RiskScoreRecord(
                id=row["id"],
                chain=row["chain"],
                tx_hash=row["tx_hash"],
                score=row["score"],
                risk_level=row["risk_level"],
                model_version=row["model_version"],
                computed_at=row["computed_at"],
                factors_json=row["factors_json"],
            )
            for row in rows
        ]

    # --- trace edges ---

    def upsert_trace_edge(self, edge: TraceEdge) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO trace_edges (edge_key, chain_a, address_a, chain_b, address_b, linkage, confidence, evidence_ref)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(edge_key) DO UPDATE SET
                    confidence = excluded.confidence,
                    evidence_ref = excluded.evidence_ref
                """,
                (
                    edge.edge_key,
                    edge.chain_a,
                    edge.address_a,
                    edge.chain_b,
                    edge.address_b,
                    edge.linkage.value,
                    edge.confidence,
                    edge.evidence_ref,
                ),
            )

    def load_trace_edges(self) -> list[TraceEdge]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT chain_a, address_a, chain_b, address_b, linkage, confidence, evidence_ref
                FROM trace_edges ORDER BY edge_key
                """
            )
            rows = cur.fetchall()
        return [
            TraceEdge(
                chain_a=row["chain_a"],
                address_a=row["address_a"],
                chain_b=row["chain_b"],
                address_b=row["address_b"],
                linkage=LinkageType(row["linkage"]),
                confidence=row["confidence"],
                evidence_ref=row["evidence_ref"],
            )
            for row in rows
        ]

    def append_edge_revision(self, edge_key: str, confidence: float, reason: str, revised_at: int) -> int:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO trace_edge_revisions (edge_key, confidence, reason, revised_at)
                VALUES (?, ?, ?, ?)
                """,
                (edge_key, confidence, reason, revised_at),
            )
            return cur.lastrowid or 0

    def get_edge_revisions(self, edge_key: str) -> list[EdgeRevisionRecord]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT id, edge_key, confidence, reason, revised_at FROM trace_edge_revisions
                WHERE edge_key = ? ORDER BY id ASC
                """,
                (edge_key,),
            )
            rows = cur.fetchall()
        return [
            EdgeRevisionRecord(
                id=row["id"],
                edge_key=row["edge_key"],
                confidence=row["confidence"],
                reason=row["reason"],
                revised_at=row["revised_at"],
            )
            for row in rows
        ]


# -----------------------------------------------------------------------------
# Database facade
# -----------------------------------------------------------------------------


class Database:
    """Single entrypoint for persistence; backend is swappable."""

    def __init__(self, backend: DatabaseBackend) -> None:
        self._backend = backend

    def ensure_schema(self) -> None:
        self._backend.ensure_schema()

    # --- Reputation ---

    def append_evidence(self, chain: str, address: str, evidence: Evidence) -> int:
        return self._backend.append_evidence(chain, address, evidence)

    def get_evidence(self, chain: str, address: str) -> list[Evidence]:
        return self._backend.get_evidence(chain, address)

    def upsert_first_seen(self, chain: str, address: str, timestamp: int) -> None:
        self._backend.upsert_first_seen(chain, address, timestamp)

    def get_first_seen(self, chain: str, address: str) -> int | None:
        return self._backend.get_first_seen(chain, address)

    # --- Score history ---

    def insert_risk_score(self, score: RiskScore) -> int:
        """Append a score; computed_at defaults to now. Returns row id."""
        computed_at = score.computed_at if score.computed_at is not None else int(time.time())
        factors_json = json.dumps([f.to_dict() for f in score.factors])
        return self._backend.insert_risk_score(
            score.chain,
            score.tx_hash,
            score.score,
            score.risk_level,
            score.model_version,
            computed_at,
            factors_json,
        )

    def get_risk_score_history(self, chain: str, tx_hash: str, *, limit: int = 100) -> list[RiskScoreRecord]:
        return self._backend.get_risk_score_history(chain, tx_hash, limit=limit)

    # --- Trace edges ---

    def upsert_trace_edge(self, edge: TraceEdge) -> None:
        self._backend.upsert_trace_edge(edge)

    def load_trace_edges(self) -> list[TraceEdge]:
        return self._backend.load_trace_edges()

    def append_edge_revision(self, edge_key: str, confidence: float, reason: str, revised_at: int) -> int:
        return self._backend.append_edge_revision(edge_key, confidence, reason, revised_at)

    def get_edge_revisions(self, edge_key: str) -> list[EdgeRevisionRecord]:
        return self._backend.get_edge_revisions(edge_key)


def get_database(path: str | Path | None = None) -> Database:
    """
    Return a Database backed by SQLite with the schema ensured.

    path: SQLite file path. Default: "riskengine.db" in cwd.
    """
    if path is None:
        path = Path("riskengine.db")
    db = Database(SQLiteBackend(path))
    db.ensure_schema()
    logger.debug("database_ready", path=str(path))
    return db
