"""
File Index — SQLite + FTS5 file catalog with fuzzy and hybrid ranking

Storage:
- files: one row per regular file, keyed by path
- files_fts: external-content FTS5 table kept in lockstep by triggers
- file_embeddings: optional little-endian float32 vectors per file

Ranking:
- fuzzy_search: FTS5 prefix match (2 x limit candidates by rank), then
  Jaro-Winkler between the lowercased query and lowercased basename
- semantic_search: fuzzy candidates plus cosine candidates, scored as
  alpha * jaro + (1 - alpha) * cosine

Concurrency:
- one writer connection behind a lock, held only while a batch commits
- one read connection per thread (WAL lets reads run beside the writer)
- async callers go through asyncio.to_thread so blocking SQLite never runs
  on the event loop, and the lock is never held across an HTTP call
"""

import asyncio
import logging
import os
import sqlite3
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Set, Tuple

import numpy as np
import xxhash
from rapidfuzz.distance import JaroWinkler

from ..errors import Internal, Timeout, UpstreamFailure

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 512
DEFAULT_ALPHA = 0.5
QUERY_CACHE_SIZE = 64

SCHEMA = """
    CREATE TABLE IF NOT EXISTS files (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        path TEXT UNIQUE NOT NULL,
        name TEXT NOT NULL,
        extension TEXT,
        size_bytes INTEGER NOT NULL,
        modified_at INTEGER NOT NULL,
        drive_id TEXT NOT NULL,
        indexed_at INTEGER NOT NULL
    );

    CREATE VIRTUAL TABLE IF NOT EXISTS files_fts USING fts5(
        name,
        path,
        content='files',
        content_rowid='id'
    );

    CREATE TRIGGER IF NOT EXISTS files_ai AFTER INSERT ON files BEGIN
        INSERT INTO files_fts(rowid, name, path) VALUES (new.id, new.name, new.path);
    END;

    CREATE TRIGGER IF NOT EXISTS files_ad AFTER DELETE ON files BEGIN
        INSERT INTO files_fts(files_fts, rowid, name, path)
        VALUES ('delete', old.id, old.name, old.path);
    END;

    CREATE TRIGGER IF NOT EXISTS files_au AFTER UPDATE ON files BEGIN
        INSERT INTO files_fts(files_fts, rowid, name, path)
        VALUES ('delete', old.id, old.name, old.path);
        INSERT INTO files_fts(rowid, name, path) VALUES (new.id, new.name, new.path);
    END;

    CREATE INDEX IF NOT EXISTS idx_files_drive ON files(drive_id);

    CREATE TABLE IF NOT EXISTS file_embeddings (
        file_id INTEGER PRIMARY KEY REFERENCES files(id) ON DELETE CASCADE,
        embedding BLOB NOT NULL,
        model_name TEXT NOT NULL,
        embedded_at TEXT NOT NULL,
        content_hash TEXT
    );
"""

UPSERT_FILE = """
    INSERT INTO files (path, name, extension, size_bytes, modified_at, drive_id, indexed_at)
    VALUES (?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(path) DO UPDATE SET
        name = excluded.name,
        extension = excluded.extension,
        size_bytes = excluded.size_bytes,
        modified_at = excluded.modified_at,
        drive_id = excluded.drive_id,
        indexed_at = excluded.indexed_at
"""

FILE_COLUMNS = "f.id, f.path, f.name, f.extension, f.size_bytes, f.modified_at, f.drive_id, f.indexed_at"


# =============================================================================
# Data model
# =============================================================================

class SearchIntent(Enum):
    FILENAME = "filename"
    SEMANTIC = "semantic"
    HYBRID = "hybrid"


@dataclass
class ScanStats:
    total_files: int = 0
    indexed: int = 0
    errors: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {"total_files": self.total_files, "indexed": self.indexed, "errors": self.errors}


@dataclass
class FileRecord:
    """One row of the files table."""
    id: int
    path: str
    name: str
    extension: Optional[str]
    size_bytes: int
    modified_at: datetime
    drive_id: str
    indexed_at: datetime

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> 'FileRecord':
        return cls(
            id=row["id"],
            path=row["path"],
            name=row["name"],
            extension=row["extension"],
            size_bytes=row["size_bytes"],
            modified_at=datetime.fromtimestamp(row["modified_at"], tz=timezone.utc),
            drive_id=row["drive_id"],
            indexed_at=datetime.fromtimestamp(row["indexed_at"], tz=timezone.utc),
        )


@dataclass
class SearchResult:
    path: Path
    name: str
    extension: Optional[str]
    size_bytes: int
    modified_at: datetime
    score: float
    fuzzy_score: float = 0.0
    embedding_score: Optional[float] = None
    file_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "name": self.name,
            "extension": self.extension,
            "size_bytes": self.size_bytes,
            "modified_at": self.modified_at.isoformat(),
            "score": round(self.score, 4),
            "embedding_score": self.embedding_score,
        }


@dataclass
class SearchFilter:
    """Optional restrictions for semantic_search. Extensions are compared lowercase, without dot."""
    drive_id: Optional[str] = None
    extensions: Set[str] = field(default_factory=set)
    path_prefix: Optional[str] = None

    def matches(self, result: SearchResult, drive_id: Optional[str] = None) -> bool:
        if self.drive_id is not None and drive_id != self.drive_id:
            return False
        if self.extensions:
            wanted = {e.lower().lstrip(".") for e in self.extensions}
            if (result.extension or "").lower() not in wanted:
                return False
        if self.path_prefix is not None and not str(result.path).startswith(self.path_prefix):
            return False
        return True


# =============================================================================
# Helpers
# =============================================================================

def fts_query(query: str) -> str:
    """
    Prefix-match every whitespace token (implicit AND). Tokens are quoted.

    Tokens without a letter or digit hold nothing the FTS tokenizer keeps and
    are left out.
    """
    tokens = [token for token in query.split() if any(ch.isalnum() for ch in token)]
    return " ".join('"' + token.replace('"', '""') + '"*' for token in tokens)


def name_score(query: str, name: str) -> float:
    return JaroWinkler.similarity(query.lower(), name.lower())


def encode_embedding(vector: Sequence[float]) -> bytes:
    return np.asarray(vector, dtype="<f4").tobytes()


def decode_embedding(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype="<f4")


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """0.0 for mismatched lengths, empty or zero vectors."""
    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denom = float(np.linalg.norm(va) * np.linalg.norm(vb))
    if denom == 0.0:
        return 0.0
    return float(np.dot(va, vb) / denom)


def size_category(size_bytes: int) -> str:
    if size_bytes < 1024:
        return "tiny"
    if size_bytes < 100 * 1024:
        return "small"
    if size_bytes < 10 * 1024 * 1024:
        return "medium"
    return "large"


def build_embedding_text(record: FileRecord) -> str:
    """Descriptive one-liner embedded in place of file contents."""
    parts = record.path.replace("\\", "/").split("/")
    last_three = "/".join(parts[-3:])
    return " | ".join([
        record.name,
        record.extension or "",
        last_three,
        size_category(record.size_bytes),
        record.modified_at.strftime("%B %Y"),
    ])



def classify_intent(query: str) -> SearchIntent:
    """Guess whether the user typed a filename or described a file."""
    has_space = " " in query
    has_extension = "." in query
    has_path_sep = "/" in query or "\\" in query
    has_camel = (not has_space and any(c.isupper() for c in query)
                 and any(c.islower() for c in query))
    has_snake = "_" in query and not has_space

    if has_extension or has_path_sep or has_camel or has_snake:
        return SearchIntent.FILENAME
    if len(query.split()) >= 3:
        return SearchIntent.SEMANTIC
    return SearchIntent.HYBRID


def walk_files(root: Path) -> Iterator[Tuple[Optional[os.DirEntry], Optional[OSError]]]:
    """
    Yield regular files under root without following symlinks.

    Hidden entries below the root are skipped. Unreadable directories yield
    (None, error) so the caller can count them.
    """
    stack = [str(root)]
    while stack:
        current = stack.pop()
        try:
            with os.scandir(current) as it:
                entries = list(it)
        except OSError as e:
            yield None, e
            continue
        for entry in entries:
            if entry.name.startswith("."):
                continue
            try:
                if entry.is_dir(follow_symlinks=False):
                    stack.append(entry.path)
                elif entry.is_file(follow_symlinks=False):
                    yield entry, None
            except OSError as e:
                yield None, e


# =============================================================================
# Index
# =============================================================================

class FileIndex:
    """
    Catalog of files across scanned roots ("drives").

    Usage:
        index = FileIndex(paths.index_db)
        index.scan(Path("~/Documents").expanduser(), "docs")
        hits = index.fuzzy_search("budget", 10)
    """

    def __init__(self, db_path: Path, batch_size: int = DEFAULT_BATCH_SIZE,
                 alpha: float = DEFAULT_ALPHA, query_cache_size: int = QUERY_CACHE_SIZE):
        self.db_path = Path(db_path)
        self.batch_size = batch_size
        self.alpha = alpha
        self.query_cache_size = query_cache_size
        self._lock = threading.Lock()
        self._local = threading.local()
        self._readers: List[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()
        self._query_cache: "OrderedDict[str, List[float]]" = OrderedDict()
        self._cache_lock = threading.Lock()

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self._writer = self._connect()
            with self._lock:
                self._writer.executescript(SCHEMA)
                self._writer.commit()
        except (OSError, sqlite3.Error) as e:
            raise Internal(f"Could not open file index at {self.db_path}", str(e)) from e

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), cached_statements=256, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.executescript("""
            PRAGMA journal_mode=WAL;
            PRAGMA synchronous=NORMAL;
            PRAGMA cache_size=-16384;
            PRAGMA temp_store=MEMORY;
            PRAGMA foreign_keys=ON;
        """)
        return conn

    def _reader(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    def _read(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            return self._reader().execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise Internal("File index query failed", str(e)) from e

    def _write(self, sql: str, params: Sequence[Any] = ()) -> int:
        try:
            with self._lock:
                cursor = self._writer.execute(sql, params)
                self._writer.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            raise Internal("File index update failed", str(e)) from e

    def close(self) -> None:
        """Close all connections (runs PRAGMA optimize on the writer first)."""
        with self._lock:
            try:
                self._writer.execute("PRAGMA optimize")
            except sqlite3.Error:
                pass
            self._writer.close()
        with self._readers_lock:
            for conn in self._readers:
                conn.close()
            self._readers.clear()

    # -- scanning -------------------------------------------------------------

    def scan(self, root: Path, drive_id: str) -> ScanStats:
        """
        Index every regular, non-hidden file under root.

        Per-file stat errors are counted. A database error stops the scan and
        the partial stats are returned.
        """
        root = Path(root)
        stats = ScanStats()
        indexed_at = int(datetime.now(timezone.utc).timestamp())
        batch: List[Tuple[Any, ...]] = []

        for entry, error in walk_files(root):
            if error is not None:
                stats.errors += 1
                logger.debug("Scan error under %s: %s", root, error)
                continue
            stats.total_files += 1
            try:
                st = entry.stat(follow_symlinks=False)
            except OSError as e:
                stats.errors += 1
                logger.debug("Could not stat %s: %s", entry.path, e)
                continue

            suffix = Path(entry.name).suffix
            batch.append((
                entry.path,
                entry.name,
                suffix[1:].lower() if suffix else None,
                st.st_size,
                int(st.st_mtime),
                drive_id,
                indexed_at,
            ))
            if len(batch) >= self.batch_size:
                if not self._commit_batch(batch, stats):
                    return stats
                batch = []

        if batch:
            self._commit_batch(batch, stats)

        logger.info("Scanned %s (%s): %d files, %d indexed, %d errors",
                    root, drive_id, stats.total_files, stats.indexed, stats.errors)
        return stats

    def _commit_batch(self, batch: List[Tuple[Any, ...]], stats: ScanStats) -> bool:
        with self._lock:
            try:
                self._writer.executemany(UPSERT_FILE, batch)
                self._writer.commit()
            except sqlite3.Error as e:
                self._writer.rollback()
                logger.warning("Scan aborted, database error: %s", e)
                return False
        stats.indexed += len(batch)
        return True

    async def scan_async(self, root: Path, drive_id: str) -> ScanStats:
        return await asyncio.to_thread(self.scan, root, drive_id)

    # -- queries --------------------------------------------------------------

    def fuzzy_search(self, query: str, limit: int) -> List[SearchResult]:
        """
        Two-stage search: FTS5 prefix recall, then Jaro-Winkler on the basename.

        When FTS recalls fewer than the candidate budget (or the query has no
        FTS tokens at all, e.g. `___`), basenames containing the query as a
        substring fill the rest.
        """
        needle = query.strip().lower()
        if not needle or limit <= 0:
            return []

        budget = limit * 2
        rows: List[sqlite3.Row] = []
        match = fts_query(query)
        if match:
            rows = self._read(
                f"SELECT {FILE_COLUMNS} FROM files_fts "
                "JOIN files f ON files_fts.rowid = f.id "
                "WHERE files_fts MATCH ? ORDER BY rank LIMIT ?",
                (match, budget),
            )
        if len(rows) < budget:
            seen = {row["id"] for row in rows}
            extra = self._read(
                f"SELECT {FILE_COLUMNS} FROM files f "
                "WHERE instr(lower(f.name), ?) > 0 ORDER BY length(f.name) LIMIT ?",
                (needle, budget),
            )
            rows.extend(row for row in extra if row["id"] not in seen)

        results = []
        for row in rows:
            record = FileRecord.from_row(row)
            score = name_score(query, record.name)
            results.append(_to_result(record, score, fuzzy_score=score))

        results.sort(key=lambda r: (-r.score, str(r.path)))
        return results[:limit]

    def cosine_search(self, query_embedding: Sequence[float], limit: int) -> List[SearchResult]:
        """Brute-force cosine similarity against every stored vector."""
        rows = self._read(
            f"SELECT {FILE_COLUMNS}, fe.embedding FROM file_embeddings fe "
            "JOIN files f ON fe.file_id = f.id"
        )
        scored = []
        for row in rows:
            sim = cosine_similarity(query_embedding, decode_embedding(row["embedding"]))
            result = _to_result(FileRecord.from_row(row), sim)
            result.embedding_score = sim
            scored.append(result)
        scored.sort(key=lambda r: (-r.score, str(r.path)))
        return scored[:limit]

    async def semantic_search(self, query: str, client=None,
                              filter: Optional[SearchFilter] = None,
                              limit: int = 20) -> List[SearchResult]:
        """
        Hybrid search. Falls back to fuzzy ranking when no embedding client is
        given, the embedding service is unreachable or embedding the query fails.
        """
        if not query.strip():
            return []

        query_embedding = None
        if client is not None and await client.is_available():
            query_embedding = self.cached_query_embedding(query)
            if query_embedding is None:
                try:
                    query_embedding = await client.embed_single(query)
                except (UpstreamFailure, Timeout) as e:
                    logger.info("Query embedding failed, ranking by name only: %s", e.message)
                else:
                    self.cache_query_embedding(query, query_embedding)

        return await asyncio.to_thread(
            self._rank_hybrid, query, query_embedding, filter, limit)

    def _rank_hybrid(self, query: str, query_embedding: Optional[List[float]],
                     filter: Optional[SearchFilter], limit: int) -> List[SearchResult]:
        fuzzy = self.fuzzy_search(query, limit * 3)
        if query_embedding is None:
            candidates = fuzzy
        else:
            by_path: Dict[str, SearchResult] = {str(r.path): r for r in fuzzy}
            for hit in self.cosine_search(query_embedding, limit * 3):
                key = str(hit.path)
                if key not in by_path:
                    hit.fuzzy_score = name_score(query, hit.name)
                    by_path[key] = hit
            candidates = list(by_path.values())

            embeddings = self._embeddings_for([c.file_id for c in candidates])
            for candidate in candidates:
                vector = embeddings.get(candidate.file_id)
                cos = cosine_similarity(query_embedding, vector) if vector is not None else 0.0
                candidate.embedding_score = cos if vector is not None else None
                candidate.score = self.alpha * candidate.fuzzy_score + (1 - self.alpha) * cos

        if filter is not None:
            drives = self._drives_for([c.file_id for c in candidates]) if filter.drive_id else {}
            candidates = [c for c in candidates if filter.matches(c, drives.get(c.file_id))]

        candidates.sort(key=lambda r: (-r.score, str(r.path)))
        return candidates[:limit]

    def _embeddings_for(self, file_ids: List[Optional[int]]) -> Dict[int, np.ndarray]:
        ids = [i for i in file_ids if i is not None]
        if not ids:
            return {}
        marks = ",".join("?" * len(ids))
        rows = self._read(
            f"SELECT file_id, embedding FROM file_embeddings WHERE file_id IN ({marks})", ids)
        return {row["file_id"]: decode_embedding(row["embedding"]) for row in rows}

    def _drives_for(self, file_ids: List[Optional[int]]) -> Dict[int, str]:
        ids = [i for i in file_ids if i is not None]
        if not ids:
            return {}
        marks = ",".join("?" * len(ids))
        rows = self._read(f"SELECT id, drive_id FROM files WHERE id IN ({marks})", ids)
        return {row["id"]: row["drive_id"] for row in rows}

    def get_file(self, path: Path) -> Optional[FileRecord]:
        rows = self._read(f"SELECT {FILE_COLUMNS} FROM files f WHERE f.path = ?", (str(path),))
        return FileRecord.from_row(rows[0]) if rows else None

    def file_count(self) -> int:
        return self._read("SELECT COUNT(*) AS c FROM files")[0]["c"]

    def files_for_drive(self, drive_id: str) -> int:
        return self._read("SELECT COUNT(*) AS c FROM files WHERE drive_id = ?", (drive_id,))[0]["c"]

    def clear_drive(self, drive_id: str) -> int:
        """Remove a drive's entries (and their embeddings). Returns rows removed."""
        try:
            with self._lock:
                self._writer.execute(
                    "DELETE FROM file_embeddings WHERE file_id IN "
                    "(SELECT id FROM files WHERE drive_id = ?)", (drive_id,))
                cursor = self._writer.execute("DELETE FROM files WHERE drive_id = ?", (drive_id,))
                self._writer.commit()
                return cursor.rowcount
        except sqlite3.Error as e:
            raise Internal(f"Could not clear drive {drive_id}", str(e)) from e

    def clear_all(self) -> None:
        try:
            with self._lock:
                self._writer.execute("DELETE FROM file_embeddings")
                self._writer.execute("DELETE FROM files")
                self._writer.commit()
        except sqlite3.Error as e:
            raise Internal("Could not clear file index", str(e)) from e

    # -- embeddings -----------------------------------------------------------

    def store_embedding(self, file_id: int, embedding: Sequence[float], model_name: str,
                        content_hash: Optional[str] = None) -> None:
        self._write(
            "INSERT INTO file_embeddings (file_id, embedding, model_name, embedded_at, content_hash) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(file_id) DO UPDATE SET "
            "embedding = excluded.embedding, model_name = excluded.model_name, "
            "embedded_at = excluded.embedded_at, content_hash = excluded.content_hash",
            (file_id, encode_embedding(embedding), model_name,
             datetime.now(timezone.utc).isoformat(), content_hash),
        )

    def get_embedding(self, file_id: int) -> Optional[List[float]]:
        rows = self._read("SELECT embedding FROM file_embeddings WHERE file_id = ?", (file_id,))
        return decode_embedding(rows[0]["embedding"]).tolist() if rows else None

    def embedding_coverage(self) -> Tuple[int, int]:
        """(files with embeddings, total files)"""
        embedded = self._read("SELECT COUNT(*) AS c FROM file_embeddings")[0]["c"]
        return embedded, self.file_count()

    def files_without_embeddings(self, limit: int,
                                 model_name: Optional[str] = None) -> List[FileRecord]:
        """Files lacking a vector (or lacking one from the given model)."""
        if model_name is None:
            condition, params = "fe.file_id IS NULL", (limit,)
        else:
            condition, params = "fe.file_id IS NULL OR fe.model_name != ?", (model_name, limit)
        rows = self._read(
            f"SELECT {FILE_COLUMNS} FROM files f "
            f"LEFT JOIN file_embeddings fe ON f.id = fe.file_id WHERE {condition} LIMIT ?",
            params,
        )
        return [FileRecord.from_row(row) for row in rows]

    async def embed_pending(self, client, limit: int = 100) -> int:
        """Embed up to `limit` files that have no vector yet. Returns how many were stored."""
        pending = await asyncio.to_thread(self.files_without_embeddings, limit, client.model)
        stored = 0
        for record in pending:
            text = build_embedding_text(record)
            vector = await client.embed_single(text)
            await asyncio.to_thread(
                self.store_embedding, record.id, vector, client.model,
                xxhash.xxh64(text.encode()).hexdigest())
            stored += 1
        if stored:
            logger.info("Embedded %d files with %s", stored, client.model)
        return stored

    # -- query-embedding cache ------------------------------------------------

    def cached_query_embedding(self, query: str) -> Optional[List[float]]:
        with self._cache_lock:
            vector = self._query_cache.get(query)
            if vector is not None:
                self._query_cache.move_to_end(query)
            return vector

    def cache_query_embedding(self, query: str, embedding: List[float]) -> None:
        with self._cache_lock:
            self._query_cache[query] = embedding
            self._query_cache.move_to_end(query)
            while len(self._query_cache) > self.query_cache_size:
                self._query_cache.popitem(last=False)


def _to_result(record: FileRecord, score: float, fuzzy_score: float = 0.0) -> SearchResult:
    return SearchResult(
        path=Path(record.path),
        name=record.name,
        extension=record.extension,
        size_bytes=record.size_bytes,
        modified_at=record.modified_at,
        score=score,
        fuzzy_score=fuzzy_score,
        file_id=record.id,
    )
