"""Knowledge store interfaces and concrete adapters."""

from __future__ import annotations

import copy
import json
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Protocol

from manual_rag.types import (
    ContentType,
    DocumentRecord,
    DocumentType,
    KnowledgePackage,
    PackageStatus,
    Sku,
    StoredChunk,
)


class KnowledgeStore(Protocol):
    """Persistence contract for SKUs, packages, documents, and chunks.

    Every mutation made inside `transaction()` is committed together or not
    at all. Listing methods return rows in insertion order (packages by
    ascending version).
    """

    def transaction(self) -> AbstractContextManager[None]:
        """Open an all-or-nothing unit of work (re-entrant)."""

    def add_sku(self, sku: Sku) -> None: ...

    def get_sku(self, sku_id: str) -> Sku | None: ...

    def insert_package(self, package: KnowledgePackage) -> None: ...

    def get_package(self, package_id: str) -> KnowledgePackage | None: ...

    def find_package(self, sku_id: str, version: int) -> KnowledgePackage | None: ...

    def list_packages(
        self, sku_id: str, status: PackageStatus | None = None
    ) -> list[KnowledgePackage]: ...

    def update_package_status(
        self,
        package_id: str,
        status: PackageStatus,
        published_at: datetime | None = None,
    ) -> None:
        """Change status; `published_at` is only overwritten when given."""

    def insert_document(self, document: DocumentRecord) -> None: ...

    def insert_chunks(self, chunks: list[StoredChunk]) -> None: ...

    def list_documents(
        self, package_id: str, document_type: DocumentType | None = None
    ) -> list[DocumentRecord]: ...

    def list_chunks(
        self, document_ids: list[str], content_type: ContentType | None = None
    ) -> list[StoredChunk]: ...


@dataclass(slots=True)
class _MemoryState:
    skus: dict[str, Sku] = field(default_factory=dict)
    packages: dict[str, KnowledgePackage] = field(default_factory=dict)
    documents: dict[str, DocumentRecord] = field(default_factory=dict)
    chunks: dict[str, list[StoredChunk]] = field(default_factory=dict)


class InMemoryKnowledgeStore:
    """Deterministic store used for tests and local prototyping.

    Transactions snapshot the whole state on entry and restore it if the
    block raises. Every read and write takes the same lock as
    `transaction()`, so readers on other threads wait for an open transaction
    to finish instead of seeing its intermediate writes.
    """

    def __init__(self) -> None:
        self._state = _MemoryState()
        self._lock = threading.RLock()
        self._depth = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            snapshot = copy.deepcopy(self._state) if self._depth == 0 else None
            self._depth += 1
            try:
                yield
            except BaseException:
                if snapshot is not None:
                    self._state = snapshot
                raise
            finally:
                self._depth -= 1

    def add_sku(self, sku: Sku) -> None:
        with self._lock:
            self._state.skus[sku.sku_id] = sku

    def get_sku(self, sku_id: str) -> Sku | None:
        with self._lock:
            return self._state.skus.get(sku_id)

    def insert_package(self, package: KnowledgePackage) -> None:
        with self._lock:
            for existing in self._state.packages.values():
                if existing.sku_id == package.sku_id and existing.version == package.version:
                    raise ValueError(
                        f"Package version {package.version} already exists for SKU {package.sku_id}"
                    )
            self._state.packages[package.package_id] = replace(package)

    def get_package(self, package_id: str) -> KnowledgePackage | None:
        with self._lock:
            package = self._state.packages.get(package_id)
            return replace(package) if package is not None else None

    def find_package(self, sku_id: str, version: int) -> KnowledgePackage | None:
        with self._lock:
            for package in self._state.packages.values():
                if package.sku_id == sku_id and package.version == version:
                    return replace(package)
        return None

    def list_packages(
        self, sku_id: str, status: PackageStatus | None = None
    ) -> list[KnowledgePackage]:
        with self._lock:
            packages = [
                replace(package)
                for package in self._state.packages.values()
                if package.sku_id == sku_id and (status is None or package.status is status)
            ]
        return sorted(packages, key=lambda package: package.version)

    def update_package_status(
        self,
        package_id: str,
        status: PackageStatus,
        published_at: datetime | None = None,
    ) -> None:
        with self._lock:
            package = self._state.packages.get(package_id)
            if package is None:
                raise KeyError(f"Package not found: {package_id}")
            package.status = status
            if published_at is not None:
                package.published_at = published_at

    def insert_document(self, document: DocumentRecord) -> None:
        with self._lock:
            self._state.documents[document.document_id] = replace(document)
            self._state.chunks.setdefault(document.document_id, [])

    def insert_chunks(self, chunks: list[StoredChunk]) -> None:
        with self._lock:
            for chunk in chunks:
                if chunk.document_id not in self._state.documents:
                    raise KeyError(f"Document not found: {chunk.document_id}")
                self._state.chunks[chunk.document_id].append(replace(chunk))

    def list_documents(
        self, package_id: str, document_type: DocumentType | None = None
    ) -> list[DocumentRecord]:
        with self._lock:
            return [
                replace(document)
                for document in self._state.documents.values()
                if document.package_id == package_id
                and (document_type is None or document.document_type is document_type)
            ]

    def list_chunks(
        self, document_ids: list[str], content_type: ContentType | None = None
    ) -> list[StoredChunk]:
        results: list[StoredChunk] = []
        with self._lock:
            for document_id in document_ids:
                for chunk in sorted(
                    self._state.chunks.get(document_id, []), key=lambda item: item.chunk_index
                ):
                    if content_type is None or chunk.content_type is content_type:
                        results.append(replace(chunk))
        return results


_SCHEMA = """
CREATE TABLE IF NOT EXISTS skus (
    sku_id TEXT PRIMARY KEY,
    name TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS packages (
    package_id TEXT PRIMARY KEY,
    sku_id TEXT NOT NULL REFERENCES skus(sku_id),
    version INTEGER NOT NULL,
    status TEXT NOT NULL,
    created_at TEXT NOT NULL,
    published_at TEXT,
    UNIQUE (sku_id, version)
);
CREATE UNIQUE INDEX IF NOT EXISTS packages_one_active_per_sku
    ON packages(sku_id) WHERE status = 'ACTIVE';
CREATE TABLE IF NOT EXISTS documents (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    document_id TEXT NOT NULL UNIQUE,
    package_id TEXT NOT NULL REFERENCES packages(package_id),
    title TEXT NOT NULL,
    document_type TEXT NOT NULL,
    raw_content TEXT NOT NULL,
    source_url TEXT,
    parsed_at TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS chunks (
    chunk_id TEXT PRIMARY KEY,
    document_id TEXT NOT NULL REFERENCES documents(document_id),
    content TEXT NOT NULL,
    page_start INTEGER NOT NULL,
    page_end INTEGER NOT NULL,
    section_path TEXT NOT NULL,
    content_type TEXT NOT NULL,
    token_count INTEGER NOT NULL,
    chunk_index INTEGER NOT NULL,
    embedding TEXT NOT NULL DEFAULT '[]'
);
"""


class SqliteKnowledgeStore:
    """SQLite-backed store with explicit BEGIN IMMEDIATE transactions.

    A partial unique index enforces the single-ACTIVE-package invariant at the
    database level as well.
    """

    def __init__(self, path: str | Path = ":memory:") -> None:
        self._conn = sqlite3.connect(str(path), isolation_level=None, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA foreign_keys = ON")
        self._conn.executescript(_SCHEMA)
        self._lock = threading.RLock()
        self._depth = 0

    def close(self) -> None:
        self._conn.close()

    @contextmanager
    def transaction(self) -> Iterator[None]:
        with self._lock:
            outermost = self._depth == 0
            if outermost:
                self._conn.execute("BEGIN IMMEDIATE")
            self._depth += 1
            try:
                yield
            except BaseException:
                self._depth -= 1
                if outermost:
                    self._conn.execute("ROLLBACK")
                raise
            else:
                self._depth -= 1
                if outermost:
                    self._conn.execute("COMMIT")

    def _execute(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, params)

    def add_sku(self, sku: Sku) -> None:
        self._execute(
            "INSERT INTO skus(sku_id, name) VALUES(?, ?) "
            "ON CONFLICT(sku_id) DO UPDATE SET name=excluded.name",
            (sku.sku_id, sku.name),
        )

    def get_sku(self, sku_id: str) -> Sku | None:
        row = self._execute("SELECT sku_id, name FROM skus WHERE sku_id = ?", (sku_id,)).fetchone()
        return Sku(sku_id=row["sku_id"], name=row["name"]) if row else None

    def insert_package(self, package: KnowledgePackage) -> None:
        try:
            self._execute(
                "INSERT INTO packages(package_id, sku_id, version, status, created_at, published_at) "
                "VALUES(?, ?, ?, ?, ?, ?)",
                (
                    package.package_id,
                    package.sku_id,
                    package.version,
                    package.status.value,
                    package.created_at.isoformat(),
                    _iso_or_none(package.published_at),
                ),
            )
        except sqlite3.IntegrityError as exc:
            raise ValueError(
                f"Package version {package.version} already exists for SKU {package.sku_id}"
            ) from exc

    def get_package(self, package_id: str) -> KnowledgePackage | None:
        row = self._execute("SELECT * FROM packages WHERE package_id = ?", (package_id,)).fetchone()
        return _package_from_row(row) if row else None

    def find_package(self, sku_id: str, version: int) -> KnowledgePackage | None:
        row = self._execute(
            "SELECT * FROM packages WHERE sku_id = ? AND version = ?", (sku_id, version)
        ).fetchone()
        return _package_from_row(row) if row else None

    def list_packages(
        self, sku_id: str, status: PackageStatus | None = None
    ) -> list[KnowledgePackage]:
        if status is None:
            rows = self._execute(
                "SELECT * FROM packages WHERE sku_id = ? ORDER BY version", (sku_id,)
            ).fetchall()
        else:
            rows = self._execute(
                "SELECT * FROM packages WHERE sku_id = ? AND status = ? ORDER BY version",
                (sku_id, status.value),
            ).fetchall()
        return [_package_from_row(row) for row in rows]

    def update_package_status(
        self,
        package_id: str,
        status: PackageStatus,
        published_at: datetime | None = None,
    ) -> None:
        if published_at is None:
            cursor = self._execute(
                "UPDATE packages SET status = ? WHERE package_id = ?", (status.value, package_id)
            )
        else:
            cursor = self._execute(
                "UPDATE packages SET status = ?, published_at = ? WHERE package_id = ?",
                (status.value, published_at.isoformat(), package_id),
            )
        if cursor.rowcount == 0:
            raise KeyError(f"Package not found: {package_id}")

    def insert_document(self, document: DocumentRecord) -> None:
        self._execute(
            "INSERT INTO documents(document_id, package_id, title, document_type, raw_content, "
            "source_url, parsed_at) VALUES(?, ?, ?, ?, ?, ?, ?)",
            (
                document.document_id,
                document.package_id,
                document.title,
                document.document_type.value,
                document.raw_content,
                document.source_url,
                document.parsed_at.isoformat(),
            ),
        )

    def insert_chunks(self, chunks: list[StoredChunk]) -> None:
        with self._lock:
            self._conn.executemany(
                "INSERT INTO chunks(chunk_id, document_id, content, page_start, page_end, "
                "section_path, content_type, token_count, chunk_index, embedding) "
                "VALUES(?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                [
                    (
                        chunk.chunk_id,
                        chunk.document_id,
                        chunk.content,
                        chunk.page_start,
                        chunk.page_end,
                        chunk.section_path,
                        chunk.content_type.value,
                        chunk.token_count,
                        chunk.chunk_index,
                        json.dumps(chunk.embedding),
                    )
                    for chunk in chunks
                ],
            )

    def list_documents(
        self, package_id: str, document_type: DocumentType | None = None
    ) -> list[DocumentRecord]:
        sql = "SELECT * FROM documents WHERE package_id = ?"
        params: tuple[Any, ...] = (package_id,)
        if document_type is not None:
            sql += " AND document_type = ?"
            params += (document_type.value,)
        rows = self._execute(sql + " ORDER BY seq", params).fetchall()
        return [
            DocumentRecord(
                document_id=row["document_id"],
                package_id=row["package_id"],
                title=row["title"],
                document_type=DocumentType(row["document_type"]),
                raw_content=row["raw_content"],
                source_url=row["source_url"],
                parsed_at=datetime.fromisoformat(row["parsed_at"]),
            )
            for row in rows
        ]

    def list_chunks(
        self, document_ids: list[str], content_type: ContentType | None = None
    ) -> list[StoredChunk]:
        results: list[StoredChunk] = []
        for document_id in document_ids:
            sql = "SELECT * FROM chunks WHERE document_id = ?"
            params: tuple[Any, ...] = (document_id,)
            if content_type is not None:
                sql += " AND content_type = ?"
                params += (content_type.value,)
            rows = self._execute(sql + " ORDER BY chunk_index", params).fetchall()
            results.extend(
                StoredChunk(
                    chunk_id=row["chunk_id"],
                    document_id=row["document_id"],
                    content=row["content"],
                    page_start=row["page_start"],
                    page_end=row["page_end"],
                    section_path=row["section_path"],
                    content_type=ContentType(row["content_type"]),
                    token_count=row["token_count"],
                    chunk_index=row["chunk_index"],
                    embedding=json.loads(row["embedding"]),
                )
                for row in rows
            )
        return results


def _iso_or_none(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _package_from_row(row: sqlite3.Row) -> KnowledgePackage:
    published_at = row["published_at"]
    return KnowledgePackage(
        package_id=row["package_id"],
        sku_id=row["sku_id"],
        version=row["version"],
        status=PackageStatus(row["status"]),
        created_at=datetime.fromisoformat(row["created_at"]),
        published_at=datetime.fromisoformat(published_at) if published_at else None,
    )
