from __future__ import annotations

import logging
from typing import Any, Sequence

import psycopg
from psycopg import sql
from psycopg.rows import dict_row

from db.client import TABLE_NAME, get_conn, init_db
from ingest.errors import IndexQueryError, IndexWriteError
from ingest.models import ChunkDocument

logger = logging.getLogger(__name__)

COLUMNS = (
    "id",
    "tenant_id",
    "source",
    "file_id",
    "file_path",
    "file_name",
    "file_web_url",
    "mime_type",
    "chunk_id",
    "chunk_offset",
    "content",
    "content_vector",
    "content_hash",
    "updated_at",
)


def _upsert_statement() -> sql.Composed:
    values = [
        sql.SQL("%s::vector") if col == "content_vector" else sql.Placeholder()
        for col in COLUMNS
    ]
    updates = [
        sql.SQL("{col}=EXCLUDED.{col}").format(col=sql.Identifier(col))
        for col in COLUMNS
        if col != "id"
    ]
    return sql.SQL("INSERT INTO {table} ({cols}) VALUES ({values}) ON CONFLICT (id) DO UPDATE SET {updates}").format(
        table=sql.Identifier(TABLE_NAME),
        cols=sql.SQL(", ").join(sql.Identifier(col) for col in COLUMNS),
        values=sql.SQL(", ").join(values),
        updates=sql.SQL(", ").join(updates),
    )


def _check_columns(names: Sequence[str]) -> None:
    unknown = [name for name in names if name not in COLUMNS]
    if unknown:
        raise IndexQueryError(f"Unknown index fields: {', '.join(unknown)}")


class PgVectorIndex:
    """Chunk documents in a PostgreSQL table with a pgvector column."""

    def __init__(self, database_url: str, embedding_dim: int = 1536) -> None:
        self.database_url = database_url
        self.embedding_dim = embedding_dim

    def ensure_schema(self) -> None:
        init_db(self.database_url, self.embedding_dim)

    def query(self, filter: dict[str, Any], select: Sequence[str], top: int, skip: int = 0) -> list[dict[str, Any]]:
        _check_columns(list(filter) + list(select))
        where = sql.SQL(" AND ").join(
            sql.SQL("{col} = %s").format(col=sql.Identifier(col)) for col in filter
        ) if filter else sql.SQL("TRUE")
        stmt = sql.SQL("SELECT {cols} FROM {table} WHERE {where} ORDER BY file_id, id LIMIT %s OFFSET %s").format(
            cols=sql.SQL(", ").join(sql.Identifier(col) for col in select),
            table=sql.Identifier(TABLE_NAME),
            where=where,
        )
        try:
            with get_conn(self.database_url) as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(stmt, [*filter.values(), top, skip])
                    return list(cur.fetchall())
        except psycopg.Error as exc:
            raise IndexQueryError(f"Index query failed: {exc}") from exc

    def upsert(self, documents: Sequence[ChunkDocument]) -> None:
        rows = []
        for doc in documents:
            fields = doc.to_index_fields()
            rows.append([fields[col] for col in COLUMNS])
        try:
            with get_conn(self.database_url) as conn:
                with conn.cursor() as cur:
                    cur.executemany(_upsert_statement(), rows)
                conn.commit()
        except psycopg.Error as exc:
            raise IndexWriteError(f"Index upsert failed: {exc}") from exc

    def count(self) -> int:
        stmt = sql.SQL("SELECT COUNT(*) FROM {table}").format(table=sql.Identifier(TABLE_NAME))
        try:
            with get_conn(self.database_url) as conn:
                with conn.cursor() as cur:
                    cur.execute(stmt)
                    return cur.fetchone()[0]
        except psycopg.Error as exc:
            raise IndexQueryError(f"Index count failed: {exc}") from exc

    def search(self, vector: list[float], top_k: int = 5) -> list[dict[str, Any]]:
        stmt = sql.SQL(
            """
            SELECT id, file_name, file_path, file_web_url, chunk_id, content, updated_at,
                   (content_vector <=> %s::vector) AS distance
            FROM {table}
            ORDER BY distance
            LIMIT %s
            """
        ).format(table=sql.Identifier(TABLE_NAME))
        try:
            with get_conn(self.database_url) as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    cur.execute(stmt, (vector, top_k))
                    return list(cur.fetchall())
        except psycopg.Error as exc:
            raise IndexQueryError(f"Vector search failed: {exc}") from exc
