from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import psycopg
from pgvector.psycopg import register_vector

SCHEMA_PATH = Path(__file__).with_name("schema.sql")
TABLE_NAME = "chunk_documents"


def get_database_url() -> str:
    database_url = os.getenv("DATABASE_URL")
    if not database_url:
        raise ValueError("DATABASE_URL is required")
    return database_url


def get_embedding_dim() -> int:
    return int(os.getenv("EMBEDDING_DIM", "1536"))


@contextmanager
def get_conn(database_url: str | None = None, vector_types: bool = True) -> Generator[psycopg.Connection, None, None]:
    conn = psycopg.connect(database_url or get_database_url(), autocommit=False)
    try:
        if vector_types:
            register_vector(conn)
        yield conn
    finally:
        conn.close()


def init_db(database_url: str | None = None, embedding_dim: int | None = None) -> None:
    """Create the chunk table if needed and check its vector dimension against the embedding model."""
    embedding_dim = embedding_dim or get_embedding_dim()
    schema_template = SCHEMA_PATH.read_text()
    schema_sql = schema_template.replace("__EMBEDDING_DIM__", str(embedding_dim))

    # The vector type only exists once the schema has created the extension.
    with get_conn(database_url, vector_types=False) as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
            cur.execute(
                """
                SELECT format_type(atttypid, atttypmod) FROM pg_attribute
                WHERE attrelid = %s::regclass AND attname = 'content_vector'
                """,
                (TABLE_NAME,),
            )
            row = cur.fetchone()
        conn.commit()

    expected = f"vector({embedding_dim})"
    if row and row[0] != expected:
        raise ValueError(f"{TABLE_NAME}.content_vector is {row[0]}, but the embedding model produces {expected}")
