from __future__ import annotations

import os
from dataclasses import dataclass

BASE_REQUIRED_VARS = (
    "OPENAI_API_KEY",
    "MS_TENANT_ID",
    "MS_CLIENT_ID",
    "MS_CLIENT_SECRET",
    "ONEDRIVE_USER_PRINCIPAL_NAME",
    "ONEDRIVE_FOLDER_PATH",
)
BACKEND_REQUIRED_VARS = {
    "pgvector": ("DATABASE_URL",),
    "azure": ("AZURE_SEARCH_ENDPOINT", "AZURE_SEARCH_API_KEY", "AZURE_SEARCH_INDEX_NAME"),
}


@dataclass(frozen=True)
class Settings:
    openai_api_key: str
    ms_tenant_id: str
    ms_client_id: str
    ms_client_secret: str
    onedrive_user_principal_name: str
    onedrive_folder_path: str
    index_backend: str = "pgvector"
    database_url: str = ""
    azure_search_endpoint: str = ""
    azure_search_api_key: str = ""
    azure_search_index_name: str = ""
    openai_embed_model: str = "text-embedding-3-small"
    openai_chat_model: str = "gpt-4o-mini"
    embedding_dim: int = 1536
    chunk_size: int = 1000
    chunk_overlap: int = 200
    upsert_batch_size: int = 100
    timeout_seconds: float = 30 * 60

    def __post_init__(self) -> None:
        if self.chunk_size <= 0:
            raise ValueError(f"CHUNK_SIZE must be positive, got {self.chunk_size}")
        if not 0 <= self.chunk_overlap < self.chunk_size:
            raise ValueError(
                f"CHUNK_OVERLAP ({self.chunk_overlap}) must be >= 0 and smaller than CHUNK_SIZE ({self.chunk_size})"
            )
        if self.upsert_batch_size <= 0:
            raise ValueError(f"UPSERT_BATCH_SIZE must be positive, got {self.upsert_batch_size}")


def load_settings(env: dict[str, str] | None = None) -> Settings:
    """Build settings from the environment, failing on every missing variable at once."""
    env = os.environ if env is None else env

    backend = env.get("INDEX_BACKEND", "pgvector").strip().lower()
    if backend not in BACKEND_REQUIRED_VARS:
        raise ValueError(f"INDEX_BACKEND must be one of {sorted(BACKEND_REQUIRED_VARS)}, got {backend!r}")

    missing = [key for key in BASE_REQUIRED_VARS + BACKEND_REQUIRED_VARS[backend] if not env.get(key)]
    if missing:
        raise ValueError(f"Missing required environment variables: {', '.join(missing)}")

    return Settings(
        openai_api_key=env["OPENAI_API_KEY"],
        ms_tenant_id=env["MS_TENANT_ID"],
        ms_client_id=env["MS_CLIENT_ID"],
        ms_client_secret=env["MS_CLIENT_SECRET"],
        onedrive_user_principal_name=env["ONEDRIVE_USER_PRINCIPAL_NAME"],
        onedrive_folder_path=env["ONEDRIVE_FOLDER_PATH"],
        index_backend=backend,
        database_url=env.get("DATABASE_URL", ""),
        azure_search_endpoint=env.get("AZURE_SEARCH_ENDPOINT", "").rstrip("/"),
        azure_search_api_key=env.get("AZURE_SEARCH_API_KEY", ""),
        azure_search_index_name=env.get("AZURE_SEARCH_INDEX_NAME", ""),
        openai_embed_model=env.get("OPENAI_EMBED_MODEL", "text-embedding-3-small"),
        openai_chat_model=env.get("OPENAI_CHAT_MODEL", "gpt-4o-mini"),
        embedding_dim=int(env.get("EMBEDDING_DIM", "1536")),
        chunk_size=int(env.get("CHUNK_SIZE", "1000")),
        chunk_overlap=int(env.get("CHUNK_OVERLAP", "200")),
        upsert_batch_size=int(env.get("UPSERT_BATCH_SIZE", "100")),
        timeout_seconds=float(env.get("INGEST_TIMEOUT_SECONDS", str(30 * 60))),
    )
