"""Durable session checkpoints at the review boundary."""
from __future__ import annotations

import json
import os
import re
from pathlib import Path
from typing import Any, Protocol

from deepcite.config import Settings
from deepcite.errors import CheckpointNotFound
from deepcite.models.state import SessionState


class CheckpointStore(Protocol):
    async def save(self, state: SessionState) -> None: ...
    async def load(self, session_id: str) -> SessionState: ...
    async def aclose(self) -> None: ...


SESSION_ID_RE = re.compile(r"[A-Za-z0-9_-]+")


class FileCheckpointStore:
    """One JSON document per session, replaced atomically on each save."""

    def __init__(self, directory: str | Path):
        self.directory = Path(directory)

    def _path(self, session_id: str) -> Path:
        if not SESSION_ID_RE.fullmatch(session_id):
            raise ValueError(f"Invalid session id: {session_id!r}")
        return self.directory / f"{session_id}.json"

    async def save(self, state: SessionState) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._path(state.session_id)
        tmp_path = path.with_suffix(".json.tmp")
        tmp_path.write_text(state.model_dump_json(indent=2), encoding="utf-8")
        os.replace(tmp_path, path)

    async def load(self, session_id: str) -> SessionState:
        path = self._path(session_id)
        if not path.exists():
            raise CheckpointNotFound(session_id)
        state = SessionState.model_validate_json(path.read_text(encoding="utf-8"))
        if state.session_id != session_id:
            raise ValueError(f"Checkpoint {path.name} holds session {state.session_id!r}, not {session_id!r}")
        return state

    async def aclose(self) -> None:
        return None


class PostgresCheckpointStore:
    """Checkpoints in a ``research_checkpoints`` table (jsonb state)."""

    CREATE_TABLE_SQL = """
        CREATE TABLE IF NOT EXISTS research_checkpoints (
            session_id TEXT PRIMARY KEY,
            state JSONB NOT NULL,
            updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
        )
    """

    def __init__(self, database_url: str, *, pool: Any | None = None):
        self.database_url = database_url
        self._pool = pool
        self._schema_ready = False

    async def _get_pool(self) -> Any:
        """Get or create the connection pool and ensure the table exists."""
        if self._pool is None:
            if not self.database_url:
                raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
            import asyncpg

            self._pool = await asyncpg.create_pool(self.database_url, min_size=1, max_size=5)
        if not self._schema_ready:
            async with self._pool.acquire() as conn:
                await conn.execute(self.CREATE_TABLE_SQL)
            self._schema_ready = True
        return self._pool

    async def save(self, state: SessionState) -> None:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO research_checkpoints (session_id, state, updated_at)
                VALUES ($1, $2::jsonb, NOW())
                ON CONFLICT (session_id)
                DO UPDATE SET state = EXCLUDED.state, updated_at = NOW()
                """,
                state.session_id,
                state.model_dump_json(),
            )

    async def load(self, session_id: str) -> SessionState:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT state FROM research_checkpoints WHERE session_id = $1",
                session_id,
            )
        if row is None:
            raise CheckpointNotFound(session_id)
        payload = row["state"]
        if isinstance(payload, str):
            payload = json.loads(payload)
        return SessionState.model_validate(payload)

    async def aclose(self) -> None:
        """Close the database connection pool."""
        if self._pool is not None:
            await self._pool.close()
            self._pool = None
            self._schema_ready = False


def build_checkpoint_store(settings: Settings) -> CheckpointStore:
    backend = settings.checkpoint_backend.lower().strip()
    if backend == "file":
        return FileCheckpointStore(settings.checkpoint_dir)
    if backend == "postgres":
        return PostgresCheckpointStore(settings.database_url)
    raise ValueError(f"Unsupported CHECKPOINT_BACKEND: {settings.checkpoint_backend}")
