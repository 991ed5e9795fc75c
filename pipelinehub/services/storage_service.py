import copy
import json
import logging
from typing import Any, Dict

from psycopg.types.json import Jsonb

from ..core.config import settings
from ..core.database import execute, fetch

log = logging.getLogger(__name__)

storage_table_ready = False


async def _ensure_storage_table():
    global storage_table_ready
    if storage_table_ready:
        return
    await execute(
        """
        CREATE TABLE IF NOT EXISTS user_storage (
          id SERIAL PRIMARY KEY,
          user_id TEXT NOT NULL,
          storage_key TEXT NOT NULL,
          storage_value JSONB NOT NULL DEFAULT '{}'::jsonb,
          updated_at TIMESTAMPTZ NOT NULL DEFAULT now(),
          UNIQUE(user_id, storage_key)
        );
        """
    )
    storage_table_ready = True


def parse_json_value(value: Any) -> Any:
    """Values written by older clients may be JSON strings inside the JSONB column."""
    if isinstance(value, str):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value
    return value


class CloudStorage:
    """
    Key -> JSON value store for one workspace.

    hydrate() must finish before any read. Writes update the in-memory copy
    first; a failed write is logged and reported, never rolled back.
    """

    def __init__(self, scope: str):
        self.scope = scope
        self._values: Dict[str, Any] = {}
        self._hydrated = False

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    async def hydrate(self) -> "CloudStorage":
        raw = await self._read_all()
        self._values = {key: parse_json_value(value) for key, value in raw.items()}
        self._hydrated = True
        return self

    def get_item(self, key: str, default: Any = None) -> Any:
        if not self._hydrated:
            raise RuntimeError("CloudStorage read before hydrate() completed")
        if key not in self._values:
            return default
        return copy.deepcopy(self._values[key])

    def items(self) -> Dict[str, Any]:
        if not self._hydrated:
            raise RuntimeError("CloudStorage read before hydrate() completed")
        return copy.deepcopy(self._values)

    async def set_item(self, key: str, value: Any) -> bool:
        self._values[key] = copy.deepcopy(value)
        try:
            await self._write(key, value)
        except Exception:
            log.exception("Failed to write storage key %s for %s", key, self.scope)
            return False
        return True

    async def remove_item(self, key: str) -> bool:
        self._values.pop(key, None)
        try:
            await self._delete(key)
        except Exception:
            log.exception("Failed to delete storage key %s for %s", key, self.scope)
            return False
        return True

    async def _read_all(self) -> Dict[str, Any]:
        await _ensure_storage_table()
        rows = await fetch(
            "SELECT storage_key, storage_value FROM user_storage WHERE user_id = %s",
            [self.scope],
        )
        return {row["storage_key"]: row.get("storage_value") for row in rows}

    async def _write(self, key: str, value: Any) -> None:
        await _ensure_storage_table()
        await execute(
            """
            INSERT INTO user_storage (user_id, storage_key, storage_value)
            VALUES (%s, %s, %s)
            ON CONFLICT (user_id, storage_key)
            DO UPDATE SET storage_value = EXCLUDED.storage_value, updated_at = now();
            """,
            [self.scope, key, Jsonb(value)],
        )

    async def _delete(self, key: str) -> None:
        await _ensure_storage_table()
        await execute("DELETE FROM user_storage WHERE user_id = %s AND storage_key = %s", [self.scope, key])


async def open_storage(scope: str) -> CloudStorage:
    return await CloudStorage(scope).hydrate()


async def get_storage() -> CloudStorage:
    """FastAPI dependency: the shared workspace store, hydrated."""
    return await open_storage(settings.workspace_id)
