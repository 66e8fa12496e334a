# storefront/core/store.py
"""
Key-addressed storage for JSON-serializable values (cart, browsing history).

Callers depend on the get/set/update/clear port only, so checkout code can run
against MemoryStore in tests and PostgresStore in the service.
"""
import copy
import json
from typing import Any, Callable, Dict, Optional, Protocol
import logging

logger = logging.getLogger(__name__)


class Store(Protocol):
    async def get(self, key: str, default: Any = None) -> Any: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any: ...

    async def clear(self, key: str) -> None: ...


class MemoryStore:
    def __init__(self):
        self._data: Dict[str, str] = {}

    async def get(self, key: str, default: Any = None) -> Any:
        raw = self._data.get(key)
        if raw is None:
            return copy.deepcopy(default)
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        # Round-trip through JSON so stored values behave like persisted ones
        self._data[key] = json.dumps(value)

    async def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        current = await self.get(key, default)
        value = fn(current)
        if value is None:
            return current
        await self.set(key, value)
        return value

    async def clear(self, key: str) -> None:
        self._data.pop(key, None)


class PostgresStore:
    """kv_store table backed implementation; one row per key, JSONB value."""

    def __init__(self, conn):
        self._conn = conn

    def _decode(self, key: str, raw: Optional[str], default: Any) -> Any:
        if raw is None:
            return copy.deepcopy(default)
        try:
            return json.loads(raw)
        except ValueError as e:
            logger.error(f"Discarding unreadable value for {key}: {e}")
            return copy.deepcopy(default)

    async def get(self, key: str, default: Any = None) -> Any:
        raw = await self._conn.fetchval(
            "SELECT value::text FROM kv_store WHERE key = $1", key
        )
        return self._decode(key, raw, default)

    async def set(self, key: str, value: Any) -> None:
        await self._conn.execute(
            """
            INSERT INTO kv_store (key, value, updated_at)
            VALUES ($1, $2::jsonb, CURRENT_TIMESTAMP)
            ON CONFLICT (key) DO UPDATE
            SET value = EXCLUDED.value, updated_at = CURRENT_TIMESTAMP
            """,
            key,
            json.dumps(value),
        )

    async def update(self, key: str, fn: Callable[[Any], Any], default: Any = None) -> Any:
        """Read-modify-write under a row lock. `fn` returning None leaves the value as it is."""
        async with self._conn.transaction():
            # The row must exist for FOR UPDATE to lock it
            await self._conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at)
                VALUES ($1, $2::jsonb, CURRENT_TIMESTAMP)
                ON CONFLICT (key) DO NOTHING
                """,
                key,
                json.dumps(default),
            )
            raw = await self._conn.fetchval(
                "SELECT value::text FROM kv_store WHERE key = $1 FOR UPDATE", key
            )
            current = self._decode(key, raw, default)
            value = fn(current)
            if value is None:
                return current
            await self.set(key, value)
            return value

    async def clear(self, key: str) -> None:
        await self._conn.execute("DELETE FROM kv_store WHERE key = $1", key)
