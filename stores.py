import copy
import re
from typing import Any, Dict, List, Optional, Protocol

from supabase import Client, create_client

from errors import StoreIOError
from settings import SUPABASE_KEY, SUPABASE_URL

Filters = Dict[str, Optional[str]]

RE_LIKE_SPECIAL = re.compile(r"([\\%_])")


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so ilike behaves as case-insensitive equality."""
    return RE_LIKE_SPECIAL.sub(r"\\\1", value)


class RowStore(Protocol):
    def select(self, table: str, filters: Optional[Filters] = None, columns: str = "*") -> List[Dict[str, Any]]:
        ...

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> None:
        ...


class SupabaseRowStore:
    def __init__(self, client: Optional[Client] = None, *, url: str = SUPABASE_URL, key: str = SUPABASE_KEY) -> None:
        if client is None:
            if not url or not key:
                raise StoreIOError("Missing SUPABASE_URL / SUPABASE_KEY env vars")
            client = create_client(url, key)
        self.client = client

    def select(self, table: str, filters: Optional[Filters] = None, columns: str = "*") -> List[Dict[str, Any]]:
        try:
            query = self.client.table(table).select(columns)
            for col, value in (filters or {}).items():
                if value is None:
                    query = query.is_(col, "null")
                else:
                    query = query.ilike(col, escape_like(str(value)))
            response = query.execute()
        except Exception as e:
            raise StoreIOError(f"Select on {table!r} failed: {e}") from e
        return list(response.data or [])

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = self.client.table(table).insert(values).execute()
        except Exception as e:
            raise StoreIOError(f"Insert into {table!r} failed: {e}") from e
        return response.data[0] if response.data else dict(values)

    def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> None:
        try:
            self.client.table(table).update(values).eq("id", row_id).execute()
        except Exception as e:
            raise StoreIOError(f"Update of {table!r} id={row_id} failed: {e}") from e


class InMemoryRowStore:
    """Process-local row store with the same matching rules as the Supabase store."""

    def __init__(self, tables: Optional[Dict[str, List[Dict[str, Any]]]] = None) -> None:
        self.tables: Dict[str, List[Dict[str, Any]]] = copy.deepcopy(tables) if tables else {}
        self._next_id = 1 + max(
            (int(r["id"]) for rows in self.tables.values() for r in rows if r.get("id") is not None),
            default=0,
        )

    @staticmethod
    def _matches(row: Dict[str, Any], filters: Filters) -> bool:
        for col, value in filters.items():
            stored = row.get(col)
            if value is None:
                if stored is not None:
                    return False
            elif stored is None or str(stored).casefold() != str(value).casefold():
                return False
        return True

    @staticmethod
    def _project(row: Dict[str, Any], columns: str) -> Dict[str, Any]:
        if columns.strip() == "*":
            return dict(row)
        wanted = [c.strip() for c in columns.split(",") if c.strip()]
        return {c: row.get(c) for c in wanted}

    def select(self, table: str, filters: Optional[Filters] = None, columns: str = "*") -> List[Dict[str, Any]]:
        rows = self.tables.get(table, [])
        return [self._project(r, columns) for r in rows if self._matches(r, filters or {})]

    def insert(self, table: str, values: Dict[str, Any]) -> Dict[str, Any]:
        row = dict(values)
        row["id"] = self._next_id
        self._next_id += 1
        self.tables.setdefault(table, []).append(row)
        return dict(row)

    def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> None:
        for row in self.tables.get(table, []):
            if row.get("id") == row_id:
                row.update(values)
                return
        raise StoreIOError(f"Update of {table!r} id={row_id} failed: no such row")
