import json
import logging
import sqlite3
import time
from pathlib import Path
from typing import Any, MutableMapping, Optional, Protocol

import settings


# NOTE: Small key-value port for the bits of state the browser app kept in localStorage
# (last deals visit, language, form drafts). The app passes in whichever store it wants,
# tests use a plain dict behind MappingStore.

logger = logging.getLogger(__name__)

LAST_DEALS_VISIT_KEY = "lastDealsVisit"
LANGUAGE_KEY = "language"
DRAFT_PREFIX = "draft:"
DEFAULT_LANGUAGE = "en"


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MappingStore:
    """Store over any mutable mapping, e.g. st.session_state or a dict."""

    def __init__(self, mapping: Optional[MutableMapping] = None, prefix: str = "prefs."):
        self._mapping = mapping if mapping is not None else {}
        self._prefix = prefix

    def get(self, key: str, default: Any = None) -> Any:
        return self._mapping.get(self._prefix + key, default)

    def set(self, key: str, value: Any) -> None:
        self._mapping[self._prefix + key] = value

    def delete(self, key: str) -> None:
        self._mapping.pop(self._prefix + key, None)


class SQLiteStore:
    """
    Store persisted in SQLite, values kept as JSON text. Survives restarts of the
    app, which the session-backed store does not.
    """

    def __init__(self, db_path: Optional[Path] = None):
        self.db_path = Path(db_path) if db_path is not None else settings.PREFERENCES_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_database()

    def _init_database(self):
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS preferences (
                key TEXT PRIMARY KEY,
                value TEXT,
                updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
            )
        """)
        conn.commit()
        conn.close()
        logger.info(f"Preferences store initialized: {self.db_path}")

    def get(self, key: str, default: Any = None) -> Any:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("SELECT value FROM preferences WHERE key = ?", (key,))
        row = cursor.fetchone()
        conn.close()
        if row is None:
            return default
        return json.loads(row[0])

    def set(self, key: str, value: Any) -> None:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("""
            INSERT INTO preferences (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = CURRENT_TIMESTAMP
        """, (key, json.dumps(value, default=str)))
        conn.commit()
        conn.close()

    def delete(self, key: str) -> None:
        conn = sqlite3.connect(self.db_path)
        cursor = conn.cursor()
        cursor.execute("DELETE FROM preferences WHERE key = ?", (key,))
        conn.commit()
        conn.close()


def record_deals_visit(store: KeyValueStore, now_ms: Optional[int] = None) -> Optional[int]:
    """Stamp this visit to the deals page and return the previous one (epoch ms)."""
    previous = store.get(LAST_DEALS_VISIT_KEY)
    store.set(LAST_DEALS_VISIT_KEY, int(now_ms if now_ms is not None else time.time() * 1000))
    return previous


def get_language(store: KeyValueStore) -> str:
    return store.get(LANGUAGE_KEY, DEFAULT_LANGUAGE)


def set_language(store: KeyValueStore, language: str) -> None:
    store.set(LANGUAGE_KEY, language)


def save_draft(store: KeyValueStore, name: str, payload: dict) -> None:
    store.set(DRAFT_PREFIX + name, payload)


def load_draft(store: KeyValueStore, name: str) -> Optional[dict]:
    return store.get(DRAFT_PREFIX + name)


def discard_draft(store: KeyValueStore, name: str) -> None:
    store.delete(DRAFT_PREFIX + name)


FILTER_DRAFT = "deal_filters"
FILTER_DEFAULTS = {"search_term": "", "category": "all", "sort_key": "trending"}


def restore_filters(store: KeyValueStore) -> dict:
    """Deals page filters from the saved draft, defaults for anything missing or unknown."""
    draft = load_draft(store, FILTER_DRAFT)
    filters = dict(FILTER_DEFAULTS)
    if isinstance(draft, dict):
        filters.update({key: value for key, value in draft.items() if key in FILTER_DEFAULTS})
    return filters


def save_filters(store: KeyValueStore, filters: dict) -> None:
    """Keep the deals filters as a draft, only once they differ from the defaults."""
    draft = {key: filters.get(key, default) for key, default in FILTER_DEFAULTS.items()}
    if draft == FILTER_DEFAULTS:
        discard_draft(store, FILTER_DRAFT)
    elif draft != load_draft(store, FILTER_DRAFT):
        save_draft(store, FILTER_DRAFT, draft)
