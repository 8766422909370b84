# db.py
import json
import os
import sqlite3
import sys
import threading
from contextlib import closing, contextmanager
from typing import Iterator, List, Optional

from config import CARDS_KEY, CONFIG, CREDENTIAL_KEY, LEGACY_CARDS_KEYS
from errors import StaleRevision, StorageCorruption
from migrate import migrate_all
from models import Card


class CardStore:
    """SQLite key/value store holding the whole card collection as one JSON array.

    Every write rewrites the collection; reads always pass through migrate_all.
    """

    def __init__(self, db_path: str = CONFIG.db_path):
        self.db_path = db_path
        self._lock = threading.RLock()
        self._recovered = False
        self.init_db()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with closing(sqlite3.connect(self.db_path)) as con:
            with con:
                yield con

    def init_db(self):
        os.makedirs(os.path.dirname(self.db_path) or ".", exist_ok=True)
        with self._connect() as con:
            con.execute("""
                CREATE TABLE IF NOT EXISTS kv (
                    key   TEXT PRIMARY KEY,
                    value TEXT
                );
            """)

    # ---- 生の key/value -------------------------------------------------
    def _get(self, key: str) -> Optional[str]:
        with self._connect() as con:
            row = con.execute("SELECT value FROM kv WHERE key=?", (key,)).fetchone()
        return row[0] if row else None

    def _set(self, key: str, value: str):
        with self._connect() as con:
            con.execute("""INSERT INTO kv (key, value) VALUES (?, ?)
                           ON CONFLICT(key) DO UPDATE SET value=excluded.value""",
                        (key, value))

    def _write(self, cards: List[Card]):
        self._set(CARDS_KEY, json.dumps(cards, ensure_ascii=False))

    def _parse(self, key: str, blob: str) -> List[Card]:
        try:
            data = json.loads(blob)
            if not isinstance(data, list):
                raise StorageCorruption(f"{key}: expected a list, got {type(data).__name__}")
        except (json.JSONDecodeError, StorageCorruption) as e:
            # 壊れたデータは空として扱う
            print(f"[cardsnap] failed to load cards from {key}: {e}", file=sys.stderr)
            return []
        return migrate_all(data)

    # ---- カード -----------------------------------------------------------
    def load(self) -> List[Card]:
        with self._lock:
            blob = self._get(CARDS_KEY)
            if not blob:
                return self._load_legacy()

            cards = self._parse(CARDS_KEY, blob)
            if not self._recovered:
                self._recovered = True
                # 前回プロセスの同期中フラグは残さない
                if any(c["is_syncing"] for c in cards):
                    cards = [{**c, "is_syncing": False} for c in cards]
                    self._write(cards)
            return cards

    def _load_legacy(self) -> List[Card]:
        self._recovered = True
        for key in LEGACY_CARDS_KEYS:
            blob = self._get(key)
            if not blob:
                continue
            cards = [{**c, "is_syncing": False} for c in self._parse(key, blob)]
            self._write(cards)
            print(f"[cardsnap] migrated {len(cards)} cards from {key}", file=sys.stderr)
            return cards
        return []

    def get(self, card_id: str) -> Optional[Card]:
        return next((c for c in self.load() if c["id"] == card_id), None)

    def upsert(self, card: Card) -> List[Card]:
        """Insert at the front, or replace in place keeping the original position.

        Raises StaleRevision when the stored copy is newer than ``card``.
        """
        with self._lock:
            cards = self.load()
            index = next((i for i, c in enumerate(cards) if c["id"] == card["id"]), None)
            if index is None:
                cards = [card, *cards]
            else:
                stored = cards[index]["revision"]
                if card["revision"] < stored:
                    raise StaleRevision(card["id"], card["revision"], stored)
                cards = [*cards]
                cards[index] = {**card, "revision": stored + 1}
            self._write(cards)
            return cards

    def remove(self, card_id: str) -> List[Card]:
        with self._lock:
            cards = [c for c in self.load() if c["id"] != card_id]
            self._write(cards)
            return cards

    def clear(self):
        with self._lock:
            self._write([])

    # ---- 認証情報 ---------------------------------------------------------
    def get_credential(self) -> Optional[str]:
        return self._get(CREDENTIAL_KEY) or None

    def set_credential(self, value: str):
        # 書き込み時の検証はしない
        self._set(CREDENTIAL_KEY, value)
