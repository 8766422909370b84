# controller.py
import asyncio
import sys
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Literal, Optional, Set

from config import CONFIG
from db import CardStore
from errors import MirrorError, StaleRevision
from graph import create_graph
from mirror import Session
from models import (ERROR_TAG, FAILED, PENDING, PENDING_TAG, SENTINEL_TAGS, Card,
                    ExtractedFields, clean_contacts, failed_card, new_pending_card, now_iso,
                    processed_card)
from ocr import CardExtractor, prepare_image
from view import project

NotificationKind = Literal[
    "processing_started", "processing_succeeded", "processing_failed",
    "saved", "deleted", "delete_undone",
    "credential_missing", "credential_saved", "credential_invalid",
    "signed_in", "signed_out",
]

# ユーザーが編集できるフィールド
USER_FIELDS = ("name", "company", "phone", "email", "website", "description",
               "nickname", "tags", "notes")
EXTRACTED_FIELDS = ("name", "company", "phone", "email", "website", "description", "tags")


@dataclass
class Notification:
    kind: NotificationKind
    message: str
    level: Literal["success", "error"] = "success"
    undo: Optional[Callable[[], bool]] = None


class UndoToken:
    """Undo capability for the most recent deletion; expires after the undo window."""

    def __init__(self, controller: "CardController", card: Card, deadline: float):
        self.card = card
        self.deadline = deadline
        self._controller = controller
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return (self._controller._undo is self
                and self._controller.clock() < self.deadline)

    def undo(self) -> bool:
        return self._controller.undo(self)

    def cancel(self):
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


def with_phase_tag(card: Card) -> Card:
    # phase と予約タグを常に一致させる、重複タグは先勝ち
    tags: List[str] = []
    for t in card["tags"]:
        if t not in SENTINEL_TAGS and t not in tags:
            tags.append(t)
    if card["phase"] == PENDING:
        tags = [PENDING_TAG, *tags]
    elif card["phase"] == FAILED:
        tags = [ERROR_TAG, *tags]
    return {**card, "tags": tags}


def merge_extraction(provisional: Card, current: Card, target: Card) -> Card:
    """Apply extraction output onto ``current`` without clobbering user edits.

    A field is taken from ``target`` only when the user left it as it was in
    the provisional record.
    """
    merged: Dict[str, Any] = dict(current)
    for key in EXTRACTED_FIELDS:
        if current[key] == provisional[key]:
            merged[key] = target[key]
    merged["tags"] = [t for t in merged["tags"] if t not in SENTINEL_TAGS]
    for key in ("processed_at", "phase", "is_syncing"):
        merged[key] = target[key]
    return merged  # type: ignore[return-value]


def _find(cards: List[Card], card_id: str) -> Optional[Card]:
    return next((c for c in cards if c["id"] == card_id), None)


class CardController:
    def __init__(
        self,
        store: CardStore,
        extractor: Optional[CardExtractor] = None,
        notify: Optional[Callable[[Notification], None]] = None,
        session: Optional[Session] = None,
        undo_window: float = CONFIG.undo_window,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.extractor = extractor or CardExtractor()
        self.notify = notify or (lambda n: None)
        self.session = session
        self.undo_window = undo_window
        self.clock = clock
        self._undo: Optional[UndoToken] = None
        self._tasks: Set[asyncio.Task] = set()
        self.graph = create_graph(self)

    # ====== 参照 ==============================================================
    def cards(self) -> List[Card]:
        return self.store.load()

    def current_view(self, query: str = "") -> Dict[str, List[Card]]:
        return project(self.store.load(), query)

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def wait_idle(self):
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    # ====== 撮影 → 抽出 ======================================================
    async def capture(self, image: Any) -> Card:
        """Persist a pending card for ``image`` and start extraction in the background."""
        image_uri = await prepare_image(image)
        card = new_pending_card(image_uri)
        self.store.upsert(card)
        self.notify(Notification("processing_started", "Analyzing card..."))
        self._spawn(self._run_pipeline(card, self.store.get_credential()))
        return card

    async def _run_pipeline(self, card: Card, credential: Optional[str]) -> Optional[Card]:
        try:
            state = await self.graph.ainvoke({"card": card, "credential": credential})
        except Exception as e:
            # 想定外の失敗でもカードは必ず終端状態にする
            print(f"[cardsnap] capture pipeline crashed for {card['id']}: {e!r}", file=sys.stderr)
            return self.commit_failed(card, str(e) or type(e).__name__)
        return state.get("result")

    def commit_processed(self, provisional: Card, extracted: ExtractedFields) -> Optional[Card]:
        target = processed_card(provisional, extracted)
        current = self.store.get(provisional["id"])
        if current is None:
            print(f"[cardsnap] card {provisional['id']} was deleted before extraction finished",
                  file=sys.stderr)
            return None
        try:
            cards = self.store.upsert(target)
        except StaleRevision as e:
            print(f"[cardsnap] {e}; merging extraction into latest edit", file=sys.stderr)
            cards = self.store.upsert(merge_extraction(provisional, current, target))
        self.notify(Notification("processing_succeeded", "Card processed successfully"))
        return _find(cards, provisional["id"])

    def commit_failed(self, provisional: Card, reason: str,
                      missing_credential: bool = False) -> Optional[Card]:
        current = self.store.get(provisional["id"])
        if current is None:
            return None
        cards = self.store.upsert(failed_card(current))
        if missing_credential:
            self.notify(Notification("credential_missing",
                                     "Please set your API key in Settings to scan cards.",
                                     level="error"))
        self.notify(Notification("processing_failed", f"Analysis failed: {reason}", level="error"))
        return _find(cards, provisional["id"])

    # ====== 編集 ==============================================================
    def _save_user_fields(self, card: Card) -> Card:
        # ユーザーの編集は最新リビジョンに重ねる
        card = clean_contacts(card)
        current = self.store.get(card["id"])
        if current is not None:
            card = {**current, **{k: card[k] for k in USER_FIELDS}}
        card = with_phase_tag(card)
        return _find(self.store.upsert(card), card["id"])

    async def edit(self, card: Card) -> Card:
        saved = self._save_user_fields(card)
        self.notify(Notification("saved", "Changes saved"))
        if self.session is not None:
            self._spawn(self.sync(saved))
        return saved

    def quick_update(self, card: Card) -> Card:
        # 通知も同期もしない（メモ欄など）
        return self._save_user_fields(card)

    # ====== 同期 ==============================================================
    def _patch(self, card_id: str, **changes) -> Optional[Card]:
        current = self.store.get(card_id)
        if current is None:
            return None
        return _find(self.store.upsert({**current, **changes}), card_id)

    async def sync(self, card: Optional[Card]) -> Optional[Card]:
        session = self.session
        if session is None or card is None:
            return card
        syncing = self._patch(card["id"], is_syncing=True)
        if syncing is None:
            return None

        synced = True
        try:
            await session.push(syncing)
        except MirrorError as e:
            synced = False
            print(f"[cardsnap] mirror failed for {card['id']}: {e}", file=sys.stderr)

        if synced:
            return self._patch(card["id"], is_syncing=False, last_synced_at=now_iso())
        return self._patch(card["id"], is_syncing=False)

    def sign_in(self, session: Session):
        self.session = session
        self.notify(Notification("signed_in", "Signed in successfully"))

    def sign_out(self):
        self.session = None
        self.notify(Notification("signed_out", "Signed out"))

    # ====== 削除 / 元に戻す ==================================================
    def delete(self, card_id: str) -> Optional[UndoToken]:
        card = self.store.get(card_id)
        if card is None:
            return None
        self.store.remove(card_id)

        # 直前の削除の undo は破棄
        if self._undo is not None:
            self._undo.cancel()
        token = UndoToken(self, card, self.clock() + self.undo_window)
        self._undo = token
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        if loop is not None:
            token._handle = loop.call_later(self.undo_window, self._expire, token)

        self.notify(Notification("deleted", "Card deleted", undo=token.undo))
        return token

    def _expire(self, token: UndoToken):
        if self._undo is token:
            self._undo = None

    def undo(self, token: Optional[UndoToken] = None) -> bool:
        token = token or self._undo
        if token is None or not token.active:
            return False
        token.cancel()
        token._controller._undo = None
        self._undo = None
        self.store.upsert(token.card)
        self.notify(Notification("delete_undone", "Delete undone"))
        return True

    # ====== API キー ==========================================================
    def get_credential(self) -> Optional[str]:
        return self.store.get_credential()

    def set_credential(self, value: str):
        self.store.set_credential(value)

    def ensure_credential(self) -> bool:
        """Camera-activation check: False (plus a prompt) when no key is configured."""
        if self.store.get_credential():
            return True
        self.notify(Notification("credential_missing",
                                 "Please set your API key in Settings to scan cards.",
                                 level="error"))
        return False

    async def save_credential(self, candidate: str) -> bool:
        if not await self.extractor.validate_credential(candidate):
            self.notify(Notification("credential_invalid", "API key was rejected", level="error"))
            return False
        self.store.set_credential(candidate.strip())
        self.notify(Notification("credential_saved", "API key saved"))
        return True
