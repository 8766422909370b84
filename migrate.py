# migrate.py
import sys
from typing import Any, List, Optional

from models import ERROR_TAG, FAILED, PENDING, PENDING_TAG, PROCESSED, Card

# v1/v2 は camelCase の JSON で保存していた
RENAMED_KEYS = {
    "imageUri": "image_uri",
    "createdAt": "created_at",
    "processedAt": "processed_at",
    "lastSyncedAt": "last_synced_at",
    "isSyncing": "is_syncing",
}

OPTIONAL_SCALARS = ("name", "company", "website", "description", "nickname",
                    "processed_at", "last_synced_at")


def as_list(value: Any) -> List[str]:
    # None → []、文字列 → [文字列]、リスト → 文字列以外を除いたもの
    if isinstance(value, list):
        return [v for v in value if isinstance(v, str)]
    if value is None or value == "":
        return []
    return [str(value)]


def derive_phase(card: dict) -> str:
    tags = card.get("tags") or []
    if PENDING_TAG in tags:
        return PENDING
    if ERROR_TAG in tags:
        return FAILED
    return PROCESSED


def migrate_card(raw: Any) -> Optional[Card]:
    """Bring a record written by any earlier layout up to the current Card shape.

    Already-current records come back unchanged. Anything that is not a
    mapping cannot be salvaged and yields None.
    """
    if not isinstance(raw, dict):
        return None

    card = dict(raw)
    for old, new in RENAMED_KEYS.items():
        if old in card:
            value = card.pop(old)
            card.setdefault(new, value)

    card["phone"] = as_list(card.get("phone"))
    card["email"] = as_list(card.get("email"))
    card["tags"] = as_list(card.get("tags"))

    for key in OPTIONAL_SCALARS:
        card.setdefault(key, None)

    if card.get("notes") is None:
        card["notes"] = ""
    card.setdefault("image_uri", "")
    card.setdefault("created_at", card.get("processed_at") or "")
    card["is_syncing"] = bool(card.get("is_syncing", False))
    card.setdefault("revision", 0)
    if card.get("phase") not in (PENDING, PROCESSED, FAILED):
        card["phase"] = derive_phase(card)
    return card  # type: ignore[return-value]


def migrate_all(raw_cards: Any) -> List[Card]:
    if not isinstance(raw_cards, list):
        return []
    out: List[Card] = []
    for raw in raw_cards:
        card = migrate_card(raw)
        if card is None or not card.get("id"):
            print(f"[cardsnap] dropping unreadable record: {raw!r:.80}", file=sys.stderr)
            continue
        out.append(card)
    return out
