# models.py
import uuid
from datetime import datetime, timezone
from typing import List, Literal, Optional, TypedDict

Phase = Literal["pending", "processed", "failed"]

PENDING: Phase = "pending"
PROCESSED: Phase = "processed"
FAILED: Phase = "failed"

# phase と同期させる予約タグ（旧データ・検索用）
PENDING_TAG = "pending"
ERROR_TAG = "error"
SENTINEL_TAGS = (PENDING_TAG, ERROR_TAG)

PENDING_NAME = "Processing..."
PENDING_COMPANY = "Analyzing card..."
FAILED_NAME = "Scan Failed"
FAILED_COMPANY = "Could not extract data"


class ExtractedFields(TypedDict):
    name: Optional[str]
    company: Optional[str]
    phone: List[str]
    email: List[str]
    website: Optional[str]
    description: Optional[str]
    tags: List[str]


class Card(TypedDict):
    id: str                        # 変更不可
    image_uri: str                 # data URI（変更不可）
    name: Optional[str]
    company: Optional[str]
    phone: List[str]               # 追加順、重複あり
    email: List[str]
    website: Optional[str]
    description: Optional[str]
    nickname: Optional[str]
    tags: List[str]                # 重複なし
    notes: str
    created_at: str
    processed_at: Optional[str]    # 成功・失敗どちらでもセット
    last_synced_at: Optional[str]
    is_syncing: bool
    phase: Phase
    revision: int


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_pending_card(image_uri: str) -> Card:
    return {
        "id": str(uuid.uuid4()),
        "image_uri": image_uri,
        "name": PENDING_NAME,
        "company": PENDING_COMPANY,
        "phone": [],
        "email": [],
        "website": None,
        "description": None,
        "nickname": None,
        "tags": [PENDING_TAG],
        "notes": "",
        "created_at": now_iso(),
        "processed_at": None,
        "last_synced_at": None,
        "is_syncing": False,
        "phase": PENDING,
        "revision": 0,
    }


def processed_card(card: Card, fields: ExtractedFields) -> Card:
    """抽出結果をカードに反映し processed に遷移させる"""
    return {
        **card,
        "name": fields["name"],
        "company": fields["company"],
        "phone": list(fields["phone"]),
        "email": list(fields["email"]),
        "website": fields["website"],
        "description": fields["description"],
        "tags": [t for t in fields["tags"] if t not in SENTINEL_TAGS],
        "processed_at": now_iso(),
        "is_syncing": False,
        "phase": PROCESSED,
    }


def failed_card(card: Card) -> Card:
    return {
        **card,
        "name": FAILED_NAME,
        "company": FAILED_COMPANY,
        "tags": [ERROR_TAG],
        "processed_at": now_iso(),
        "is_syncing": False,
        "phase": FAILED,
    }


def add_tag(card: Card, tag: str) -> Card:
    tag = tag.strip()
    if not tag or tag in card["tags"]:
        return card
    return {**card, "tags": [*card["tags"], tag]}


def remove_tag(card: Card, tag: str) -> Card:
    return {**card, "tags": [t for t in card["tags"] if t != tag]}


def clean_contacts(card: Card) -> Card:
    # 空白だけの電話番号・メールは保存しない
    return {
        **card,
        "phone": [p for p in card["phone"] if p.strip()],
        "email": [e for e in card["email"] if e.strip()],
    }
