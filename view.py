# view.py
from functools import lru_cache
from typing import Dict, List, Tuple

import pandas as pd
from pyuca import Collator

from models import Card

OVERFLOW_GROUP = "#"

TABLE_COLUMNS = {
    "name": "Name",
    "company": "Company",
    "phone": "Phone",
    "email": "Email",
    "website": "Website",
    "tags": "Tags",
    "notes": "Notes",
}


def matches(card: Card, query: str) -> bool:
    q = query.strip().lower()
    if not q:
        return True
    return (
        q in (card.get("name") or "").lower()
        or q in (card.get("company") or "").lower()
        or any(q in tag.lower() for tag in card.get("tags") or [])
    )


def group_key(card: Card) -> str:
    first = (card.get("name") or "")[:1]
    # 合字（ﬆ など）は upper() で 2 文字になるので先に判定する
    if first.isascii() and first.isalpha():
        return first.upper()
    return OVERFLOW_GROUP


@lru_cache(maxsize=1)
def collator() -> Collator:
    return Collator()


def sort_key(card: Card) -> Tuple[int, ...]:
    # Unicode 照合順（UCA）、大文字小文字は区別しない
    return collator().sort_key((card.get("name") or "").casefold())


def project(cards: List[Card], query: str = "") -> Dict[str, List[Card]]:
    """Group matching cards by the initial of their name, A-Z with "#" for the rest.

    Pure and stateless; safe to call on every store or query change.
    """
    groups: Dict[str, List[Card]] = {}
    for card in cards:
        if matches(card, query):
            groups.setdefault(group_key(card), []).append(card)
    return {key: sorted(groups[key], key=sort_key) for key in sorted(groups)}


def share_text(card: Card) -> str:
    phones = ", ".join(card["phone"])
    emails = ", ".join(card["email"])
    lines = [
        card.get("name"),
        card.get("company"),
        card.get("description"),
        f"Tel: {phones}" if phones else None,
        f"Email: {emails}" if emails else None,
        f"Web: {card['website']}" if card.get("website") else None,
    ]
    return "\n".join(line for line in lines if line)


def to_frame(cards: List[Card]) -> pd.DataFrame:
    rows = [
        {
            column: ", ".join(card[field]) if isinstance(card[field], list) else card[field]
            for field, column in TABLE_COLUMNS.items()
        }
        for card in cards
    ]
    return pd.DataFrame(rows, columns=list(TABLE_COLUMNS.values()))
